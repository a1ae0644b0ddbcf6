"""
Complaint desk API: FastAPI application and service lifecycle.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from complaint_desk.config import settings
from complaint_desk.dependencies import AppContainer, build_container
from complaint_desk.infrastructure.observability.logging import get_logger, setup_logging
from complaint_desk.middleware import RequestContextMiddleware, register_exception_handlers
from complaint_desk.routes import complaints, directory, health

setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the service container on startup and release clients on shutdown."""

    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    container: AppContainer | None = getattr(app.state, "container", None)
    if container is None:
        container = build_container(settings)
        app.state.container = container

    if container.redis is not None:
        try:
            logger.info("Initializing Redis connection")
            await container.redis.initialize()
        except RuntimeError as e:
            # The directory cache is optional; reads fall through to Sheets
            logger.warning("Redis unavailable, directory cache disabled", error=str(e))

    logger.info("All services initialized successfully")

    yield

    logger.info("Application shutting down")
    try:
        await container.close()
        logger.info("All services closed successfully")
    except Exception as e:
        logger.error("Error during shutdown", error=str(e), error_type=type(e).__name__)


def create_app(container: AppContainer | None = None) -> FastAPI:
    app = FastAPI(
        title="Complaint Desk",
        description="Complaint lifecycle: routing, reply letters and principal review",
        version="0.1.0",
        lifespan=lifespan,
    )
    if container is not None:
        app.state.container = container

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log HTTP requests with timing."""
        start_time = time.time()
        response = await call_next(request)
        process_time = (time.time() - start_time) * 1000

        logger.info(
            "HTTP request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(process_time, 2),
        )
        return response

    # Outermost; the timing log line needs the bound request id
    app.add_middleware(RequestContextMiddleware)
    register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(directory.router)
    app.include_router(complaints.router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
