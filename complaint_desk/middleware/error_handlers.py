"""
Exception handlers: workflow errors become `{"error": {"code", "message"}}`
with the status their category maps to.
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from complaint_desk.infrastructure.observability.logging import get_logger
from complaint_desk.services.complaints.errors import ComplaintError, InvalidInputError

logger = get_logger(__name__)


def _error_response(error: ComplaintError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if error.status_code == 401 else None
    return JSONResponse(
        status_code=error.status_code, content={"error": error.to_dict()}, headers=headers
    )


async def complaint_error_handler(request: Request, exc: ComplaintError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "Complaint request failed",
        error_type=type(exc).__name__,
        error_code=exc.code,
        status_code=exc.status_code,
        complaint_id=exc.complaint_id,
    )
    return _error_response(exc)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    if location:
        message = f"{location}: {message}"
    logger.info("Request validation failed", error_count=len(exc.errors()))
    return _error_response(InvalidInputError(message))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ComplaintError, complaint_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
