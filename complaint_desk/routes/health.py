# complaint_desk/routes/health.py
"""
Health check endpoints: liveness, and readiness against the complaint
store and the Redis cache.
"""

import time

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from complaint_desk.dependencies import AppContainer, get_container

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "complaint-desk"}


@router.get("/readyz")
async def readyz(container: AppContainer = Depends(get_container)):
    """Readiness check across configured dependencies."""
    checks = {}
    overall_ok = True

    # 1) Complaint store (Sheets)
    if container.sheets is not None and container.spreadsheet_id:
        t0 = time.time()
        result = await container.sheets.health_check(container.spreadsheet_id)
        checks["sheets"] = {
            "ok": bool(result.get("healthy")),
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        if not result.get("healthy"):
            checks["sheets"]["error"] = result.get("error", "Sheets unreachable")
        overall_ok = overall_ok and bool(result.get("healthy"))
    else:
        checks["sheets"] = {"ok": True, "mode": "in_memory"}

    # 2) Redis (optional)
    if container.redis is not None:
        t0 = time.time()
        redis_ok = await container.redis.ping()
        checks["redis"] = {
            "ok": redis_ok,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        overall_ok = overall_ok and redis_ok

    status_code = 200 if overall_ok else 503
    return JSONResponse(
        status_code=status_code,
        content={"status": "ready" if overall_ok else "not_ready", "checks": checks},
    )
