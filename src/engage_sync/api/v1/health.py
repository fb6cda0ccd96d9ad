"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready) checks.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from src.engage_sync.config import get_settings
from src.engage_sync.core.database import check_db

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check. No external dependencies are checked."""
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies(request: Request) -> dict:
    """Check database connectivity and dispatch pool state."""
    checks: dict = {"database": "ok", "dispatch_pool": "ok"}

    try:
        await check_db()
    except Exception as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)

    pool = getattr(request.app.state, "worker_pool", None)
    if pool is None or not pool.running:
        checks["dispatch_pool"] = "stopped"

    return checks


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: verifies the database and the dispatch pool.

    Returns 200 if all pass, 503 otherwise.
    """
    checks = await _check_dependencies(request)
    all_healthy = checks.get("database") == "ok" and checks.get("dispatch_pool") == "ok"

    return JSONResponse(
        status_code=status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if all_healthy else "degraded",
            "checks": checks,
        },
    )
