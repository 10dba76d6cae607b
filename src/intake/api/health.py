"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready). Readiness
checks the database and Redis, the two dependencies the intake path and
the sync queue cannot work without.
"""

from __future__ import annotations

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.intake.config import get_settings
from src.intake.core.database import get_engine
from src.intake.core.redis import redis_error

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check; no external dependencies are touched."""
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies() -> dict:
    checks: dict = {"database": "ok", "redis": "ok"}

    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)

    redis_failure = await redis_error()
    if redis_failure is not None:
        checks["redis"] = "error"
        checks["redis_error"] = redis_failure

    checks["feishu"] = "configured" if get_settings().has_feishu_config() else "not_configured"
    return checks


@router.get("/health/ready")
async def readiness_check():
    """Readiness: 200 when the database and Redis respond, else 503."""
    checks = await _check_dependencies()
    ready = checks["database"] == "ok" and checks["redis"] == "ok"

    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ready" if ready else "degraded", "checks": checks},
    )
