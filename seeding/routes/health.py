# seeding/routes/health.py
from __future__ import annotations

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from seeding.core.config import settings
from seeding.core.logging import get_structlog_logger
from seeding.db.base import utcnow
from seeding.db.session import health_check as database_health_check

logger = get_structlog_logger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Database connectivity check."""
    database = await database_health_check()
    healthy = database.get("status") == "healthy"
    if not healthy:
        logger.warning("health.check", status="unhealthy", database=database)

    body = {
        "status": "healthy" if healthy else "unhealthy",
        "service": "seeding_api",
        "environment": settings.environment,
        "timestamp": utcnow().isoformat(),
        "checks": {"database": {"status": database.get("status")}},
    }
    if not settings.is_production and not healthy:
        body["checks"]["database"]["error"] = database.get("error")

    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=body,
    )


@router.get("/health/live", status_code=status.HTTP_200_OK)
async def liveness_probe():
    """Simple liveness probe for containers."""
    return {"status": "alive", "timestamp": utcnow().isoformat()}
