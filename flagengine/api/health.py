"""
Health check endpoints
"""

import time

from flagengine.core.config import settings
from flagengine.core.logging import get_logger
from flagengine.core.resilience import get_circuit_breaker_status
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from slowapi import Limiter
from slowapi.util import get_remote_address

router = APIRouter()
logger = get_logger(__name__)
limiter = Limiter(key_func=get_remote_address)


class HealthResponse(BaseModel):
    """Health check response model"""

    status: str
    version: str
    snapshot_version: int
    timestamp: float


@router.get("/health", response_model=HealthResponse)
@limiter.limit("100/minute")
async def health_check(request: Request):
    """
    Basic health check endpoint
    Returns 200 if the service is running

    Rate limit: 100 requests per minute
    """
    logger.debug("health_check_requested")
    return HealthResponse(
        status="healthy",
        version=settings.APP_VERSION,
        snapshot_version=request.app.state.flag_engine.snapshot.version,
        timestamp=time.time(),
    )


@router.get("/ready", response_class=JSONResponse)
@limiter.limit("100/minute")
def readiness_check(request: Request):
    """
    Readiness check endpoint
    Verifies the database is reachable; Redis is reported when push
    notifications are configured but does not gate readiness, since the
    interval refresh keeps replicas converging without it.

    Rate limit: 100 requests per minute
    """
    logger.debug("readiness_check_requested")
    engine = request.app.state.flag_engine

    checks = {
        "database": engine.database_ready(),
        "redis": engine.notifier.check_connection() if engine.notifier is not None else None,
    }

    ready = bool(checks["database"])
    response_status = status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE

    if not ready:
        logger.warning("readiness_check_failed", checks=checks)
    else:
        logger.debug("readiness_check_passed")

    return JSONResponse(
        status_code=response_status,
        content={
            "status": "ready" if ready else "not_ready",
            "checks": checks,
            "circuit_breakers": get_circuit_breaker_status(),
            "snapshot_version": engine.snapshot.version,
            "timestamp": time.time(),
        },
    )
