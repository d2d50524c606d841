"""
Health Check Router

Liveness for the process, and readiness for load balancers: an instance
is ready when it can reach the session store. Redis is reported but not
required, live updates fall back to this instance's own sockets.
"""

from fastapi import APIRouter, Response, status

from notathome import __version__
from notathome.core.cache import ping_redis
from notathome.core.database import ping_database
from notathome.core.pubsub import get_connection_manager
from notathome.models.contracts.common import HealthResponse, ReadinessResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Liveness check."""
    return HealthResponse(status="healthy", version=__version__)


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check(response: Response) -> ReadinessResponse:
    """
    Readiness check.

    Returns 503 while the session store is unreachable.
    """
    database_ok = await ping_database()
    redis_ok = await ping_redis()

    if not database_ok:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return ReadinessResponse(
        status="ready" if database_ok else "unavailable",
        database=database_ok,
        redis=redis_ok,
        realtime="redis" if get_connection_manager().redis_enabled else "local",
    )
