"""API routers."""

from notathome.routers.addresses import router as addresses_router
from notathome.routers.congregations import router as congregations_router
from notathome.routers.health import router as health_router
from notathome.routers.sessions import router as sessions_router
from notathome.routers.websocket import router as websocket_router

__all__ = [
    "addresses_router",
    "congregations_router",
    "health_router",
    "sessions_router",
    "websocket_router",
]
