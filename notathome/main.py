"""
Not At Home API - FastAPI Application

Builds the app, wires the session store and the live update relay into its
lifespan, and maps every error the services raise onto an ErrorResponse.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError, NoResultFound, OperationalError

from notathome import __version__
from notathome.config import get_settings
from notathome.core.cache import close_redis
from notathome.core.database import close_db, init_db
from notathome.core.errors import CodeSpaceExhausted, SessionError, StorageUnavailable
from notathome.core.pubsub import get_connection_manager
from notathome.models.contracts.common import ErrorResponse
from notathome.routers import (
    addresses_router,
    congregations_router,
    health_router,
    sessions_router,
    websocket_router,
)

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the store and the pub/sub relay; close them in reverse order."""
    settings = get_settings()
    logger.info(f"Starting Not At Home API ({settings.environment})")

    await init_db()
    logger.info("Session store reachable")

    manager = get_connection_manager()
    await manager.start_pubsub()
    logger.info(f"Live updates running {'over Redis' if manager.redis_enabled else 'local-only'}")

    yield

    logger.info("Shutting down Not At Home API")
    await manager.stop_pubsub()
    await close_redis()
    await close_db()


def error_response(
    status_code: int, error: str, message: str, details: dict[str, Any] | None = None
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, message=message, details=details).model_dump(),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Map domain, validation and database errors onto ErrorResponse bodies."""

    @app.exception_handler(SessionError)
    async def session_error_handler(request: Request, exc: SessionError) -> JSONResponse:
        if isinstance(exc, CodeSpaceExhausted):
            logger.critical(f"Session code space exhausted on {request.url.path}: {exc.context}")
        elif exc.status_code >= 500:
            logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
        return error_response(exc.status_code, exc.code, exc.message)

    @app.exception_handler(PydanticValidationError)
    async def pydantic_validation_handler(
        request: Request, exc: PydanticValidationError
    ) -> JSONResponse:
        fields = {".".join(str(loc) for loc in e["loc"]): e["msg"] for e in exc.errors()}
        return error_response(422, "validation_error", "Validation failed", {"fields": fields})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return error_response(422, "validation_error", str(exc))

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
        # Constraint names come from the initial migration
        detail = str(exc.orig) if exc.orig else str(exc)
        if "uq_territory_maps_congregation_number" in detail:
            message = "A map with this number already exists"
        elif "congregations_name_key" in detail:
            message = "A congregation with this name already exists"
        elif "foreign key" in detail.lower():
            message = "Referenced resource not found"
        else:
            message = "Resource already exists"

        logger.warning(f"IntegrityError on {request.url.path}: {detail}")
        return error_response(409, "conflict", message)

    @app.exception_handler(NoResultFound)
    async def no_result_handler(request: Request, exc: NoResultFound) -> JSONResponse:
        return error_response(404, "not_found", "Resource not found")

    @app.exception_handler(OperationalError)
    async def operational_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
        # Raised outside a storage_guard, e.g. while committing the request transaction
        logger.error(f"Session store error on {request.url.path}: {exc}", exc_info=True)
        return error_response(503, StorageUnavailable.code, StorageUnavailable.default_message)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            f"Unhandled exception on {request.method} {request.url.path}: {exc}",
            exc_info=True,
        )
        return error_response(500, "internal_error", "An unexpected error occurred")


def create_app() -> FastAPI:
    """Create the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Not At Home API",
        description="Coordination API for congregation not-at-home outreach sessions",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(sessions_router)
    app.include_router(addresses_router)
    app.include_router(congregations_router)
    app.include_router(websocket_router)

    @app.get("/")
    async def root():
        return {
            "name": "Not At Home API",
            "version": __version__,
            "docs": "/docs",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "notathome.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
    )
