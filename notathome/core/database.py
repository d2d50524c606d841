"""
Session Store Connection

One async engine per process, a FastAPI dependency that scopes a transaction
to a request, and a context manager for the worker. Work that must only
happen once data is durable (live update events) is queued with
``after_commit``. Connect and statement
timeouts come from settings so a stalled Postgres surfaces as an error the
services translate into ``storage_unavailable`` instead of a hung request.
"""

import logging
import ssl
from collections.abc import AsyncGenerator, AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Annotated, Any
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from fastapi import Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from notathome.config import Settings, get_settings
from notathome.models.orm.base import Base  # noqa: F401 - imported for Alembic

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None

# Key in AsyncSession.info holding callbacks queued by after_commit()
AFTER_COMMIT_KEY = "notathome_after_commit"

AfterCommitCallback = Callable[[], Awaitable[None]]


def _ssl_for_mode(sslmode: str) -> ssl.SSLContext | str | None:
    """asyncpg takes an SSLContext (or "prefer") rather than libpq's sslmode."""
    if sslmode == "prefer":
        return "prefer"
    if sslmode not in ("require", "verify-ca", "verify-full"):
        return None

    context = ssl.create_default_context()
    if sslmode != "verify-full":
        context.check_hostname = False
    if sslmode == "require":
        context.verify_mode = ssl.CERT_NONE
    return context


def build_connect_args(settings: Settings) -> tuple[str, dict[str, Any]]:
    """
    Split a libpq-style URL into an asyncpg URL and connect_args.

    Returns:
        (url without sslmode, connect_args with ssl and timeouts)
    """
    parsed = urlparse(settings.database_url)
    query = parse_qs(parsed.query)

    connect_args: dict[str, Any] = {
        "timeout": settings.database_connect_timeout_seconds,
        "server_settings": {
            "statement_timeout": str(int(settings.database_statement_timeout_seconds * 1000)),
        },
    }

    if "sslmode" in query:
        ssl_arg = _ssl_for_mode(query.pop("sslmode")[0])
        if ssl_arg is not None:
            connect_args["ssl"] = ssl_arg

    url = urlunparse(parsed._replace(query=urlencode(query, doseq=True)))
    return url, connect_args


def get_engine(settings: Settings | None = None) -> AsyncEngine:
    global _engine

    if _engine is None:
        settings = settings or get_settings()
        url, connect_args = build_connect_args(settings)
        _engine = create_async_engine(
            url,
            echo=settings.debug,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_timeout=settings.database_connect_timeout_seconds,
            pool_pre_ping=True,
            connect_args=connect_args,
        )

    return _engine


def get_session_factory(settings: Settings | None = None) -> async_sessionmaker[AsyncSession]:
    global _session_factory

    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(settings),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    return _session_factory


def after_commit(session: AsyncSession, callback: AfterCommitCallback) -> None:
    """
    Run ``callback`` once the current transaction of ``session`` commits.

    Callbacks queued before a rollback are discarded and never run.
    """
    session.info.setdefault(AFTER_COMMIT_KEY, []).append(callback)


async def commit_session(session: AsyncSession) -> None:
    """Commit, then run the after_commit callbacks in the order they were queued."""
    await session.commit()
    callbacks = session.info.pop(AFTER_COMMIT_KEY, [])
    for callback in callbacks:
        try:
            await callback()
        except Exception as e:
            logger.warning(f"After-commit callback failed: {e}")


async def rollback_session(session: AsyncSession) -> None:
    """Roll back and drop the pending after_commit callbacks."""
    discarded = session.info.pop(AFTER_COMMIT_KEY, [])
    if discarded:
        logger.debug(f"Discarding {len(discarded)} after-commit callback(s) on rollback")
    await session.rollback()


@asynccontextmanager
async def get_db_context() -> AsyncIterator[AsyncSession]:
    """
    Transaction scope for requests, worker tasks and scripts.

    Commits on normal exit and then runs the after_commit callbacks; rolls
    back and drops them if the block or the commit raises.

    Usage:
        async with get_db_context() as db:
            await get_session_lifecycle(db).sweep_expired_sessions()
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await commit_session(session)
        except Exception:
            await rollback_session(session)
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped transaction."""
    async with get_db_context() as session:
        yield session


DbSession = Annotated[AsyncSession, Depends(get_db)]


async def ping_database() -> bool:
    """Round-trip ``SELECT 1``; False when the store cannot be reached."""
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Session store ping failed: {e}")
        return False
    return True


async def init_db() -> None:
    """Fail startup early if the store is unreachable."""
    async with get_engine().connect() as conn:
        await conn.execute(text("SELECT 1"))


async def close_db() -> None:
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
