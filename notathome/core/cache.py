"""
Redis Client

Shared client for the live update relay. API instances subscribe and
publish through it; the worker only publishes.
"""

import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

from notathome.config import get_settings

logger = logging.getLogger(__name__)

_client: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    """Return the process-wide client, creating it on first use."""
    global _client

    if _client is None:
        settings = get_settings()
        _client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=settings.redis_socket_timeout_seconds,
            socket_timeout=settings.redis_socket_timeout_seconds,
            health_check_interval=30,
        )

    return _client


async def ping_redis() -> bool:
    """Whether Redis answers PING."""
    try:
        client = await get_redis()
        return bool(await client.ping())  # type: ignore[misc]
    except (RedisError, OSError) as e:
        logger.warning(f"Redis ping failed: {e}")
        return False


async def close_redis() -> None:
    global _client

    if _client is not None:
        await _client.aclose()
        _client = None
