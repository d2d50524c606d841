"""
arq Worker Configuration.

Runs the expiration sweep on a schedule, and once when the worker starts.

Run the worker with:
    arq notathome.worker.WorkerSettings
"""

import logging
from typing import Any

from arq import cron, func
from arq.connections import RedisSettings

from notathome.config import get_settings

logger = logging.getLogger(__name__)


async def sweep_expired_sessions_task(ctx: dict[str, Any]) -> int:
    """
    End every active session past its expiry time.

    Each session is committed as it is ended, so the returned count only
    covers persisted changes. A failed cycle raises and is simply tried again
    at the next interval.

    Args:
        ctx: arq context (contains redis connection, job info, etc.)

    Returns:
        Number of sessions ended
    """
    from notathome.core.database import get_db_context
    from notathome.core.pubsub import publish_to_redis
    from notathome.services.session_lifecycle import get_session_lifecycle

    logger.info("Starting expiration sweep")

    async with get_db_context() as db:
        ended = await get_session_lifecycle(db, publish=publish_to_redis).sweep_expired_sessions()

    logger.info(
        f"Expiration sweep complete: ended {ended} session(s)",
        extra={"ended_count": ended},
    )
    return ended


def sweep_schedule(interval_minutes: int) -> dict[str, set[int]]:
    """
    Translate a sweep interval into arq cron fields.

    Intervals under an hour become a minute set; longer intervals run on the
    hour every ``interval_minutes // 60`` hours.
    """
    if interval_minutes < 60:
        return {"minute": set(range(0, 60, interval_minutes))}
    hours = max(interval_minutes // 60, 1)
    return {"hour": set(range(0, 24, hours)), "minute": {0}}


class WorkerSettings:
    """
    arq worker settings.

    Configures the worker's connection to Redis, task functions,
    concurrency limits, timeouts, and retry behavior.
    """

    functions = [
        func(sweep_expired_sessions_task, timeout=300),
    ]

    cron_jobs = [
        cron(
            sweep_expired_sessions_task,
            run_at_startup=True,
            **sweep_schedule(get_settings().sweep_interval_minutes),
        ),
    ]

    # Redis connection settings (loaded from environment)
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)

    max_jobs = 2

    # Job timeout in seconds
    job_timeout = 300

    # A failed sweep waits for the next cycle instead of retrying
    retry_jobs = False

    max_tries = 1
