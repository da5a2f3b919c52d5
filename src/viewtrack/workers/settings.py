"""arq worker settings module.

For deployments that run the background jobs out of process instead of in
the API's own scheduler (set VIEWTRACK_SCHEDULER_ENABLED=false on the API).

Import path for arq CLI: arq viewtrack.workers.settings.WorkerSettings
"""

from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings

from viewtrack.config import get_settings
from viewtrack.database import close_db, init_db
from viewtrack.workers.jobs import retention_job, rollup_job

logger = logging.getLogger(__name__)

_settings = get_settings()


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize the database on worker startup."""
    await init_db(_settings.database_url)
    logger.info("View tracking worker started")


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    await close_db()
    logger.info("View tracking worker shut down")


async def rollup_task(ctx: dict) -> dict:  # type: ignore[type-arg]
    """Daily rollup at rollup_hour_utc."""
    result = await rollup_job()
    return result.to_dict()


async def retention_task(ctx: dict) -> dict:  # type: ignore[type-arg]
    """Retention sweep every retention_interval_minutes."""
    result = await retention_job()
    return result.to_dict()


def _minutes_every(interval: int) -> set[int]:
    return set(range(0, 60, max(1, min(interval, 60))))


class WorkerSettings:
    """arq worker settings for rollup and retention."""

    functions = [rollup_task, retention_task]
    cron_jobs = [
        cron(rollup_task, hour={_settings.rollup_hour_utc}, minute={0}, unique=True),
        cron(retention_task, minute=_minutes_every(_settings.retention_interval_minutes), unique=True),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(_settings.arq_redis_url)
    max_jobs = 2
    job_timeout = 1800  # 30 minutes max per sweep
