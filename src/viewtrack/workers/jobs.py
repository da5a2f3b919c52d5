"""Background job bodies shared by the in-process scheduler and the arq worker."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from viewtrack.analytics.retention import RetentionResult, reap_expired_views
from viewtrack.analytics.rollup import RollupResult, run_rollup
from viewtrack.config import Settings, get_settings
from viewtrack.database import get_session_factory
from viewtrack.workers.scheduler import JobScheduler, next_daily_run

logger = logging.getLogger(__name__)

ROLLUP_JOB = "rollup"
RETENTION_JOB = "retention"


async def rollup_job(window_hours: int | None = None) -> RollupResult:
    """Run one rollup over the configured (or overridden) window."""
    settings = get_settings()
    window = window_hours or settings.rollup_window_hours
    async with get_session_factory()() as db:
        result = await run_rollup(db, window_hours=window)
    if result.entities_failed:
        logger.warning(
            "Rollup finished with failures: %d updated, %d failed",
            result.entities_updated, result.entities_failed,
        )
    else:
        logger.info("Rollup finished: %d entities updated", result.entities_updated)
    return result


async def retention_job() -> RetentionResult:
    """Delete view events past the retention horizon."""
    settings = get_settings()
    async with get_session_factory()() as db:
        result = await reap_expired_views(
            db,
            retention_days=settings.retention_days,
            batch_size=settings.retention_batch_size,
            dedup_window_hours=settings.dedup_window_hours,
        )
    if result.events_deleted or result.claims_deleted:
        logger.info(
            "Retention sweep: %d events, %d dedup claims deleted",
            result.events_deleted, result.claims_deleted,
        )
    return result


def build_scheduler(
    settings: Settings,
    clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
) -> JobScheduler:
    """Scheduler with the rollup pinned to rollup_hour_utc and the reaper on a short interval."""
    scheduler = JobScheduler(clock=clock)
    scheduler.add_job(
        ROLLUP_JOB,
        rollup_job,
        interval=timedelta(hours=settings.rollup_interval_hours),
        first_run_at=next_daily_run(clock(), settings.rollup_hour_utc),
    )
    scheduler.add_job(
        RETENTION_JOB,
        retention_job,
        interval=timedelta(minutes=settings.retention_interval_minutes),
    )
    return scheduler
