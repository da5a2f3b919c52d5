"""Retention sweep over the event store."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from viewtrack.db.models import ViewEvent
from viewtrack.errors import TRANSIENT_DB_ERRORS, TransientStoreError
from viewtrack.tracking.dedup import DEFAULT_WINDOW_HOURS, prune_claims, window_cutoff

logger = structlog.get_logger()

RETENTION_DAYS = 90
DEFAULT_BATCH_SIZE = 5000


@dataclass(frozen=True)
class RetentionResult:
    """Rows removed by one sweep."""

    events_deleted: int
    claims_deleted: int
    cutoff: datetime

    def to_dict(self) -> dict:
        return {
            "events_deleted": self.events_deleted,
            "claims_deleted": self.claims_deleted,
            "cutoff": self.cutoff.isoformat(),
        }


async def reap_expired_views(
    db: AsyncSession,
    retention_days: int = RETENTION_DAYS,
    now: datetime | None = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
    dedup_window_hours: int = DEFAULT_WINDOW_HOURS,
) -> RetentionResult:
    """Delete view events older than the horizon, batch by batch, then stale dedup claims."""
    if now is None:
        now = datetime.now(timezone.utc)
    cutoff = now - timedelta(days=retention_days)

    events_deleted = 0
    try:
        while True:
            result = await db.execute(select(ViewEvent.id).where(ViewEvent.viewed_at < cutoff).limit(batch_size))
            expired_ids = list(result.scalars())
            if not expired_ids:
                break
            await db.execute(delete(ViewEvent).where(ViewEvent.id.in_(expired_ids)))
            await db.commit()
            events_deleted += len(expired_ids)
            if len(expired_ids) < batch_size:
                break

        claims_deleted = await prune_claims(db, window_cutoff(now, dedup_window_hours))
        await db.commit()
    except TRANSIENT_DB_ERRORS as exc:
        await db.rollback()
        raise TransientStoreError(str(exc)) from exc

    logger.info(
        "retention_sweep_completed",
        events_deleted=events_deleted,
        claims_deleted=claims_deleted,
        cutoff=cutoff.isoformat(),
    )
    return RetentionResult(events_deleted=events_deleted, claims_deleted=claims_deleted, cutoff=cutoff)
