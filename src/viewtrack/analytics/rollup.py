"""Rollup: folds raw view events into per-vendor summaries.

Each run overwrites the counters (no increments), so running it twice with
the same window leaves the same values behind. Summaries are committed one
entity at a time; a failing entity is counted and skipped.

History buckets: `daily` is the unique count of the rollup window itself.
`weekly` and `monthly` are unique counts over the trailing 7 and 30 days,
computed in the same pass from the event store.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import and_, case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from viewtrack.db.models import EntityViewSummary, ViewEvent
from viewtrack.db.upsert import insert_for
from viewtrack.errors import TRANSIENT_DB_ERRORS, TransientStoreError, ValidationError

logger = structlog.get_logger()

DEFAULT_ROLLUP_WINDOW_HOURS = 24
MAX_ROLLUP_WINDOW_HOURS = 24 * 90
WEEKLY_DAYS = 7
MONTHLY_DAYS = 30


@dataclass(frozen=True)
class EntityRollup:
    """Counters computed for one entity by one rollup run."""

    entity_id: str
    total_views: int
    unique_views: int
    unique_weekly: int
    unique_monthly: int


@dataclass(frozen=True)
class RollupResult:
    """Outcome of a rollup run."""

    entities_updated: int
    entities_failed: int
    window_hours: int
    ran_at: datetime

    def to_dict(self) -> dict:
        return {
            "entities_updated": self.entities_updated,
            "entities_failed": self.entities_failed,
            "window_hours": self.window_hours,
            "ran_at": self.ran_at.isoformat(),
        }


def _count_if(condition) -> object:  # noqa: ANN001
    return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)


async def collect_rollups(
    db: AsyncSession,
    window_hours: int,
    now: datetime,
) -> list[EntityRollup]:
    """Group events by entity. Only entities with views inside the window are returned."""
    window_start = now - timedelta(hours=window_hours)
    weekly_start = now - timedelta(days=WEEKLY_DAYS)
    monthly_start = now - timedelta(days=MONTHLY_DAYS)
    scan_start = min(window_start, monthly_start)

    in_window = ViewEvent.viewed_at >= window_start
    unique = ViewEvent.is_unique == True  # noqa: E712
    total_views = _count_if(in_window)

    result = await db.execute(
        select(
            ViewEvent.entity_id,
            total_views.label("total_views"),
            _count_if(and_(in_window, unique)).label("unique_views"),
            _count_if(and_(ViewEvent.viewed_at >= weekly_start, unique)).label("unique_weekly"),
            _count_if(and_(ViewEvent.viewed_at >= monthly_start, unique)).label("unique_monthly"),
        )
        .where(ViewEvent.viewed_at >= scan_start)
        .group_by(ViewEvent.entity_id)
        .having(total_views > 0)
    )
    return [
        EntityRollup(
            entity_id=row.entity_id,
            total_views=int(row.total_views),
            unique_views=int(row.unique_views),
            unique_weekly=int(row.unique_weekly),
            unique_monthly=int(row.unique_monthly),
        )
        for row in result.all()
    ]


async def write_summary(
    db: AsyncSession,
    rollup: EntityRollup,
    window_hours: int,
    now: datetime,
) -> None:
    """Overwrite one entity's summary with freshly computed counters."""
    values = {
        "total_views": rollup.total_views,
        "unique_views": rollup.unique_views,
        "history_daily": rollup.unique_views,
        "history_weekly": rollup.unique_weekly,
        "history_monthly": rollup.unique_monthly,
        "window_hours": window_hours,
        "last_updated": now,
    }
    table = EntityViewSummary.__table__
    stmt = insert_for(db, table).values(entity_id=rollup.entity_id, **values)
    stmt = stmt.on_conflict_do_update(index_elements=[table.c.entity_id], set_=values)
    await db.execute(stmt)
    await db.commit()


async def run_rollup(
    db: AsyncSession,
    window_hours: int = DEFAULT_ROLLUP_WINDOW_HOURS,
    now: datetime | None = None,
) -> RollupResult:
    """Aggregate the trailing `window_hours` of events into entity summaries.

    Raises:
        ValidationError: window outside 1 hour .. retention horizon.
        TransientStoreError: the aggregation query itself failed.
    """
    if not 1 <= window_hours <= MAX_ROLLUP_WINDOW_HOURS:
        raise ValidationError(f"window_hours must be between 1 and {MAX_ROLLUP_WINDOW_HOURS}")
    if now is None:
        now = datetime.now(timezone.utc)

    try:
        rollups = await collect_rollups(db, window_hours, now)
    except TRANSIENT_DB_ERRORS as exc:
        raise TransientStoreError(str(exc)) from exc

    updated = 0
    failed = 0
    for rollup in rollups:
        try:
            await write_summary(db, rollup, window_hours, now)
        except SQLAlchemyError:
            await db.rollback()
            failed += 1
            logger.warning("rollup_entity_failed", entity_id=rollup.entity_id, exc_info=True)
            continue
        updated += 1

    logger.info(
        "rollup_completed",
        window_hours=window_hours,
        entities_updated=updated,
        entities_failed=failed,
    )
    return RollupResult(
        entities_updated=updated,
        entities_failed=failed,
        window_hours=window_hours,
        ran_at=now,
    )
