"""Read side for vendor dashboards.

Summaries come straight from entity_view_summaries. Time series and top
viewers need per-day or per-identity grouping, so they scan view_events and
are cached in Redis for a few seconds to absorb dashboard polling.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Any

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError
from sqlalchemy import Date, case, cast, distinct, func, literal_column, select
from sqlalchemy.ext.asyncio import AsyncSession

from viewtrack.analytics.retention import RETENTION_DAYS
from viewtrack.db.models import EntityViewSummary, ViewEvent
from viewtrack.directory.service import UNKNOWN_DISPLAY_NAME, get_display_profiles
from viewtrack.errors import TRANSIENT_DB_ERRORS, TransientStoreError, ValidationError
from viewtrack.tracking.identity import IdentitySource

logger = structlog.get_logger()

TIMESERIES_CACHE_KEY = "analytics:timeseries:{entity_id}:{days}"
TOP_VIEWERS_CACHE_KEY = "analytics:top:{entity_id}:{days}:{limit}:{kind}"
TOP_VIEWERS_ALL_CACHE_KEY = "analytics:top-all:{days}:{limit}:{kind}"
DEFAULT_CACHE_TTL = 10  # seconds

DEFAULT_TIMESERIES_DAYS = 30
DEFAULT_TOP_DAYS = 7
DEFAULT_TOP_LIMIT = 3
MAX_TOP_LIMIT = 50
DEFAULT_STALE_AFTER_HOURS = 26


class TopViewerKind(str, Enum):
    """Which views count towards the top-viewer ranking."""

    LISTING = "listing"
    PROFILE = "profile"
    ALL = "all"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _check_days(days: int) -> None:
    if not 1 <= days <= RETENTION_DAYS:
        raise ValidationError(f"days must be between 1 and {RETENTION_DAYS}")


async def _execute(db: AsyncSession, stmt: Any) -> Any:  # noqa: ANN401
    try:
        return await db.execute(stmt)
    except TRANSIENT_DB_ERRORS as exc:
        raise TransientStoreError(str(exc)) from exc


async def _cached(
    redis: aioredis.Redis | None,
    key: str,
    ttl: int,
    build: Callable[[], Awaitable[dict]],
) -> dict:
    """Serve `key` from Redis if present, otherwise build and store it.

    Redis is an accelerator only: when it is missing or failing the query runs uncached.
    """
    if redis is not None:
        try:
            cached = await redis.get(key)
        except RedisError:
            logger.warning("analytics_cache_unavailable", key=key, exc_info=True)
            cached = None
        if cached:
            return json.loads(cached)

    payload = await build()

    if redis is not None:
        try:
            await redis.setex(key, ttl, json.dumps(payload))
        except RedisError:
            logger.warning("analytics_cache_unavailable", key=key, exc_info=True)
    return payload


def day_bucket(db: AsyncSession, column: Any) -> Any:  # noqa: ANN401
    """UTC calendar day of a timestamp column, as a SQL expression."""
    dialect = db.bind.dialect.name if db.bind is not None else ""
    if dialect == "postgresql":
        # literal_column keeps GROUP BY textually identical to the SELECT expression
        return cast(func.timezone(literal_column("'UTC'"), column), Date)
    return func.date(column)


def fill_series(first_day: date, days: int, counts: dict[str, tuple[int, int]]) -> list[dict]:
    """One row per calendar day starting at first_day, zero-filled where nothing was viewed."""
    series = []
    for offset in range(days):
        day = (first_day + timedelta(days=offset)).isoformat()
        total, unique = counts.get(day, (0, 0))
        series.append({"date": day, "total_views": total, "unique_views": unique})
    return series


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------


async def get_summary(
    db: AsyncSession,
    entity_id: str,
    stale_after_hours: int = DEFAULT_STALE_AFTER_HOURS,
    now: datetime | None = None,
) -> dict:
    """Current counters for an entity.

    An entity that no rollup has touched yet reads as zeros with last_updated=None
    and is_stale=True, so the dashboard can show "pending update".
    """
    if now is None:
        now = _utcnow()
    result = await _execute(db, select(EntityViewSummary).where(EntityViewSummary.entity_id == entity_id))
    summary = result.scalar_one_or_none()

    if summary is None:
        return {
            "entity_id": entity_id,
            "total": 0,
            "unique": 0,
            "last_updated": None,
            "window_hours": None,
            "history": {"daily": 0, "weekly": 0, "monthly": 0},
            "is_stale": True,
        }

    last_updated = summary.last_updated
    is_stale = last_updated is None or now - last_updated > timedelta(hours=stale_after_hours)
    return {
        "entity_id": entity_id,
        "total": summary.total_views,
        "unique": summary.unique_views,
        "last_updated": last_updated.isoformat() if last_updated else None,
        "window_hours": summary.window_hours,
        "history": {
            "daily": summary.history_daily,
            "weekly": summary.history_weekly,
            "monthly": summary.history_monthly,
        },
        "is_stale": is_stale,
    }


# ---------------------------------------------------------------------------
# Time series
# ---------------------------------------------------------------------------


async def _build_time_series(db: AsyncSession, entity_id: str, days: int, now: datetime) -> dict:
    first_day = now.date() - timedelta(days=days - 1)
    start = datetime.combine(first_day, time.min, tzinfo=timezone.utc)

    day = day_bucket(db, ViewEvent.viewed_at).label("day")
    unique_views = func.coalesce(func.sum(case((ViewEvent.is_unique == True, 1), else_=0)), 0)  # noqa: E712
    result = await _execute(
        db,
        select(day, func.count(ViewEvent.id).label("total_views"), unique_views.label("unique_views"))
        .where(ViewEvent.entity_id == entity_id, ViewEvent.viewed_at >= start)
        .group_by(day)
        .order_by(day),
    )
    counts = {str(row.day): (int(row.total_views), int(row.unique_views)) for row in result.all()}

    series = fill_series(first_day, days, counts)
    sum_total = sum(row["total_views"] for row in series)
    sum_unique = sum(row["unique_views"] for row in series)
    return {
        "entity_id": entity_id,
        "days": days,
        "series": series,
        "summary": {
            "sum_total": sum_total,
            "sum_unique": sum_unique,
            "avg_daily_unique": round(sum_unique / days, 1),
        },
        "generated_at": now.isoformat(),
    }


async def get_time_series(
    db: AsyncSession,
    entity_id: str,
    days: int = DEFAULT_TIMESERIES_DAYS,
    *,
    redis: aioredis.Redis | None = None,
    cache_ttl: int = DEFAULT_CACHE_TTL,
    now: datetime | None = None,
) -> dict:
    """Per-UTC-day totals for the last `days` calendar days, oldest first."""
    _check_days(days)
    if now is None:
        now = _utcnow()
    key = TIMESERIES_CACHE_KEY.format(entity_id=entity_id, days=days)
    return await _cached(redis, key, cache_ttl, lambda: _build_time_series(db, entity_id, days, now))


# ---------------------------------------------------------------------------
# Top viewers
# ---------------------------------------------------------------------------


def _parse_kind(kind: str | TopViewerKind) -> TopViewerKind:
    try:
        return TopViewerKind(kind)
    except ValueError:
        raise ValidationError(f"kind must be one of: {', '.join(k.value for k in TopViewerKind)}") from None


def _check_limit(limit: int) -> None:
    if not 1 <= limit <= MAX_TOP_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_TOP_LIMIT}")


def _top_viewers_query(days_start: datetime, kind: TopViewerKind) -> tuple[Any, Any, Any]:
    view_count = func.count(ViewEvent.id).label("view_count")
    last_viewed = func.max(ViewEvent.viewed_at).label("last_viewed")
    stmt = select(
        ViewEvent.identity,
        ViewEvent.identity_source,
        view_count,
        func.count(distinct(ViewEvent.sub_entity_id)).label("distinct_sub_entities"),
        last_viewed,
    ).where(ViewEvent.viewed_at >= days_start)
    if kind is TopViewerKind.LISTING:
        stmt = stmt.where(ViewEvent.sub_entity_id.is_not(None))
    elif kind is TopViewerKind.PROFILE:
        stmt = stmt.where(ViewEvent.sub_entity_id.is_(None))
    return stmt, view_count, last_viewed


def _viewer_row(rank: int, row: Any, profiles: dict[str, dict]) -> dict:  # noqa: ANN401
    profile = profiles.get(row.identity) if row.identity_source == IdentitySource.AUTHENTICATED.value else None
    return {
        "rank": rank,
        "identity": row.identity,
        "identity_source": row.identity_source,
        "view_count": int(row.view_count),
        "distinct_sub_entities_viewed": int(row.distinct_sub_entities),
        "last_viewed": row.last_viewed.isoformat(),
        "display_name": profile["display_name"] if profile else UNKNOWN_DISPLAY_NAME,
        "email": profile["email"] if profile else None,
        "phone": profile["phone"] if profile else None,
    }


def _authenticated_ids(rows: list[Any]) -> list[str]:
    return sorted({row.identity for row in rows if row.identity_source == IdentitySource.AUTHENTICATED.value})


async def _build_top_identities(
    db: AsyncSession,
    entity_id: str,
    days: int,
    limit: int,
    kind: TopViewerKind,
    now: datetime,
) -> dict:
    stmt, view_count, last_viewed = _top_viewers_query(now - timedelta(days=days), kind)
    stmt = (
        stmt.where(ViewEvent.entity_id == entity_id)
        .group_by(ViewEvent.identity, ViewEvent.identity_source)
        .order_by(view_count.desc(), last_viewed.desc(), ViewEvent.identity.asc())
        .limit(limit)
    )
    rows = (await _execute(db, stmt)).all()
    profiles = await get_display_profiles(db, _authenticated_ids(rows))
    return {
        "entity_id": entity_id,
        "days": days,
        "kind": kind.value,
        "viewers": [_viewer_row(rank, row, profiles) for rank, row in enumerate(rows, start=1)],
        "generated_at": now.isoformat(),
    }


async def get_top_identities(
    db: AsyncSession,
    entity_id: str,
    days: int = DEFAULT_TOP_DAYS,
    limit: int = DEFAULT_TOP_LIMIT,
    kind: str | TopViewerKind = TopViewerKind.LISTING,
    *,
    redis: aioredis.Redis | None = None,
    cache_ttl: int = DEFAULT_CACHE_TTL,
    now: datetime | None = None,
) -> dict:
    """Most frequent viewers of one entity.

    Ranked by view count, then most recent view, then identity. Only
    authenticated identities can be looked up in the directory; everyone else
    is reported as "Unknown".
    """
    _check_days(days)
    _check_limit(limit)
    kind = _parse_kind(kind)
    if now is None:
        now = _utcnow()
    key = TOP_VIEWERS_CACHE_KEY.format(entity_id=entity_id, days=days, limit=limit, kind=kind.value)
    return await _cached(
        redis, key, cache_ttl, lambda: _build_top_identities(db, entity_id, days, limit, kind, now)
    )


async def _build_top_identities_all(
    db: AsyncSession,
    days: int,
    limit: int,
    kind: TopViewerKind,
    now: datetime,
) -> dict:
    stmt, view_count, last_viewed = _top_viewers_query(now - timedelta(days=days), kind)
    stmt = (
        stmt.add_columns(ViewEvent.entity_id)
        .group_by(ViewEvent.entity_id, ViewEvent.identity, ViewEvent.identity_source)
        .order_by(ViewEvent.entity_id.asc(), view_count.desc(), last_viewed.desc(), ViewEvent.identity.asc())
    )
    rows = (await _execute(db, stmt)).all()

    per_entity: dict[str, list[Any]] = {}
    for row in rows:
        bucket = per_entity.setdefault(row.entity_id, [])
        if len(bucket) < limit:
            bucket.append(row)

    kept = [row for bucket in per_entity.values() for row in bucket]
    profiles = await get_display_profiles(db, sorted(set(_authenticated_ids(kept)) | set(per_entity)))

    entities = []
    for entity_id, bucket in per_entity.items():
        vendor = profiles.get(entity_id)
        entities.append({
            "entity_id": entity_id,
            "vendor_name": vendor["display_name"] if vendor else UNKNOWN_DISPLAY_NAME,
            "viewers": [_viewer_row(rank, row, profiles) for rank, row in enumerate(bucket, start=1)],
        })
    return {
        "days": days,
        "kind": kind.value,
        "entities": entities,
        "generated_at": now.isoformat(),
    }


async def get_top_identities_all_entities(
    db: AsyncSession,
    days: int = DEFAULT_TOP_DAYS,
    limit: int = DEFAULT_TOP_LIMIT,
    kind: str | TopViewerKind = TopViewerKind.LISTING,
    *,
    redis: aioredis.Redis | None = None,
    cache_ttl: int = DEFAULT_CACHE_TTL,
    now: datetime | None = None,
) -> dict:
    """Top viewers for every entity viewed in the period, ordered by entity id."""
    _check_days(days)
    _check_limit(limit)
    kind = _parse_kind(kind)
    if now is None:
        now = _utcnow()
    key = TOP_VIEWERS_ALL_CACHE_KEY.format(days=days, limit=limit, kind=kind.value)
    return await _cached(redis, key, cache_ttl, lambda: _build_top_identities_all(db, days, limit, kind, now))
