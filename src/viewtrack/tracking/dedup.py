"""Deduplication Guard.

A view is unique when no other view of the same entity by the same identity
happened in the trailing window. Client address is never part of the key:
shared NATs and office networks would otherwise swallow distinct viewers.

The write path decides uniqueness with a single upsert on view_dedup_claims
instead of read-then-insert, so two concurrent requests for the same pair
cannot both come out unique.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import case, delete, exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from viewtrack.db.models import ViewDedupClaim, ViewEvent
from viewtrack.db.upsert import insert_for
from viewtrack.tracking.identity import ResolvedIdentity

DEFAULT_WINDOW_HOURS = 24


def window_cutoff(now: datetime, window_hours: int) -> datetime:
    """Earliest timestamp that still counts as inside the window."""
    return now - timedelta(hours=window_hours)


async def is_duplicate(
    db: AsyncSession,
    entity_id: str,
    identity: ResolvedIdentity,
    window_hours: int = DEFAULT_WINDOW_HOURS,
    now: datetime | None = None,
) -> bool:
    """Read-only check: is there any recorded view of entity_id by identity inside the window?"""
    if now is None:
        now = datetime.now(timezone.utc)
    cutoff = window_cutoff(now, window_hours)
    result = await db.execute(
        select(
            exists().where(
                ViewEvent.entity_id == entity_id,
                ViewEvent.identity_source == identity.source.value,
                ViewEvent.identity == identity.value,
                ViewEvent.viewed_at >= cutoff,
            )
        )
    )
    return bool(result.scalar())


async def claim_unique_view(
    db: AsyncSession,
    entity_id: str,
    identity: ResolvedIdentity,
    event_id: str,
    now: datetime,
    window_hours: int = DEFAULT_WINDOW_HOURS,
) -> bool:
    """Record view `event_id` against the claim row and report whether it is unique.

    Does not commit; the caller commits together with the ViewEvent insert.
    """
    cutoff = window_cutoff(now, window_hours)
    table = ViewDedupClaim.__table__
    stmt = insert_for(db, table).values(
        entity_id=entity_id,
        identity_source=identity.source.value,
        identity=identity.value,
        last_seen_at=now,
        last_unique_at=now,
        last_unique_event_id=event_id,
    )
    # SET expressions read the pre-update row, so last_seen_at below is the previous view.
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.entity_id, table.c.identity_source, table.c.identity],
        set_={
            "last_unique_at": case(
                (table.c.last_seen_at < cutoff, stmt.excluded.last_seen_at),
                else_=table.c.last_unique_at,
            ),
            "last_unique_event_id": case(
                (table.c.last_seen_at < cutoff, stmt.excluded.last_unique_event_id),
                else_=table.c.last_unique_event_id,
            ),
            "last_seen_at": stmt.excluded.last_seen_at,
        },
    ).returning(table.c.last_unique_event_id)

    result = await db.execute(stmt)
    return result.scalar_one() == event_id


async def prune_claims(db: AsyncSession, older_than: datetime) -> int:
    """Drop claim rows whose last view is older than `older_than`. Does not commit."""
    result = await db.execute(delete(ViewDedupClaim).where(ViewDedupClaim.last_seen_at < older_than))
    return result.rowcount or 0
