"""Deduplication window semantics."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select

from conftest import TEST_NOW
from viewtrack.database import get_session_factory
from viewtrack.db.models import ViewDedupClaim, ViewEvent
from viewtrack.tracking.dedup import is_duplicate, prune_claims
from viewtrack.tracking.identity import IdentitySource, ResolvedIdentity
from viewtrack.tracking.service import ViewRequestContext, record_view

pytestmark = pytest.mark.asyncio


@pytest.fixture
async def vendor(seed_user):
    return await seed_user("V1", display_name="Vendor One")


async def _unique_flags(db, entity_id: str) -> list[bool]:
    result = await db.execute(
        select(ViewEvent.is_unique).where(ViewEvent.entity_id == entity_id).order_by(ViewEvent.viewed_at)
    )
    return list(result.scalars())


async def test_repeat_views_within_window_counted_once(db_session, vendor):
    """Three views from one anonymous id within an hour: one unique, two duplicates."""
    context = ViewRequestContext(anonymous_id="anon-1")
    results = [
        await record_view(db_session, "V1", context, now=TEST_NOW + timedelta(minutes=20 * i))
        for i in range(3)
    ]

    assert [r.is_unique for r in results] == [True, False, False]
    assert all(r.accepted for r in results)
    assert await _unique_flags(db_session, "V1") == [True, False, False]


async def test_view_after_window_is_unique_again(db_session, seed_user):
    """Views at hour 0 and hour 25 for the same identity are both unique."""
    await seed_user("V2")
    context = ViewRequestContext(anonymous_id="anon-2")

    first = await record_view(db_session, "V2", context, now=TEST_NOW)
    second = await record_view(db_session, "V2", context, now=TEST_NOW + timedelta(hours=25))

    assert first.is_unique is True
    assert second.is_unique is True


async def test_window_is_measured_from_last_view(db_session, vendor):
    """Steady viewing keeps the identity inside the window: only the first view is unique."""
    context = ViewRequestContext(anonymous_id="anon-steady")
    flags = [
        (await record_view(db_session, "V1", context, now=TEST_NOW + timedelta(hours=20 * i))).is_unique
        for i in range(3)
    ]
    assert flags == [True, False, False]


async def test_different_identities_are_independent(db_session, vendor):
    a = await record_view(db_session, "V1", ViewRequestContext(anonymous_id="a"), now=TEST_NOW)
    b = await record_view(db_session, "V1", ViewRequestContext(anonymous_id="b"), now=TEST_NOW)
    assert a.is_unique and b.is_unique


async def test_client_address_is_not_part_of_the_key(db_session, vendor):
    """Two viewers behind the same NAT address are both unique."""
    first = await record_view(
        db_session, "V1", ViewRequestContext(anonymous_id="a", client_address="10.0.0.1"), now=TEST_NOW
    )
    second = await record_view(
        db_session, "V1", ViewRequestContext(anonymous_id="b", client_address="10.0.0.1"), now=TEST_NOW
    )
    assert first.is_unique and second.is_unique


async def test_same_instant_views_only_one_unique(db_session, vendor):
    """Two views stamped with the identical time cannot both claim uniqueness."""
    context = ViewRequestContext(viewer_id="user-1")
    first = await record_view(db_session, "V1", context, now=TEST_NOW)
    second = await record_view(db_session, "V1", context, now=TEST_NOW)
    assert (first.is_unique, second.is_unique) == (True, False)


async def test_concurrent_views_only_one_unique(db_session, vendor):
    """Parallel requests on separate sessions race for one claim; exactly one wins."""
    context = ViewRequestContext(anonymous_id="anon-race")

    async def _record() -> bool:
        async with get_session_factory()() as session:
            return (await record_view(session, "V1", context, now=TEST_NOW)).is_unique

    results = await asyncio.gather(*(_record() for _ in range(8)))

    assert results.count(True) == 1
    assert (await _unique_flags(db_session, "V1")).count(True) == 1
    assert len(await _unique_flags(db_session, "V1")) == 8


async def test_is_duplicate_reads_the_window(db_session, vendor):
    identity = ResolvedIdentity("anon-3", IdentitySource.ANONYMOUS)
    assert await is_duplicate(db_session, "V1", identity, now=TEST_NOW) is False

    await record_view(db_session, "V1", ViewRequestContext(anonymous_id="anon-3"), now=TEST_NOW)

    assert await is_duplicate(db_session, "V1", identity, now=TEST_NOW + timedelta(hours=23)) is True
    assert await is_duplicate(db_session, "V1", identity, now=TEST_NOW + timedelta(hours=25)) is False
    assert await is_duplicate(db_session, "V1", identity, window_hours=48, now=TEST_NOW + timedelta(hours=25))


async def test_prune_claims_removes_only_stale_rows(db_session, vendor):
    await record_view(db_session, "V1", ViewRequestContext(anonymous_id="old"), now=TEST_NOW)
    await record_view(db_session, "V1", ViewRequestContext(anonymous_id="new"), now=TEST_NOW + timedelta(days=2))

    deleted = await prune_claims(db_session, TEST_NOW + timedelta(days=1))
    await db_session.commit()

    assert deleted == 1
    remaining = (await db_session.execute(select(ViewDedupClaim.identity))).scalars().all()
    assert remaining == ["new"]
