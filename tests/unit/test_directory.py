"""User directory adapter."""

from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from viewtrack.directory.service import get_display_profiles, get_vendor

pytestmark = pytest.mark.asyncio


async def test_get_vendor_checks_role(db_session, seed_user):
    await seed_user("V1", role="vendor")
    await seed_user("C1", role="customer")

    assert (await get_vendor(db_session, "V1")).id == "V1"
    assert await get_vendor(db_session, "C1") is None
    assert await get_vendor(db_session, "missing") is None


async def test_display_profiles_fall_back_through_name_fields(db_session, seed_user):
    await seed_user("u1", role="customer", display_name="Display")
    await seed_user("u2", role="vendor", business_name="Business")
    await seed_user("u3", role="customer", email="only@example.com")
    await seed_user("u4", role="customer")

    profiles = await get_display_profiles(db_session, ["u1", "u2", "u3", "u4", "missing"])

    assert {uid: p["display_name"] for uid, p in profiles.items()} == {
        "u1": "Display",
        "u2": "Business",
        "u3": "only@example.com",
        "u4": "Unknown",
    }


async def test_display_profiles_lookup_failure_returns_empty(db_session, monkeypatch):
    async def broken(*_args, **_kwargs):
        raise OperationalError("SELECT", {}, Exception("relation users does not exist"))

    monkeypatch.setattr(db_session, "execute", broken)
    assert await get_display_profiles(db_session, ["u1"]) == {}


async def test_display_profiles_empty_input_skips_query(db_session, monkeypatch):
    async def never(*_args, **_kwargs):
        raise AssertionError("should not query")

    monkeypatch.setattr(db_session, "execute", never)
    assert await get_display_profiles(db_session, []) == {}
