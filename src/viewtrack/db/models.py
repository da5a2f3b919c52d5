"""ORM models for the view tracking engine.

view_events, view_dedup_claims and entity_view_summaries are owned by this
service (see alembic/versions). The users table belongs to the marketplace
backend and is mapped read-only with extend_existing=True.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from viewtrack.db.base import Base
from viewtrack.db.types import UTCDateTime

_JSON = JSON().with_variant(JSONB(), "postgresql")


# ---------------------------------------------------------------------------
# External: user directory (vendors, customers, admins)
# ---------------------------------------------------------------------------


class User(Base):
    """Maps to the marketplace 'users' table. Never written by this service."""

    __tablename__ = "users"
    __table_args__ = {"extend_existing": True}  # noqa: RUF012

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    business_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)


# ---------------------------------------------------------------------------
# Event Store
# ---------------------------------------------------------------------------


class ViewEvent(Base):
    """One row per recorded view attempt. Immutable once written."""

    __tablename__ = "view_events"
    __table_args__ = (
        Index("ix_view_events_dedup_lookup", "entity_id", "identity_source", "identity", "viewed_at"),
        Index("ix_view_events_entity_time", "entity_id", "viewed_at"),
        Index("ix_view_events_viewed_at", "viewed_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    sub_entity_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    view_kind: Mapped[str] = mapped_column(String(16), nullable=False, default="profile")
    identity: Mapped[str] = mapped_column(String(128), nullable=False)
    identity_source: Mapped[str] = mapped_column(String(16), nullable=False)
    viewer_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    anonymous_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    session_token: Mapped[str] = mapped_column(String(128), nullable=False)
    client_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    referrer: Mapped[str | None] = mapped_column(Text, nullable=True)
    viewed_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    is_unique: Mapped[bool] = mapped_column(Boolean, nullable=False)
    geo: Mapped[dict[str, Any] | None] = mapped_column(_JSON, nullable=True)


class ViewDedupClaim(Base):
    """Atomic uniqueness guard: one row per (entity, identity).

    last_seen_at moves on every view; last_unique_at and last_unique_event_id
    only move when the previous view is older than the dedup window.
    """

    __tablename__ = "view_dedup_claims"
    __table_args__ = (Index("ix_view_dedup_claims_last_seen", "last_seen_at"),)

    entity_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    identity_source: Mapped[str] = mapped_column(String(16), primary_key=True)
    identity: Mapped[str] = mapped_column(String(128), primary_key=True)
    last_seen_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    last_unique_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    last_unique_event_id: Mapped[str] = mapped_column(String(36), nullable=False)


# ---------------------------------------------------------------------------
# Summary Store
# ---------------------------------------------------------------------------


class EntityViewSummary(Base):
    """Denormalized per-vendor counters, overwritten by each rollup."""

    __tablename__ = "entity_view_summaries"

    entity_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    total_views: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unique_views: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    history_daily: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    history_weekly: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    history_monthly: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    window_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=24)
    last_updated: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
