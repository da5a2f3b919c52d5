"""Ingestion Gateway — identity resolution, deduplication and the Event Store write.

Exactly one ViewEvent is persisted per accepted call, unique or not, so that
analytics can tell total views from unique views.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from viewtrack.db.models import ViewEvent
from viewtrack.directory.service import get_vendor
from viewtrack.errors import TRANSIENT_DB_ERRORS, NotFoundError, TransientStoreError, ValidationError
from viewtrack.tracking.dedup import DEFAULT_WINDOW_HOURS, claim_unique_view
from viewtrack.tracking.identity import IdentitySource, generate_session_token, resolve_identity

logger = structlog.get_logger()

MAX_ID_LENGTH = 64
MAX_IDENTITY_LENGTH = 128
MAX_USER_AGENT_LENGTH = 512


class ViewKind(str, Enum):
    """Profile-level view or a view of one listing."""

    PROFILE = "profile"
    LISTING = "listing"


@dataclass
class ViewRequestContext:
    """Caller identity and request metadata captured by the HTTP layer."""

    viewer_id: str | None = None
    anonymous_id: str | None = None
    session_token: str | None = None
    client_address: str | None = None
    user_agent: str | None = None
    referrer: str | None = None
    geo: dict[str, Any] | None = field(default=None)


@dataclass(frozen=True)
class RecordViewResult:
    """Outcome of an ingestion call."""

    accepted: bool
    is_unique: bool
    event_id: str | None = None
    identity_source: IdentitySource | None = None

    def to_dict(self) -> dict:
        return {"accepted": self.accepted, "is_unique": self.is_unique, "event_id": self.event_id}


REJECTED = RecordViewResult(accepted=False, is_unique=False)


def _validate_id(name: str, value: str | None, *, required: bool) -> str | None:
    if value is None or not value.strip():
        if required:
            raise ValidationError(f"{name} is required")
        return None
    value = value.strip()
    if len(value) > MAX_ID_LENGTH:
        raise ValidationError(f"{name} must be at most {MAX_ID_LENGTH} characters")
    return value


async def record_view(
    db: AsyncSession,
    entity_id: str | None,
    context: ViewRequestContext,
    sub_entity_id: str | None = None,
    *,
    window_hours: int = DEFAULT_WINDOW_HOURS,
    now: datetime | None = None,
) -> RecordViewResult:
    """Record one view of a vendor (or one of its listings).

    Raises:
        ValidationError: entity_id missing or malformed. Nothing is read or written.
        NotFoundError: no such vendor. Nothing is written.
        TransientStoreError: the store failed; the transaction is rolled back.
        SQLAlchemyError: the store rejected the write; the transaction is rolled back.
    """
    entity_id = _validate_id("entity_id", entity_id, required=True)
    sub_entity_id = _validate_id("sub_entity_id", sub_entity_id, required=False)
    session_token = context.session_token
    if not session_token or len(session_token) > MAX_IDENTITY_LENGTH:
        session_token = generate_session_token()
    identity = resolve_identity(context.viewer_id, context.anonymous_id, session_token)
    if len(identity.value) > MAX_IDENTITY_LENGTH:
        raise ValidationError(f"{identity.source.value} identity must be at most {MAX_IDENTITY_LENGTH} characters")
    if now is None:
        now = datetime.now(timezone.utc)

    try:
        vendor = await get_vendor(db, entity_id)
        if vendor is None:
            raise NotFoundError(f"Vendor {entity_id} not found")

        event_id = str(uuid.uuid4())
        is_unique = await claim_unique_view(db, entity_id, identity, event_id, now, window_hours)

        db.add(ViewEvent(
            id=event_id,
            entity_id=entity_id,
            sub_entity_id=sub_entity_id,
            view_kind=(ViewKind.LISTING if sub_entity_id else ViewKind.PROFILE).value,
            identity=identity.value,
            identity_source=identity.source.value,
            viewer_id=identity.value if identity.source is IdentitySource.AUTHENTICATED else None,
            anonymous_id=identity.value if identity.source is IdentitySource.ANONYMOUS else None,
            session_token=session_token,
            client_address=context.client_address,
            user_agent=(context.user_agent or "")[:MAX_USER_AGENT_LENGTH] or None,
            referrer=context.referrer,
            viewed_at=now,
            is_unique=is_unique,
            geo=context.geo,
        ))
        await db.commit()
    except TRANSIENT_DB_ERRORS as exc:
        await db.rollback()
        raise TransientStoreError(str(exc)) from exc
    except SQLAlchemyError:
        await db.rollback()
        raise

    logger.info(
        "view_recorded",
        entity_id=entity_id,
        sub_entity_id=sub_entity_id,
        identity_source=identity.source.value,
        is_unique=is_unique,
        event_id=event_id,
    )
    return RecordViewResult(
        accepted=True,
        is_unique=is_unique,
        event_id=event_id,
        identity_source=identity.source,
    )


async def record_view_safely(
    db: AsyncSession,
    entity_id: str | None,
    context: ViewRequestContext,
    sub_entity_id: str | None = None,
    *,
    timeout_seconds: float,
    window_hours: int = DEFAULT_WINDOW_HOURS,
) -> RecordViewResult:
    """Best-effort variant for callers whose own request must not fail on tracking.

    Store failures and timeouts are logged and reported as a rejected view.
    NotFoundError and ValidationError still propagate: they describe the input,
    not the store.
    """
    try:
        return await asyncio.wait_for(
            record_view(db, entity_id, context, sub_entity_id, window_hours=window_hours),
            timeout=timeout_seconds,
        )
    except TransientStoreError as exc:
        logger.warning("view_tracking_failed", entity_id=entity_id, reason="store_unavailable", error=str(exc))
    except SQLAlchemyError as exc:
        logger.warning("view_tracking_failed", entity_id=entity_id, reason="store_error", error=str(exc))
    except asyncio.TimeoutError:
        logger.warning("view_tracking_failed", entity_id=entity_id, reason="timeout", timeout=timeout_seconds)
    return REJECTED
