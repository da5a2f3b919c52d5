"""Read-only adapter over the marketplace user directory.

Used for two things: checking that a view targets an existing vendor, and
enriching top-viewer rows with display names and contact fields.
"""

from __future__ import annotations

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from viewtrack.config import get_settings
from viewtrack.db.models import User

logger = structlog.get_logger()

UNKNOWN_DISPLAY_NAME = "Unknown"


async def get_user(db: AsyncSession, user_id: str) -> User | None:
    """Get a directory user by id."""
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_vendor(db: AsyncSession, entity_id: str) -> User | None:
    """Get the vendor with this id, or None if missing or not a vendor."""
    user = await get_user(db, entity_id)
    if user is None or user.role != get_settings().vendor_role:
        return None
    return user


def display_name_for(user: User) -> str:
    """Best human-readable name for a directory user."""
    return user.display_name or user.business_name or user.email or UNKNOWN_DISPLAY_NAME


async def get_display_profiles(db: AsyncSession, user_ids: list[str]) -> dict[str, dict]:
    """Batch-load display metadata. Lookup failures degrade to an empty mapping."""
    if not user_ids:
        return {}
    try:
        result = await db.execute(select(User).where(User.id.in_(user_ids)))
    except SQLAlchemyError:
        logger.warning("directory_lookup_failed", user_count=len(user_ids), exc_info=True)
        return {}

    return {
        user.id: {
            "display_name": display_name_for(user),
            "email": user.email,
            "phone": user.phone,
        }
        for user in result.scalars()
    }
