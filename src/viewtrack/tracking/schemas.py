"""Tracking Pydantic schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class TrackViewRequest(BaseModel):
    """A view of a vendor profile, or of one listing when sub_entity_id is set."""

    entity_id: str = Field(..., min_length=1, max_length=64)
    sub_entity_id: str | None = Field(None, max_length=64)
    anonymous_id: str | None = Field(None, max_length=128)


class TrackViewResponse(BaseModel):
    accepted: bool
    is_unique: bool
    event_id: str | None = None
