"""Analytics Pydantic schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class HistoryBuckets(BaseModel):
    """Unique-view counters refreshed by each rollup."""

    daily: int
    weekly: int
    monthly: int


class ViewSummaryResponse(BaseModel):
    """Current counters for one vendor."""

    entity_id: str
    total: int
    unique: int
    last_updated: str | None = None
    window_hours: int | None = None
    history: HistoryBuckets
    is_stale: bool


class TimeSeriesPoint(BaseModel):
    date: str
    total_views: int
    unique_views: int


class TimeSeriesSummary(BaseModel):
    sum_total: int
    sum_unique: int
    avg_daily_unique: float


class TimeSeriesResponse(BaseModel):
    """Zero-filled per-day view counts, oldest day first."""

    entity_id: str
    days: int
    series: list[TimeSeriesPoint]
    summary: TimeSeriesSummary
    generated_at: str


class TopViewer(BaseModel):
    """One ranked viewer, enriched from the user directory when possible."""

    rank: int
    identity: str
    identity_source: str
    view_count: int
    distinct_sub_entities_viewed: int
    last_viewed: str
    display_name: str
    email: str | None = None
    phone: str | None = None


class TopViewersResponse(BaseModel):
    entity_id: str
    days: int
    kind: str
    viewers: list[TopViewer]
    generated_at: str


class EntityTopViewers(BaseModel):
    entity_id: str
    vendor_name: str
    viewers: list[TopViewer]


class AllTopViewersResponse(BaseModel):
    """Top viewers for every vendor viewed in the period."""

    days: int
    kind: str
    entities: list[EntityTopViewers]
    generated_at: str


class RollupRequest(BaseModel):
    """Manual rollup trigger. Omitting window_hours uses the configured window."""

    window_hours: int | None = Field(None, ge=1, le=24 * 90)


class RollupResponse(BaseModel):
    entities_updated: int
    entities_failed: int
    window_hours: int
    ran_at: str


class RetentionResponse(BaseModel):
    events_deleted: int
    claims_deleted: int
    cutoff: str


class ScheduledJobStatus(BaseModel):
    name: str
    running: bool
    interval_seconds: float
    next_run_at: str | None = None
    last_run_at: str | None = None
    last_error: str | None = None
    run_count: int
    failure_count: int


class SchedulerStatusResponse(BaseModel):
    running: bool
    jobs: list[ScheduledJobStatus]
