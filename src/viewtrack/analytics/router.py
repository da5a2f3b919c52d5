"""Analytics endpoints — vendor dashboard reads and operator actions."""

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from viewtrack.analytics.retention import reap_expired_views
from viewtrack.analytics.rollup import run_rollup
from viewtrack.analytics.schemas import (
    AllTopViewersResponse,
    RetentionResponse,
    RollupRequest,
    RollupResponse,
    SchedulerStatusResponse,
    TimeSeriesResponse,
    TopViewersResponse,
    ViewSummaryResponse,
)
from viewtrack.analytics.service import (
    TopViewerKind,
    get_summary,
    get_time_series,
    get_top_identities,
    get_top_identities_all_entities,
)
from viewtrack.auth.dependencies import Principal, require_admin, require_vendor
from viewtrack.config import get_settings
from viewtrack.database import get_session
from viewtrack.redis_client import get_redis_or_none
from viewtrack.workers.jobs import RETENTION_JOB, ROLLUP_JOB
from viewtrack.workers.scheduler import JobScheduler

router = APIRouter(prefix="/api/v1/analytics", tags=["Analytics"])


def _running_scheduler(request: Request) -> JobScheduler | None:
    scheduler = getattr(request.app.state, "scheduler", None)
    return scheduler if scheduler is not None and scheduler.running else None


# ---------------------------------------------------------------------------
# Vendor dashboard
# ---------------------------------------------------------------------------


@router.get("/vendor/view-count", response_model=ViewSummaryResponse)
async def vendor_view_count(
    vendor: Principal = Depends(require_vendor),
    db: AsyncSession = Depends(get_session),
) -> dict:
    """Current total/unique counters and history buckets for the calling vendor."""
    settings = get_settings()
    return await get_summary(db, vendor.user_id, stale_after_hours=settings.summary_stale_after_hours)


@router.get("/vendor/views", response_model=TimeSeriesResponse)
async def vendor_views(
    days: int | None = Query(None, ge=1, le=90),
    vendor: Principal = Depends(require_vendor),
    db: AsyncSession = Depends(get_session),
) -> dict:
    """Daily views over the last `days` days (cached briefly in Redis)."""
    settings = get_settings()
    return await get_time_series(
        db,
        vendor.user_id,
        days or settings.timeseries_default_days,
        redis=get_redis_or_none(),
        cache_ttl=settings.analytics_cache_ttl_seconds,
    )


@router.get("/vendor/top-viewers", response_model=TopViewersResponse)
async def vendor_top_viewers(
    days: int | None = Query(None, ge=1, le=90),
    limit: int | None = Query(None, ge=1, le=50),
    kind: TopViewerKind = Query(TopViewerKind.LISTING),
    vendor: Principal = Depends(require_vendor),
    db: AsyncSession = Depends(get_session),
) -> dict:
    """Most frequent viewers of the calling vendor's listings or profile."""
    settings = get_settings()
    return await get_top_identities(
        db,
        vendor.user_id,
        days or settings.top_viewers_default_days,
        limit or settings.top_viewers_default_limit,
        kind,
        redis=get_redis_or_none(),
        cache_ttl=settings.analytics_cache_ttl_seconds,
    )


# ---------------------------------------------------------------------------
# Operator actions
# ---------------------------------------------------------------------------


@router.post("/admin/rollup", response_model=RollupResponse)
async def admin_rollup(
    request: Request,
    body: RollupRequest | None = Body(None),
    _admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> dict:
    """Run the rollup now, optionally over a custom window (recovery, backfill).

    With the in-process scheduler running, the run goes through its job lock so
    it never overlaps a scheduled rollup.
    """
    settings = get_settings()
    window_hours = (body.window_hours if body else None) or settings.rollup_window_hours
    scheduler = _running_scheduler(request)
    if scheduler is not None:
        result = await scheduler.trigger(ROLLUP_JOB, window_hours=window_hours)
    else:
        result = await run_rollup(db, window_hours=window_hours)
    return result.to_dict()


@router.post("/admin/retention", response_model=RetentionResponse)
async def admin_retention(
    request: Request,
    _admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> dict:
    """Run a retention sweep now."""
    scheduler = _running_scheduler(request)
    if scheduler is not None:
        return (await scheduler.trigger(RETENTION_JOB)).to_dict()
    settings = get_settings()
    result = await reap_expired_views(
        db,
        retention_days=settings.retention_days,
        batch_size=settings.retention_batch_size,
        dedup_window_hours=settings.dedup_window_hours,
    )
    return result.to_dict()


@router.get("/admin/top-viewers", response_model=AllTopViewersResponse)
async def admin_top_viewers(
    days: int | None = Query(None, ge=1, le=90),
    limit: int | None = Query(None, ge=1, le=50),
    kind: TopViewerKind = Query(TopViewerKind.LISTING),
    _admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> dict:
    """Top viewers for every vendor viewed in the period."""
    settings = get_settings()
    return await get_top_identities_all_entities(
        db,
        days or settings.top_viewers_default_days,
        limit or settings.top_viewers_default_limit,
        kind,
        redis=get_redis_or_none(),
        cache_ttl=settings.analytics_cache_ttl_seconds,
    )


@router.get("/admin/scheduler", response_model=SchedulerStatusResponse)
async def admin_scheduler_status(
    request: Request,
    _admin: Principal = Depends(require_admin),
) -> dict:
    """State of the in-process rollup and retention timers."""
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=404, detail="Scheduler is not running in this process")
    return scheduler.get_status()
