"""View ingestion endpoint (called by the storefront when a vendor page or listing is shown)."""

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from viewtrack.auth.dependencies import Principal, get_optional_principal
from viewtrack.config import Settings, get_settings
from viewtrack.database import get_session
from viewtrack.middleware.client_ip import get_client_ip
from viewtrack.tracking.identity import generate_session_token
from viewtrack.tracking.schemas import TrackViewRequest, TrackViewResponse
from viewtrack.tracking.service import MAX_IDENTITY_LENGTH, ViewRequestContext, record_view_safely

router = APIRouter(prefix="/api/v1/analytics", tags=["Tracking"])


def _geo_from_headers(request: Request, settings: Settings) -> dict | None:
    """Country code set by the CDN edge, if any."""
    country = request.headers.get(settings.geo_country_header, "").strip().upper()
    if len(country) == 2 and country.isalpha() and country != "XX":
        return {"country": country}
    return None


def _session_token(request: Request, response: Response, settings: Settings) -> str:
    """Reuse the caller's session cookie or issue a new one."""
    token = request.cookies.get(settings.session_cookie_name)
    if token and len(token) <= MAX_IDENTITY_LENGTH:
        return token
    token = generate_session_token()
    response.set_cookie(
        settings.session_cookie_name,
        token,
        max_age=settings.session_cookie_max_age_days * 86400,
        httponly=True,
        samesite="lax",
        secure=settings.environment == "production",
    )
    return token


@router.post("/track-view", response_model=TrackViewResponse)
async def track_view(
    body: TrackViewRequest,
    request: Request,
    response: Response,
    principal: Principal | None = Depends(get_optional_principal),
    db: AsyncSession = Depends(get_session),
) -> dict:
    """Record a view. Unknown vendors get 404; store trouble yields accepted=false, never an error."""
    settings = get_settings()
    context = ViewRequestContext(
        viewer_id=principal.user_id if principal else None,
        anonymous_id=body.anonymous_id,
        session_token=_session_token(request, response, settings),
        client_address=get_client_ip(request, settings.trust_forwarded_for),
        user_agent=request.headers.get("User-Agent"),
        referrer=request.headers.get("Referer"),
        geo=_geo_from_headers(request, settings),
    )
    result = await record_view_safely(
        db,
        body.entity_id,
        context,
        body.sub_entity_id,
        timeout_seconds=settings.ingestion_timeout_seconds,
        window_hours=settings.dedup_window_hours,
    )
    return result.to_dict()
