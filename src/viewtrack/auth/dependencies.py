"""FastAPI authentication dependencies.

Identity and role come from the token claims; the directory is only consulted
for display metadata, never for authorization.
"""

from __future__ import annotations

from dataclasses import dataclass

import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from viewtrack.auth.jwt import verify_token
from viewtrack.config import get_settings

_bearer = HTTPBearer()
_optional_bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    """The authenticated caller."""

    user_id: str
    role: str


def _principal_from_token(token: str) -> Principal:
    try:
        payload = verify_token(token, expected_type="access")
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e
    return Principal(user_id=str(payload["sub"]), role=str(payload.get("role", "")))


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Security(_bearer),
) -> Principal:
    """Extract and verify the bearer JWT. Raises 401 on failure."""
    return _principal_from_token(credentials.credentials)


async def get_optional_principal(
    credentials: HTTPAuthorizationCredentials | None = Security(_optional_bearer),
) -> Principal | None:
    """Like get_current_principal, but callers without a valid token get None.

    Used on the tracking path, where an expired token must not lose the view.
    """
    if credentials is None:
        return None
    try:
        payload = verify_token(credentials.credentials, expected_type="access")
    except jwt.InvalidTokenError:
        return None
    return Principal(user_id=str(payload["sub"]), role=str(payload.get("role", "")))


async def require_vendor(principal: Principal = Depends(get_current_principal)) -> Principal:
    """Only vendors may read their own analytics."""
    if principal.role != get_settings().vendor_role:
        raise HTTPException(status_code=403, detail="Vendor role required")
    return principal


async def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    """Operator-only endpoints."""
    if principal.role != get_settings().admin_role:
        raise HTTPException(status_code=403, detail="Admin role required")
    return principal
