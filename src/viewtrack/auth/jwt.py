"""JWT verification for tokens issued by the marketplace auth service.

This service never issues tokens. In production they are RS256-signed and
verified with the auth service's public key; when jwt_secret is set and the
algorithm is HS*, the shared secret is used instead (local runs, tests).
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import jwt

from viewtrack.config import get_settings

_public_key: str | None = None


def _verification_key() -> str:
    """Public key from disk (cached after first call), or the shared HS secret."""
    global _public_key  # noqa: PLW0603
    settings = get_settings()
    if settings.jwt_algorithm.startswith("HS"):
        if not settings.jwt_secret:
            msg = "jwt_secret must be set for HMAC algorithms"
            raise jwt.InvalidTokenError(msg)
        return settings.jwt_secret
    if _public_key is None:
        _public_key = Path(settings.jwt_public_key_path).read_text()
    return _public_key


def reset_keys() -> None:
    """Reset cached keys (useful for testing)."""
    global _public_key  # noqa: PLW0603
    _public_key = None


def verify_token(token: str, expected_type: str = "access") -> dict[str, Any]:
    """
    Verify and decode a JWT token.

    Args:
        token: The encoded JWT string.
        expected_type: Expected token type claim.

    Returns:
        Decoded payload dictionary.

    Raises:
        jwt.InvalidTokenError: If the token is invalid, expired, or wrong type.
    """
    settings = get_settings()
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            _verification_key(),
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        msg = "Token has expired"
        raise jwt.InvalidTokenError(msg) from None

    if payload.get("type", expected_type) != expected_type:
        msg = f"Expected token type '{expected_type}', got '{payload.get('type')}'"
        raise jwt.InvalidTokenError(msg)

    return payload
