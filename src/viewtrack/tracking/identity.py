"""Identity resolution for deduplication.

Resolution order: authenticated user id, then the client's anonymous id,
then the session token. Anonymous and session identities are client-supplied
and unverified; they are good enough for telemetry, not for anything that
needs to resist spoofing.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from enum import Enum


class IdentitySource(str, Enum):
    """Where a resolved identity came from."""

    AUTHENTICATED = "authenticated"
    ANONYMOUS = "anonymous"
    SESSION = "session"


@dataclass(frozen=True)
class ResolvedIdentity:
    """A deduplication identity plus its provenance."""

    value: str
    source: IdentitySource

    @property
    def key(self) -> str:
        """Namespaced key, so an anonymous id can never collide with a user id."""
        return f"{self.source.value}:{self.value}"


def generate_session_token() -> str:
    """Random session token for clients that arrive without one."""
    return secrets.token_urlsafe(18)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def resolve_identity(
    viewer_id: str | None,
    anonymous_id: str | None,
    session_token: str | None,
) -> ResolvedIdentity:
    """Resolve a single identity. Always succeeds; generates a session token if needed."""
    if user := _clean(viewer_id):
        return ResolvedIdentity(user, IdentitySource.AUTHENTICATED)
    if anon := _clean(anonymous_id):
        return ResolvedIdentity(anon, IdentitySource.ANONYMOUS)
    return ResolvedIdentity(_clean(session_token) or generate_session_token(), IdentitySource.SESSION)
