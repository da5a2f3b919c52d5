"""Error taxonomy for the view tracking engine.

NotFoundError and ValidationError are raised before anything is persisted.
TransientStoreError wraps store outages; the ingestion path swallows it,
every other caller sees it as an explicit failure.
"""

from __future__ import annotations

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

TRANSIENT_DB_ERRORS: tuple[type[Exception], ...] = (
    OperationalError,
    InterfaceError,
    PoolTimeoutError,
)


class ViewTrackingError(Exception):
    """Base class for engine errors."""


class NotFoundError(ViewTrackingError):
    """Target entity does not exist or is not a vendor."""


class ValidationError(ViewTrackingError):
    """Required identifiers are missing or malformed."""


class TransientStoreError(ViewTrackingError):
    """The store is unavailable or timed out."""
