"""CORS middleware configuration."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from viewtrack.config import Settings


def setup_cors(app: FastAPI, settings: Settings) -> None:
    """Allow the storefront (tracking beacon) and vendor dashboard origins.

    Credentials are allowed so the session cookie travels with cross-origin beacons.
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id", "X-RateLimit-Remaining", "X-RateLimit-Limit"],
    )
