"""Shared test fixtures."""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timedelta, timezone

# Must be in place before anything imports viewtrack.main (which builds the app at import time)
os.environ.setdefault("VIEWTRACK_JWT_ALGORITHM", "HS256")
os.environ.setdefault("VIEWTRACK_JWT_SECRET", "test-secret-key-with-enough-length-for-hs256")
os.environ.setdefault("VIEWTRACK_SCHEDULER_ENABLED", "false")
os.environ.setdefault("VIEWTRACK_LOG_FORMAT", "console")

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from viewtrack import redis_client
from viewtrack.auth.jwt import reset_keys
from viewtrack.config import get_settings
from viewtrack.database import close_db, get_engine, get_session_factory, init_db
from viewtrack.db.base import Base
from viewtrack.db.models import User, ViewEvent
from viewtrack.main import create_app

TEST_NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class FakeRedis:
    """In-memory stand-in for the handful of Redis commands the service uses."""

    def __init__(self) -> None:
        self.store: dict[str, object] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key: str) -> object:
        return self.store.get(key)

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    async def ping(self) -> bool:
        return True

    def pipeline(self) -> _FakePipeline:
        return _FakePipeline(self)


class _FakePipeline:
    def __init__(self, redis: FakeRedis) -> None:
        self._redis = redis
        self._ops: list[tuple[str, str]] = []

    def incr(self, key: str) -> None:
        self._ops.append(("incr", key))

    def expire(self, key: str, _seconds: int) -> None:
        self._ops.append(("expire", key))

    async def execute(self) -> list[object]:
        results: list[object] = []
        for op, key in self._ops:
            if op == "incr":
                value = int(self._redis.store.get(key, 0)) + 1  # type: ignore[arg-type]
                self._redis.store[key] = value
                results.append(value)
            else:
                results.append(True)
        self._ops = []
        return results


@pytest.fixture(autouse=True)
def _isolated_settings(tmp_path, monkeypatch) -> None:
    """Fresh SQLite database file and settings per test."""
    monkeypatch.setenv("VIEWTRACK_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'viewtrack.db'}")
    get_settings.cache_clear()
    reset_keys()
    yield
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[None, None]:
    """Initialize the engine and create all tables from the ORM metadata."""
    await init_db(get_settings().database_url)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await close_db()


@pytest_asyncio.fixture
async def db_session(database) -> AsyncGenerator[AsyncSession, None]:
    """Get a direct database session for test setup and assertions."""
    async with get_session_factory()() as session:
        yield session


@pytest_asyncio.fixture
async def client(database) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client against a freshly built app (no Redis unless fake_redis is used)."""
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def fake_redis(monkeypatch) -> FakeRedis:
    """Install an in-memory Redis as the shared pool."""
    fake = FakeRedis()
    monkeypatch.setattr(redis_client, "_pool", fake)
    return fake


@pytest.fixture
def make_token() -> Callable[..., str]:
    """Mint an access token the way the marketplace auth service does."""

    def _make(user_id: str, role: str = "vendor", expires_in: timedelta = timedelta(hours=1)) -> str:
        settings = get_settings()
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user_id,
            "role": role,
            "iat": now,
            "exp": now + expires_in,
            "iss": settings.jwt_issuer,
            "type": "access",
        }
        return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)

    return _make


@pytest.fixture
def seed_user(db_session: AsyncSession) -> Callable[..., Awaitable[User]]:
    """Insert a directory user."""

    async def _seed(user_id: str, role: str = "vendor", **fields: object) -> User:
        user = User(id=user_id, role=role, **fields)
        db_session.add(user)
        await db_session.commit()
        return user

    return _seed


@pytest.fixture
def add_event(db_session: AsyncSession) -> Callable[..., Awaitable[ViewEvent]]:
    """Insert a raw view event, bypassing ingestion (for analytics tests)."""

    async def _add(
        entity_id: str,
        identity: str,
        viewed_at: datetime,
        *,
        is_unique: bool = True,
        sub_entity_id: str | None = None,
        source: str = "anonymous",
    ) -> ViewEvent:
        event = ViewEvent(
            entity_id=entity_id,
            sub_entity_id=sub_entity_id,
            view_kind="listing" if sub_entity_id else "profile",
            identity=identity,
            identity_source=source,
            viewer_id=identity if source == "authenticated" else None,
            anonymous_id=identity if source == "anonymous" else None,
            session_token="sess-" + identity,
            viewed_at=viewed_at,
            is_unique=is_unique,
        )
        db_session.add(event)
        await db_session.commit()
        return event

    return _add
