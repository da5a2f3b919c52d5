"""Health, readiness, and version endpoints."""

from __future__ import annotations

from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from viewtrack.main import create_app
from viewtrack.workers.scheduler import JobScheduler

pytestmark = pytest.mark.asyncio


async def test_health(client: AsyncClient) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


async def test_version(client: AsyncClient) -> None:
    response = await client.get("/version")
    assert response.status_code == 200
    data = response.json()
    assert data["service"] == "viewtrack"
    assert "version" in data
    assert "environment" in data


async def test_ready_degraded_without_redis(client: AsyncClient) -> None:
    """Database is reachable but Redis was never initialized."""
    response = await client.get("/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["checks"]["database"] == "ok"
    assert data["checks"]["redis"].startswith("error")
    assert data["status"] == "degraded"


async def test_ready_with_redis(client: AsyncClient, fake_redis) -> None:
    response = await client.get("/ready")
    assert response.json()["status"] == "ready"


async def test_ready_reports_scheduler_state(database, fake_redis) -> None:
    async def noop():
        return None

    app = create_app()
    scheduler = JobScheduler()
    scheduler.add_job("rollup", noop, timedelta(hours=24))
    app.state.scheduler = scheduler

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        stopped = (await ac.get("/ready")).json()
        scheduler.start()
        try:
            running = (await ac.get("/ready")).json()
        finally:
            await scheduler.stop()

    assert stopped["checks"]["scheduler"] == "stopped"
    assert stopped["status"] == "degraded"
    assert running["checks"]["scheduler"] == "ok"
    assert running["status"] == "ready"


async def test_ready_omits_scheduler_when_disabled(client: AsyncClient, fake_redis) -> None:
    response = await client.get("/ready")
    assert "scheduler" not in response.json()["checks"]
