"""Unit tests for the in-process job scheduler."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from viewtrack.config import Settings
from viewtrack.workers.jobs import RETENTION_JOB, ROLLUP_JOB, build_scheduler
from viewtrack.workers.scheduler import JobScheduler

pytestmark = pytest.mark.asyncio

TICK = timedelta(milliseconds=10)


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


class TestJobScheduler:
    async def test_runs_job_repeatedly(self):
        calls = []

        async def job():
            calls.append(1)

        scheduler = JobScheduler()
        scheduler.add_job("tick", job, TICK)
        scheduler.start()
        try:
            await _wait_for(lambda: len(calls) >= 3)
        finally:
            await scheduler.stop()

    async def test_failure_is_recorded_and_job_keeps_running(self):
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("store down")

        scheduler = JobScheduler()
        job = scheduler.add_job("flaky", flaky, TICK)
        scheduler.start()
        try:
            await _wait_for(lambda: len(calls) >= 2)
        finally:
            await scheduler.stop()
        assert job.failure_count == 1
        assert job.last_error is None  # cleared by the later successful run

    async def test_stop_cancels_tasks(self):
        async def job():
            pass

        scheduler = JobScheduler()
        scheduler.add_job("slow", job, timedelta(hours=1))
        scheduler.start()
        assert scheduler.get_status()["jobs"][0]["running"] is True
        await scheduler.stop()
        status = scheduler.get_status()
        assert status["running"] is False
        assert status["jobs"][0]["running"] is False

    async def test_trigger_runs_immediately_and_returns_result(self):
        async def job():
            return 42

        scheduler = JobScheduler()
        scheduler.add_job("answer", job, timedelta(hours=1))
        assert await scheduler.trigger("answer") == 42
        assert scheduler.get_status()["jobs"][0]["run_count"] == 1

    async def test_trigger_propagates_errors(self):
        async def job():
            raise RuntimeError("boom")

        scheduler = JobScheduler()
        scheduler.add_job("boom", job, timedelta(hours=1))
        with pytest.raises(RuntimeError):
            await scheduler.trigger("boom")

    async def test_trigger_unknown_job(self):
        with pytest.raises(KeyError):
            await JobScheduler().trigger("missing")

    async def test_duplicate_job_name_rejected(self):
        async def job():
            pass

        scheduler = JobScheduler()
        scheduler.add_job("a", job, TICK)
        with pytest.raises(ValueError):
            scheduler.add_job("a", job, TICK)


async def test_build_scheduler_pins_rollup_to_configured_hour():
    now = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
    settings = Settings(rollup_hour_utc=2, retention_interval_minutes=30)
    scheduler = build_scheduler(settings, clock=lambda: now)

    jobs = {job["name"]: job for job in scheduler.get_status()["jobs"]}
    assert jobs[ROLLUP_JOB]["next_run_at"] == "2026-03-11T02:00:00+00:00"
    assert jobs[ROLLUP_JOB]["interval_seconds"] == 24 * 3600
    assert jobs[RETENTION_JOB]["interval_seconds"] == 30 * 60
    assert scheduler.running is False


async def test_start_schedules_first_run_one_interval_out():
    now = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)

    async def job():
        pass

    scheduler = JobScheduler(clock=lambda: now)
    job_entry = scheduler.add_job("hourly", job, timedelta(hours=1))
    assert job_entry.next_run_at is None
    scheduler.start()
    try:
        assert job_entry.next_run_at == now + timedelta(hours=1)
    finally:
        await scheduler.stop()


async def test_trigger_passes_keyword_arguments():
    seen = []

    async def job(window_hours: int = 24):
        seen.append(window_hours)

    scheduler = JobScheduler()
    scheduler.add_job("rollup", job, timedelta(hours=1))
    await scheduler.trigger("rollup")
    await scheduler.trigger("rollup", window_hours=72)
    assert seen == [24, 72]
