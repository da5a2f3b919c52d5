"""In-process job scheduler for the rollup and retention timers.

One asyncio task per job. The scheduler is constructed, started and stopped
explicitly by whoever owns it (the app lifespan), so there is no module-level
timer state. A failing run is logged and the job simply waits for its next
slot.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

logger = logging.getLogger(__name__)

JobFunc = Callable[..., Awaitable[Any]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def next_daily_run(now: datetime, hour_utc: int) -> datetime:
    """Next occurrence of hour_utc:00 UTC strictly after `now`."""
    candidate = now.astimezone(timezone.utc).replace(hour=hour_utc, minute=0, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


@dataclass
class ScheduledJob:
    """A periodic job and its run bookkeeping."""

    name: str
    func: JobFunc
    interval: timedelta
    next_run_at: datetime | None = None
    last_run_at: datetime | None = None
    last_error: str | None = None
    run_count: int = 0
    failure_count: int = 0
    task: asyncio.Task | None = field(default=None, repr=False)  # type: ignore[type-arg]
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def status(self) -> dict:
        return {
            "name": self.name,
            "running": self.task is not None and not self.task.done(),
            "interval_seconds": self.interval.total_seconds(),
            "next_run_at": self.next_run_at.isoformat() if self.next_run_at else None,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_error": self.last_error,
            "run_count": self.run_count,
            "failure_count": self.failure_count,
        }


class JobScheduler:
    """Runs registered jobs on fixed intervals until stopped."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._jobs: dict[str, ScheduledJob] = {}
        self._clock = clock
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def add_job(
        self,
        name: str,
        func: JobFunc,
        interval: timedelta,
        first_run_at: datetime | None = None,
    ) -> ScheduledJob:
        """Register a job. Without first_run_at the first run is one interval after start()."""
        if name in self._jobs:
            msg = f"Job {name!r} is already registered"
            raise ValueError(msg)
        if interval.total_seconds() <= 0:
            msg = "Job interval must be positive"
            raise ValueError(msg)
        job = ScheduledJob(name=name, func=func, interval=interval, next_run_at=first_run_at)
        self._jobs[name] = job
        if self._running:
            self._start_job(job)
        return job

    def start(self) -> None:
        """Start one background task per job. Calling twice is a no-op."""
        if self._running:
            return
        self._running = True
        for job in self._jobs.values():
            self._start_job(job)
        logger.info("Scheduler started with %d jobs", len(self._jobs))

    async def stop(self) -> None:
        """Cancel every job task and wait for them to finish."""
        if not self._running:
            return
        self._running = False
        tasks = [job.task for job in self._jobs.values() if job.task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for job in self._jobs.values():
            job.task = None
        logger.info("Scheduler stopped")

    async def trigger(self, name: str, **kwargs: Any) -> Any:  # noqa: ANN401
        """Run a job now, outside its schedule, waiting for any run in progress.

        Keyword arguments are passed to the job function. Errors propagate to the caller.
        """
        job = self._jobs.get(name)
        if job is None:
            msg = f"Unknown job {name!r}"
            raise KeyError(msg)
        async with job.lock:
            return await self._execute(job, raise_errors=True, **kwargs)

    def get_status(self) -> dict:
        return {
            "running": self._running,
            "jobs": [job.status() for job in self._jobs.values()],
        }

    def _start_job(self, job: ScheduledJob) -> None:
        run_at = job.next_run_at or self._clock() + job.interval
        job.next_run_at = run_at
        job.task = asyncio.create_task(self._run_loop(job, run_at), name=f"scheduler:{job.name}")

    async def _run_loop(self, job: ScheduledJob, run_at: datetime) -> None:
        while self._running:
            delay = (run_at - self._clock()).total_seconds()
            if delay > 0:
                await asyncio.sleep(delay)
            async with job.lock:
                await self._execute(job, raise_errors=False)
            run_at = self._clock() + job.interval
            job.next_run_at = run_at

    async def _execute(self, job: ScheduledJob, *, raise_errors: bool, **kwargs: Any) -> Any:  # noqa: ANN401
        job.last_run_at = self._clock()
        job.run_count += 1
        try:
            result = await job.func(**kwargs)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            job.failure_count += 1
            job.last_error = f"{type(exc).__name__}: {exc}"
            if raise_errors:
                raise
            logger.exception("Scheduled job %s failed, retrying next cycle", job.name)
            return None
        job.last_error = None
        return result
