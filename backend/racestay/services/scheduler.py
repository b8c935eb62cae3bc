"""
Background scheduler for time-driven booking and subscription transitions.

The scheduler is an ordinary object built by the process entry point (see
main.lifespan) and handed its session factory and jobs; nothing here runs at
import time. Tests call run_due_jobs()/run_job() directly with a fixed `now`
instead of waiting for the timer.

Tick model:
  - Every `tick_seconds` the loop runs each enabled job whose next_run_at
    has passed, one after another, each with its own session
  - A failing job is logged and left due, so it is retried on the next
    tick; the remaining jobs of that tick still run
  - Jobs race freely with user requests; the services they call rely on
    conditional updates, not on the scheduler being the only writer
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from racestay.core.logging import get_logger
from racestay.core.metrics import record_job_run, scheduler_job_latency
from racestay.db.base import utcnow

logger = get_logger(__name__)

JobFunc = Callable[[AsyncSession, datetime], Awaitable[int]]


@dataclass
class ScheduledJob:
    name: str
    func: JobFunc
    interval: timedelta
    enabled: bool = True
    next_run_at: datetime | None = None
    last_run_at: datetime | None = None
    last_result: int | None = None
    last_error: str | None = None
    consecutive_failures: int = 0

    def is_due(self, now: datetime) -> bool:
        return self.enabled and (self.next_run_at is None or self.next_run_at <= now)

    def describe(self) -> dict:
        return {
            "name": self.name,
            "enabled": self.enabled,
            "interval_seconds": int(self.interval.total_seconds()),
            "next_run_at": self.next_run_at,
            "last_run_at": self.last_run_at,
            "last_result": self.last_result,
            "last_error": self.last_error,
            "consecutive_failures": self.consecutive_failures,
        }


@dataclass
class JobOutcome:
    name: str
    ok: bool
    result: int | None = None
    error: str | None = None
    duration_ms: float = field(default=0.0)


class BackgroundScheduler:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        jobs: list[ScheduledJob],
        tick_seconds: int = 60,
    ):
        self.session_factory = session_factory
        self.tick_seconds = tick_seconds
        self._jobs = {job.name: job for job in jobs}
        self._task: asyncio.Task | None = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name="background-scheduler")
        logger.info("scheduler_started", tick_seconds=self.tick_seconds, jobs=list(self._jobs))

    async def stop(self) -> None:
        if not self.running:
            return
        self._stopping.set()
        try:
            await asyncio.wait_for(self._task, timeout=self.tick_seconds)
        except asyncio.TimeoutError:
            self._task.cancel()
        self._task = None
        logger.info("scheduler_stopped")

    async def _loop(self) -> None:
        while not self._stopping.is_set():
            await self.run_due_jobs()
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.tick_seconds)
            except asyncio.TimeoutError:
                pass

    async def run_due_jobs(self, now: datetime | None = None) -> list[JobOutcome]:
        now = now or utcnow()
        outcomes = []
        for job in list(self._jobs.values()):
            if job.is_due(now):
                outcomes.append(await self._execute(job, now))
        return outcomes

    async def run_job(self, name: str, now: datetime | None = None) -> JobOutcome:
        """Run one job immediately, due or not (admin trigger)."""
        job = self._get(name)
        return await self._execute(job, now or utcnow())

    async def _execute(self, job: ScheduledJob, now: datetime) -> JobOutcome:
        start_time = time.perf_counter()
        try:
            async with self.session_factory() as db:
                result = await job.func(db, now)
        except Exception as e:
            duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
            job.last_error = str(e)
            job.consecutive_failures += 1
            # Still due: the next tick retries
            job.next_run_at = now
            record_job_run(job.name, "error")
            logger.error(
                "scheduler_job_failed",
                job=job.name,
                error=str(e),
                consecutive_failures=job.consecutive_failures,
                duration_ms=duration_ms,
            )
            return JobOutcome(name=job.name, ok=False, error=str(e), duration_ms=duration_ms)

        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
        scheduler_job_latency.labels(job=job.name).observe(duration_ms / 1000)
        record_job_run(job.name, "success")
        job.last_run_at = now
        job.last_result = result
        job.last_error = None
        job.consecutive_failures = 0
        job.next_run_at = now + job.interval
        logger.info("scheduler_job_completed", job=job.name, result=result, duration_ms=duration_ms)
        return JobOutcome(name=job.name, ok=True, result=result, duration_ms=duration_ms)

    def _get(self, name: str) -> ScheduledJob:
        try:
            return self._jobs[name]
        except KeyError:
            raise KeyError(f"Unknown job: {name}") from None

    def enable_job(self, name: str) -> None:
        self._get(name).enabled = True
        logger.info("scheduler_job_enabled", job=name)

    def disable_job(self, name: str) -> None:
        self._get(name).enabled = False
        logger.info("scheduler_job_disabled", job=name)

    def get_jobs(self) -> list[dict]:
        return [job.describe() for job in self._jobs.values()]
