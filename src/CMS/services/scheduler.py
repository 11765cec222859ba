# src/CMS/services/scheduler.py
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from CMS.app_logger import get_logger
from CMS.db.base import utcnow
from CMS.services.outbox import Outbox
from CMS.services.scheduled_tasks import JobReport, send_review_reminders, send_weekly_digest

log = get_logger("scheduler")


def next_daily_run(now: datetime, hour: int, minute: int = 0) -> datetime:
    """First ``hour:minute`` strictly after ``now``."""
    candidate = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


def next_weekly_run(now: datetime, weekday: int, hour: int, minute: int = 0) -> datetime:
    """First ``weekday`` (Monday == 0) at ``hour:minute`` strictly after ``now``."""
    candidate = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    candidate += timedelta(days=(weekday - now.weekday()) % 7)
    if candidate <= now:
        candidate += timedelta(days=7)
    return candidate


class JobLock:
    """
    Non-reentrant guard around one job. ``try_acquire`` never waits: if the
    previous run is still executing the new run is skipped.
    """

    def __init__(self, name: str):
        self.name = name
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def try_acquire(self) -> bool:
        if self._running:
            return False
        self._running = True
        return True

    def release(self) -> None:
        self._running = False


JobFn = Callable[[AsyncSession, Outbox, datetime], Awaitable[JobReport]]


@dataclass
class ScheduledJob:
    name: str
    fn: JobFn
    next_run: Callable[[datetime], datetime]
    lock: JobLock


class Scheduler:
    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utcnow,
    ):
        self.sessionmaker = sessionmaker
        self.clock = clock
        self.jobs: List[ScheduledJob] = []
        self._tasks: List[asyncio.Task] = []
        self._runs: set = set()

    def add_job(self, name: str, fn: JobFn, next_run: Callable[[datetime], datetime]) -> ScheduledJob:
        job = ScheduledJob(name=name, fn=fn, next_run=next_run, lock=JobLock(name))
        self.jobs.append(job)
        return job

    def get(self, name: str) -> ScheduledJob:
        for job in self.jobs:
            if job.name == name:
                return job
        raise KeyError(name)

    async def run_job(self, job: ScheduledJob) -> Optional[JobReport]:
        """Run ``job`` once in its own transaction. Returns ``None`` if skipped."""
        if not job.lock.try_acquire():
            log.warning("job %s still running; skipping this run", job.name)
            return None
        try:
            async with self.sessionmaker() as session:
                try:
                    report = await job.fn(session, Outbox(session), self.clock())
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise
            log.info("job %s finished: %s", job.name, report.to_dict())
            return report
        finally:
            job.lock.release()

    async def _loop(self, job: ScheduledJob) -> None:
        while True:
            now = self.clock()
            due = job.next_run(now)
            log.info("job %s next run at %s", job.name, due.isoformat())
            await asyncio.sleep(max(0.0, (due - now).total_seconds()))
            # fire-and-forget so a long run never delays the next tick
            run = asyncio.create_task(self._guarded(job), name=f"cms-job-{job.name}")
            self._runs.add(run)
            run.add_done_callback(self._runs.discard)

    async def _guarded(self, job: ScheduledJob) -> None:
        try:
            await self.run_job(job)
        except Exception:
            log.exception("job %s failed", job.name)

    def start(self) -> None:
        for job in self.jobs:
            self._tasks.append(asyncio.create_task(self._loop(job), name=f"cms-scheduler-{job.name}"))
        log.info("scheduler started: %s", ", ".join(j.name for j in self.jobs))

    async def stop(self) -> None:
        pending = self._tasks + list(self._runs)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()


def build_scheduler(sessionmaker: async_sessionmaker[AsyncSession], settings) -> Scheduler:
    scheduler = Scheduler(sessionmaker)
    days_ahead = settings.REMINDER_DAYS_AHEAD

    async def reminders(session, queue, now):
        return await send_review_reminders(session, queue, now, days_ahead=days_ahead)

    scheduler.add_job(
        "review_reminders",
        reminders,
        lambda now: next_daily_run(now, settings.REMINDER_HOUR),
    )
    scheduler.add_job(
        "weekly_digest",
        send_weekly_digest,
        lambda now: next_weekly_run(now, settings.DIGEST_WEEKDAY, settings.DIGEST_HOUR),
    )
    return scheduler


__all__ = ["next_daily_run", "next_weekly_run", "JobLock", "Scheduler", "build_scheduler"]
