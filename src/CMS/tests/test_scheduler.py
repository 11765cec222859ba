# src/CMS/tests/test_scheduler.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import anyio
import pytest
from sqlalchemy import select

from CMS.db.models import OutboundEmail, User
from CMS.services.scheduled_tasks import JobReport
from CMS.services.scheduler import JobLock, Scheduler, build_scheduler, next_daily_run, next_weekly_run

pytestmark = pytest.mark.anyio

# a Wednesday
NOW = datetime(2026, 6, 3, 10, 30, tzinfo=timezone.utc)


def test_next_daily_run():
    assert next_daily_run(NOW, 9) == datetime(2026, 6, 4, 9, 0, tzinfo=timezone.utc)
    assert next_daily_run(NOW, 11) == datetime(2026, 6, 3, 11, 0, tzinfo=timezone.utc)
    exactly = NOW.replace(hour=9, minute=0)
    assert next_daily_run(exactly, 9) == exactly + timedelta(days=1)


def test_next_weekly_run():
    # Monday 08:00
    assert next_weekly_run(NOW, 0, 8) == datetime(2026, 6, 8, 8, 0, tzinfo=timezone.utc)
    # later today
    assert next_weekly_run(NOW, 2, 12) == datetime(2026, 6, 3, 12, 0, tzinfo=timezone.utc)
    # earlier today -> next week
    assert next_weekly_run(NOW, 2, 8) == datetime(2026, 6, 10, 8, 0, tzinfo=timezone.utc)


def test_job_lock_is_not_reentrant():
    lock = JobLock("x")
    assert lock.try_acquire()
    assert not lock.try_acquire()
    lock.release()
    assert lock.try_acquire()


async def test_overlapping_run_is_skipped(sessionmaker):
    scheduler = Scheduler(sessionmaker, clock=lambda: NOW)
    started = anyio.Event()
    release = anyio.Event()
    calls = []

    async def slow(session, queue, now):
        calls.append(now)
        started.set()
        await release.wait()
        return JobReport(emails=1)

    job = scheduler.add_job("slow", slow, lambda now: now + timedelta(days=1))
    results = {}

    async def first():
        results["first"] = await scheduler.run_job(job)

    async with anyio.create_task_group() as tg:
        tg.start_soon(first)
        await started.wait()
        results["second"] = await scheduler.run_job(job)
        release.set()

    assert results["second"] is None
    assert results["first"].emails == 1
    assert calls == [NOW]
    assert not job.lock.running


async def test_run_job_commits_queued_email(sessionmaker):
    scheduler = Scheduler(sessionmaker, clock=lambda: NOW)

    async def job_fn(session, queue, now):
        queue.enqueue("organizer@example.com", "welcome", {"name": "O"})
        return JobReport(emails=1)

    await scheduler.run_job(scheduler.add_job("one", job_fn, lambda now: now))
    async with sessionmaker() as s:
        rows = (await s.scalars(select(OutboundEmail))).all()
    assert [r.recipient for r in rows] == ["organizer@example.com"]


async def test_failed_job_rolls_back_and_releases_lock(sessionmaker):
    scheduler = Scheduler(sessionmaker, clock=lambda: NOW)

    async def broken(session, queue, now):
        session.add(User(name="x", email="x@example.com", role="author", expertise_domains=[], identities=[]))
        raise RuntimeError("boom")

    job = scheduler.add_job("broken", broken, lambda now: now)
    with pytest.raises(RuntimeError):
        await scheduler.run_job(job)
    assert not job.lock.running
    async with sessionmaker() as s:
        assert (await s.scalars(select(User))).all() == []


def test_build_scheduler_registers_both_jobs():
    settings = SimpleNamespace(REMINDER_DAYS_AHEAD=7, REMINDER_HOUR=9, DIGEST_WEEKDAY=0, DIGEST_HOUR=8)
    scheduler = build_scheduler(None, settings)
    assert [j.name for j in scheduler.jobs] == ["review_reminders", "weekly_digest"]
    assert scheduler.get("weekly_digest").next_run(NOW) == datetime(2026, 6, 8, 8, 0, tzinfo=timezone.utc)
    assert scheduler.get("review_reminders").next_run(NOW) == datetime(2026, 6, 4, 9, 0, tzinfo=timezone.utc)
