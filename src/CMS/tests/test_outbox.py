# src/CMS/tests/test_outbox.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from CMS.core.errors import UpstreamError
from CMS.db.models import OutboundEmail
from CMS.services.email import EmailConfig, EmailService, TransportKind
from CMS.services.outbox import Outbox, OutboxDispatcher, backoff_delay

pytestmark = pytest.mark.anyio

NOW = datetime(2026, 5, 4, 9, 0, tzinfo=timezone.utc)


class FlakyTransport:
    kind = TransportKind.NONE

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls = 0

    async def deliver(self, message):
        self.calls += 1
        if self.calls <= self.failures:
            raise UpstreamError("smtp", detail="421 try later", message="Email delivery failed")
        return f"ok-{self.calls}"


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


async def _enqueue(sessionmaker, **kw):
    async with sessionmaker() as s:
        row = Outbox(s).enqueue(kw.pop("recipient", "Reviewer@Example.com"), kw.pop("template", "welcome"),
                                kw.pop("data", {"name": "R"}), cc=kw.pop("cc", None))
        # due for the fixed test clock
        if row is not None:
            row.available_at = NOW - timedelta(minutes=1)
        await s.commit()
        return row


async def _rows(sessionmaker):
    async with sessionmaker() as s:
        return (await s.scalars(select(OutboundEmail))).all()


def test_backoff_delay_grows_and_caps():
    assert backoff_delay(1, 30) == timedelta(seconds=30)
    assert backoff_delay(3, 30) == timedelta(seconds=120)
    assert backoff_delay(20, 30) == timedelta(hours=1)


async def test_enqueue_normalizes_and_validates(session):
    outbox = Outbox(session)
    row = outbox.enqueue(" Author@Example.com ", "decision", {"decision": "accepted"},
                         cc=["co@example.com", "author@example.com", "CO@example.com"])
    assert row.recipient == "author@example.com"
    assert row.cc == ["co@example.com"]
    assert row.status == "pending"

    assert outbox.enqueue("", "welcome", {}) is None
    with pytest.raises(ValueError):
        outbox.enqueue("a@example.com", "nope", {})


async def test_dispatch_marks_sent(sessionmaker):
    await _enqueue(sessionmaker)
    transport = FlakyTransport()
    dispatcher = OutboxDispatcher(sessionmaker, EmailService(EmailConfig(), transport=transport), clock=Clock(NOW))

    counts = await dispatcher.process_pending()
    assert counts == {"sent": 1, "retried": 0, "failed": 0}

    (row,) = await _rows(sessionmaker)
    assert row.status == "sent"
    assert row.attempts == 1
    assert row.delivery_id == "ok-1"

    # nothing left to do
    assert await dispatcher.process_pending() == {"sent": 0, "retried": 0, "failed": 0}
    assert transport.calls == 1


async def test_dispatch_retries_with_backoff_then_sends(sessionmaker):
    await _enqueue(sessionmaker)
    clock = Clock(NOW)
    transport = FlakyTransport(failures=1)
    dispatcher = OutboxDispatcher(sessionmaker, EmailService(EmailConfig(), transport=transport),
                                  backoff_seconds=60, clock=clock)

    assert (await dispatcher.process_pending())["retried"] == 1
    (row,) = await _rows(sessionmaker)
    assert row.status == "pending"
    assert "421 try later" in row.last_error

    # not due yet
    assert (await dispatcher.process_pending())["sent"] == 0

    clock.now = NOW + timedelta(minutes=2)
    assert (await dispatcher.process_pending())["sent"] == 1
    (row,) = await _rows(sessionmaker)
    assert row.status == "sent"
    assert row.attempts == 2


async def test_dispatch_gives_up_after_max_attempts(sessionmaker):
    await _enqueue(sessionmaker)
    clock = Clock(NOW)
    dispatcher = OutboxDispatcher(sessionmaker, EmailService(EmailConfig(), transport=FlakyTransport(failures=99)),
                                  max_attempts=2, backoff_seconds=1, clock=clock)

    await dispatcher.process_pending()
    clock.now = NOW + timedelta(minutes=5)
    counts = await dispatcher.process_pending()
    assert counts["failed"] == 1

    (row,) = await _rows(sessionmaker)
    assert row.status == "failed"
    assert row.attempts == 2
