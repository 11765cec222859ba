# src/CMS/services/outbox.py
"""
Persisted outbound email queue.

Business code enqueues mail in the same session (and so the same transaction)
as the state change that triggered it. A dispatcher later claims pending rows
and hands them to ``EmailService``. A row is only marked ``sent`` after the
transport accepted it, so delivery is at-least-once.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, List, Mapping, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from CMS.app_logger import get_logger
from CMS.core.errors import CMSError
from CMS.db.base import utcnow
from CMS.db.models.enums import OutboundStatus
from CMS.db.models.outbound_emails import OutboundEmail
from CMS.services.email.service import EmailService, normalize_address, normalize_cc
from CMS.services.email.templates import TEMPLATES

log = get_logger("outbox")


class OutboundQueue(Protocol):
    def enqueue(
        self,
        recipient: str,
        template: str,
        data: Mapping[str, Any],
        cc: Optional[Iterable[str]] = None,
    ) -> Any:
        ...


class Outbox:
    """``OutboundQueue`` that writes ``OutboundEmail`` rows into ``session``."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def enqueue(
        self,
        recipient: str,
        template: str,
        data: Mapping[str, Any],
        cc: Optional[Iterable[str]] = None,
    ) -> Optional[OutboundEmail]:
        to = normalize_address(recipient)
        if not to:
            log.warning("outbox: dropping %s email with empty recipient", template)
            return None
        if template not in TEMPLATES:
            raise ValueError(f"unknown email template: {template}")
        row = OutboundEmail(
            recipient=to,
            cc=normalize_cc(cc, exclude=to),
            template=template,
            context=dict(data),
            status=OutboundStatus.PENDING.value,
            attempts=0,
            available_at=utcnow(),
        )
        self.session.add(row)
        return row


def backoff_delay(attempts: int, base_seconds: float) -> timedelta:
    """Exponential backoff: base, 2*base, 4*base, ... capped at one hour."""
    seconds = base_seconds * (2 ** max(0, attempts - 1))
    return timedelta(seconds=min(seconds, 3600.0))


class OutboxDispatcher:
    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        email: EmailService,
        max_attempts: int = 5,
        backoff_seconds: float = 30.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.sessionmaker = sessionmaker
        self.email = email
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.clock = clock

    async def process_pending(self, limit: int = 50) -> dict:
        """
        Deliver up to ``limit`` due rows. Returns counts of sent, retried and
        failed rows.
        """
        counts = {"sent": 0, "retried": 0, "failed": 0}
        async with self.sessionmaker() as session:
            now = self.clock()
            stmt = (
                select(OutboundEmail)
                .where(
                    OutboundEmail.status == OutboundStatus.PENDING.value,
                    OutboundEmail.available_at <= now,
                )
                .order_by(OutboundEmail.available_at, OutboundEmail.created_at)
                .limit(limit)
            )
            if session.bind is not None and session.bind.dialect.name == "postgresql":
                stmt = stmt.with_for_update(skip_locked=True)
            rows: List[OutboundEmail] = list((await session.scalars(stmt)).all())

            for row in rows:
                outcome = await self._deliver(row)
                counts[outcome] += 1
                # commit per row so a crash never re-sends already delivered mail
                await session.commit()

        if any(counts.values()):
            log.info("outbox: sent=%(sent)d retried=%(retried)d failed=%(failed)d", counts)
        return counts

    async def _deliver(self, row: OutboundEmail) -> str:
        row.attempts = (row.attempts or 0) + 1
        try:
            result = await self.email.send(row.recipient, row.template, row.context or {}, cc=row.cc or None)
        except CMSError as e:
            return self._record_failure(row, e)
        except Exception as e:
            log.exception("outbox: unexpected error delivering %s", row.id)
            return self._record_failure(row, e)

        row.status = OutboundStatus.SENT.value
        row.delivery_id = result.delivery_id
        row.sent_at = self.clock()
        row.last_error = None
        return "sent"

    def _record_failure(self, row: OutboundEmail, exc: Exception) -> str:
        detail = getattr(exc, "context", {}).get("detail") if isinstance(exc, CMSError) else None
        row.last_error = (f"{exc} ({detail})" if detail else str(exc))[:2000]
        if row.attempts >= self.max_attempts:
            row.status = OutboundStatus.FAILED.value
            log.error("outbox: giving up on %s to %s after %d attempts: %s",
                      row.template, row.recipient, row.attempts, row.last_error)
            return "failed"
        row.available_at = self.clock() + backoff_delay(row.attempts, self.backoff_seconds)
        log.warning("outbox: attempt %d for %s to %s failed, retry at %s",
                    row.attempts, row.template, row.recipient, row.available_at.isoformat())
        return "retried"

    async def run_forever(self, poll_seconds: float, batch_size: int) -> None:
        log.info("outbox dispatcher started (poll=%.1fs batch=%d)", poll_seconds, batch_size)
        while True:
            try:
                await self.process_pending(batch_size)
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("outbox: dispatch pass failed")
            await asyncio.sleep(poll_seconds)


__all__ = ["OutboundQueue", "Outbox", "OutboxDispatcher", "backoff_delay"]
