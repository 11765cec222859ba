# src/CMS/services/scheduled_tasks.py
"""
Reminder and digest jobs.

Both jobs take an open session, an ``OutboundQueue`` and the current time, so
they can run from the in-process scheduler, the CLI, or a test with a fixed
clock. Failures for one conference or one recipient are logged and do not
stop the rest of the run.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import List, Set, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from CMS.app_logger import get_logger
from CMS.db.models.conferences import Conference
from CMS.db.models.enums import COMPLETED_REVIEW_STATUSES, ReviewStatus, SubmissionStatus
from CMS.db.models.reviews import Review
from CMS.db.models.submissions import Submission
from CMS.services.outbox import OutboundQueue

log = get_logger("jobs")

REMINDER_STATUSES = (SubmissionStatus.SUBMITTED.value, SubmissionStatus.UNDER_REVIEW.value)
# papers still waiting on the organizer once every assigned review is in
AWAITING_STATUSES = (SubmissionStatus.UNDER_REVIEW.value, SubmissionStatus.REVIEW_COMPLETED.value)
# an accepted paper moves on to camera-ready; it still counts as accepted
ACCEPTED_STATUSES = (
    SubmissionStatus.ACCEPTED.value,
    SubmissionStatus.CAMERA_READY_PENDING.value,
    SubmissionStatus.FINAL_SUBMITTED.value,
)


@dataclass
class JobReport:
    conferences: int = 0
    emails: int = 0
    errors: int = 0
    details: List[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class DigestStats:
    total_submissions: int = 0
    pending_reviews: int = 0
    completed_reviews: int = 0
    awaiting_decision: int = 0
    accepted_papers: int = 0
    rejected_papers: int = 0


async def _completed_pairs(session: AsyncSession, submission_ids: List) -> Set[Tuple[str, str]]:
    if not submission_ids:
        return set()
    rows = await session.execute(
        select(Review.submission_id, Review.reviewer_id).where(
            Review.submission_id.in_(submission_ids),
            Review.status.in_(COMPLETED_REVIEW_STATUSES),
        )
    )
    return {(str(s), str(r)) for s, r in rows.all()}


async def send_review_reminders(
    session: AsyncSession,
    queue: OutboundQueue,
    now: datetime,
    days_ahead: int = 7,
) -> JobReport:
    """
    Remind assigned reviewers who have not completed their review when the
    conference starts in ``[now + days_ahead, now + days_ahead + 1 day)``.
    One email per (submission, pending reviewer).
    """
    report = JobReport()
    window_start = now + timedelta(days=days_ahead)
    window_end = window_start + timedelta(days=1)

    conferences = (
        await session.scalars(
            select(Conference)
            .where(Conference.start_date >= window_start, Conference.start_date < window_end)
            .order_by(Conference.start_date)
        )
    ).all()
    if not conferences:
        log.info("reminders: no conferences starting in %d days", days_ahead)
        return report

    for conference in conferences:
        report.conferences += 1
        try:
            # savepoint per conference: a failed statement must not poison the shared transaction
            async with session.begin_nested():
                sent = await _remind_for_conference(session, queue, conference, days_ahead)
        except Exception as e:
            report.errors += 1
            log.exception("reminders: conference %s failed", conference.id)
            report.details.append({"conference_id": str(conference.id), "error": str(e)})
            continue
        report.emails += sent
        report.details.append({"conference_id": str(conference.id), "emails": sent})

    log.info("reminders: %d emails queued for %d conferences", report.emails, report.conferences)
    return report


async def _remind_for_conference(session: AsyncSession, queue: OutboundQueue, conference: Conference,
                                 days_ahead: int) -> int:
    submissions = (
        await session.scalars(
            select(Submission).where(
                Submission.conference_id == conference.id,
                Submission.status.in_(REMINDER_STATUSES),
            )
        )
    ).all()
    done = await _completed_pairs(session, [s.id for s in submissions])

    sent = 0
    for submission in submissions:
        seen: Set[str] = set()
        for reviewer in submission.assigned_reviewers:
            key = str(reviewer.id)
            if key in seen or (str(submission.id), key) in done:
                continue
            seen.add(key)
            if not reviewer.email:
                continue
            try:
                queue.enqueue(
                    reviewer.email,
                    "review_reminder",
                    {
                        "reviewer_name": reviewer.name,
                        "submission_id": str(submission.id),
                        "submission_title": submission.title,
                        "conference_name": conference.name,
                        "track_name": submission.track.name if submission.track else None,
                        "days_until": days_ahead,
                    },
                )
            except Exception:
                log.exception("reminders: could not queue reminder for %s", reviewer.email)
                continue
            log.debug("reminders: %s for %r", reviewer.email, submission.title)
            sent += 1
    return sent


async def compute_digest_stats(session: AsyncSession, conference_id) -> DigestStats:
    def count_submissions(*criteria):
        return select(func.count(Submission.id)).where(Submission.conference_id == conference_id, *criteria)

    def count_reviews(*criteria):
        return (
            select(func.count(Review.id))
            .join(Submission, Submission.id == Review.submission_id)
            .where(Submission.conference_id == conference_id, *criteria)
        )

    total = await session.scalar(count_submissions())
    accepted = await session.scalar(count_submissions(Submission.status.in_(ACCEPTED_STATUSES)))
    rejected = await session.scalar(count_submissions(Submission.status == SubmissionStatus.REJECTED.value))
    pending = await session.scalar(count_reviews(Review.status == ReviewStatus.IN_PROGRESS.value))
    completed = await session.scalar(count_reviews(Review.status.in_(COMPLETED_REVIEW_STATUSES)))

    in_review = (
        await session.scalars(
            select(Submission).where(
                Submission.conference_id == conference_id,
                Submission.status.in_(AWAITING_STATUSES),
            )
        )
    ).all()
    done = await _completed_pairs(session, [s.id for s in in_review])

    awaiting = 0
    for submission in in_review:
        assigned = {str(r.id) for r in submission.assigned_reviewers}
        if assigned and all((str(submission.id), r) in done for r in assigned):
            awaiting += 1

    return DigestStats(
        total_submissions=total or 0,
        pending_reviews=pending or 0,
        completed_reviews=completed or 0,
        awaiting_decision=awaiting,
        accepted_papers=accepted or 0,
        rejected_papers=rejected or 0,
    )


async def send_weekly_digest(session: AsyncSession, queue: OutboundQueue, now: datetime) -> JobReport:
    """One ``weekly_digest`` email per active conference, to its organizer."""
    report = JobReport()
    conferences = (
        await session.scalars(
            select(Conference)
            .where(or_(Conference.end_date.is_(None), Conference.end_date >= now))
            .order_by(Conference.start_date)
        )
    ).all()

    for conference in conferences:
        report.conferences += 1
        organizer = conference.organizer
        if organizer is None or not organizer.email:
            log.warning("digest: conference %s has no organizer email", conference.id)
            continue
        try:
            async with session.begin_nested():
                stats = await compute_digest_stats(session, conference.id)
                queue.enqueue(
                    organizer.email,
                    "weekly_digest",
                    {
                        "organizer_name": organizer.name,
                        "conference_id": str(conference.id),
                        "conference_name": conference.name,
                        "stats": asdict(stats),
                    },
                )
        except Exception as e:
            report.errors += 1
            log.exception("digest: conference %s failed", conference.id)
            report.details.append({"conference_id": str(conference.id), "error": str(e)})
            continue
        report.emails += 1
        report.details.append({"conference_id": str(conference.id), "stats": asdict(stats)})

    log.info("digest: %d emails queued for %d conferences", report.emails, report.conferences)
    return report


__all__ = [
    "JobReport",
    "DigestStats",
    "send_review_reminders",
    "compute_digest_stats",
    "send_weekly_digest",
]
