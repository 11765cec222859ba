# src/CMS/services/submissions.py
from __future__ import annotations

from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from CMS.app_logger import get_logger
from CMS.core.config import settings
from CMS.core.errors import NotFoundError, ValidationError
from CMS.db.models.enums import SubmissionStatus as S
from CMS.db.models.reviews import Review
from CMS.db.models.submissions import Submission, SubmissionCoAuthor
from CMS.db.models.users import User
from CMS.services.email.service import normalize_address
from CMS.services.review_aggregation import ReviewSummary, summarize_reviews

log = get_logger("submissions")

# status -> statuses it may move to
TRANSITIONS: Dict[str, FrozenSet[str]] = {
    S.SUBMITTED.value: frozenset({S.UNDER_REVIEW.value, S.ACCEPTED.value, S.REJECTED.value}),
    S.UNDER_REVIEW.value: frozenset({S.REVIEW_COMPLETED.value, S.ACCEPTED.value, S.REJECTED.value}),
    S.REVIEW_COMPLETED.value: frozenset({S.UNDER_REVIEW.value, S.ACCEPTED.value, S.REJECTED.value}),
    S.ACCEPTED.value: frozenset({S.CAMERA_READY_PENDING.value, S.FINAL_SUBMITTED.value}),
    S.CAMERA_READY_PENDING.value: frozenset({S.FINAL_SUBMITTED.value}),
    S.REJECTED.value: frozenset(),
    S.FINAL_SUBMITTED.value: frozenset(),
}

EDITABLE_STATUSES = frozenset({S.SUBMITTED.value})
CAMERA_READY_STATUSES = frozenset({S.ACCEPTED.value, S.CAMERA_READY_PENDING.value})
DECIDABLE_STATUSES = frozenset({S.SUBMITTED.value, S.UNDER_REVIEW.value, S.REVIEW_COMPLETED.value})


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def transition(submission: Submission, target: S | str) -> None:
    """Move ``submission`` to ``target`` or raise a 409 ``ValidationError``."""
    new = target.value if isinstance(target, S) else target
    if submission.status == new:
        return
    if not can_transition(submission.status, new):
        raise ValidationError(
            f"Cannot change submission status from {submission.status} to {new}",
            error_code="invalid_transition",
            status_code=409,
            field="status",
        )
    log.info("submission %s: %s -> %s", submission.id, submission.status, new)
    submission.status = new


def normalize_co_authors(entries: Iterable[Any], author_email: Optional[str] = None) -> List[Dict[str, Optional[str]]]:
    """
    Lower-case and de-duplicate co-author entries and drop the submitting
    author. Accepts dicts or objects with ``email``/``name``.
    """
    skip = normalize_address(author_email)
    seen: set = set()
    out: List[Dict[str, Optional[str]]] = []
    for entry in entries or ():
        email = entry.get("email") if isinstance(entry, dict) else getattr(entry, "email", None)
        name = entry.get("name") if isinstance(entry, dict) else getattr(entry, "name", None)
        addr = normalize_address(email)
        if not addr or addr == skip or addr in seen:
            continue
        seen.add(addr)
        out.append({"email": addr, "name": (name or "").strip() or None})
    return out


async def set_co_authors(session: AsyncSession, submission: Submission, entries: Iterable[Any],
                         author_email: Optional[str] = None) -> None:
    """Replace the co-author list, linking entries to existing accounts by email."""
    cleaned = normalize_co_authors(entries, author_email)
    emails = [c["email"] for c in cleaned]
    users = {}
    if emails:
        rows = await session.scalars(select(User).where(User.email.in_(emails)))
        users = {u.email: u for u in rows.all()}

    submission.co_authors.clear()
    for c in cleaned:
        linked = users.get(c["email"])
        submission.co_authors.append(
            SubmissionCoAuthor(
                email=c["email"],
                name=c["name"] or (linked.name if linked else None),
                user_id=linked.id if linked else None,
            )
        )


async def get_submission(session: AsyncSession, submission_id) -> Submission:
    submission = await session.get(Submission, submission_id)
    if submission is None:
        raise NotFoundError("Submission", submission_id)
    return submission


async def reviews_for(session: AsyncSession, submission_ids: List[Any]) -> Dict[Any, List[Review]]:
    out: Dict[Any, List[Review]] = {sid: [] for sid in submission_ids}
    if not submission_ids:
        return out
    rows = await session.scalars(
        select(Review).where(Review.submission_id.in_(submission_ids)).order_by(Review.created_at)
    )
    for r in rows.all():
        out.setdefault(r.submission_id, []).append(r)
    return out


def summary_for(submission: Submission, reviews: Iterable[Review]) -> ReviewSummary:
    return summarize_reviews(submission, reviews, default_required=settings.DEFAULT_REQUIRED_REVIEWS)


def cc_for(submission: Submission) -> List[str]:
    return list(submission.co_author_emails)


def email_context(submission: Submission, **extra: Any) -> Dict[str, Any]:
    ctx: Dict[str, Any] = {
        "submission_id": str(submission.id),
        "submission_title": submission.title,
        "conference_name": submission.conference.name if submission.conference else "",
        "track_name": submission.track.name if submission.track else None,
    }
    ctx.update(extra)
    return ctx


__all__ = [
    "TRANSITIONS",
    "can_transition",
    "transition",
    "normalize_co_authors",
    "set_co_authors",
    "get_submission",
    "reviews_for",
    "summary_for",
    "cc_for",
    "email_context",
]
