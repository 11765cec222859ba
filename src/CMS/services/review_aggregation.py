# src/CMS/services/review_aggregation.py
"""
Review aggregation for a single submission.

Given a submission and the reviews that reference it, produce a read-only
summary: review progress, vote breakdown, average score and the majority
decision. Nothing here touches the database; callers fetch the rows and the
summary is recomputed on every read, so it always reflects the latest review
state.

Majority rule
-------------
Recommendations fold into three decision categories::

    ACCEPT                         -> ACCEPTED
    REJECT                         -> REJECTED
    MINOR_REVISION, MAJOR_REVISION -> NEEDS_REVISION

The category with the strictly highest vote count wins. When two or more
categories share the top count the decision is NEEDS_REVISION: the
tie-break precedence is NEEDS_REVISION > REJECTED > ACCEPTED, and a panel
split between accept and reject is treated as a request for revision rather
than letting either side win.

A decision exists only once every required review is in
(``completed >= required``) and ``required > 0``.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Iterable, Optional, Sequence

from CMS.db.base import as_utc
from CMS.db.models.enums import COMPLETED_REVIEW_STATUSES, Recommendation


class MajorityDecision(str, Enum):
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    NEEDS_REVISION = "NEEDS_REVISION"


RECOMMENDATION_TO_DECISION = {
    Recommendation.ACCEPT.value: MajorityDecision.ACCEPTED,
    Recommendation.REJECT.value: MajorityDecision.REJECTED,
    Recommendation.MINOR_REVISION.value: MajorityDecision.NEEDS_REVISION,
    Recommendation.MAJOR_REVISION.value: MajorityDecision.NEEDS_REVISION,
}

# Earlier entries win ties.
TIE_BREAK_ORDER = (
    MajorityDecision.NEEDS_REVISION,
    MajorityDecision.REJECTED,
    MajorityDecision.ACCEPTED,
)


@dataclass(frozen=True)
class ReviewProgress:
    completed: int
    required: int
    percentage: int


@dataclass(frozen=True)
class VoteBreakdown:
    accept: int = 0
    reject: int = 0
    minor_revision: int = 0
    major_revision: int = 0

    @property
    def total(self) -> int:
        return self.accept + self.reject + self.minor_revision + self.major_revision


@dataclass(frozen=True)
class ReviewSummary:
    review_progress: ReviewProgress
    vote_breakdown: VoteBreakdown
    average_score: Optional[float] = None
    majority_decision: Optional[MajorityDecision] = None
    completed_reviews: Sequence[Any] = field(default_factory=tuple, repr=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "review_progress": asdict(self.review_progress),
            "vote_breakdown": asdict(self.vote_breakdown),
            "average_score": self.average_score,
            "majority_decision": self.majority_decision.value if self.majority_decision else None,
        }


def _value(v: Any) -> Any:
    return v.value if isinstance(v, Enum) else v


def is_completed(review: Any) -> bool:
    return _value(getattr(review, "status", None)) in COMPLETED_REVIEW_STATUSES


def _assigned_ids(submission: Any) -> list:
    ids = getattr(submission, "assigned_reviewer_ids", None)
    if ids is None:
        ids = [getattr(u, "id", u) for u in (getattr(submission, "assigned_reviewers", None) or [])]
    # de-duplicate, keep order
    seen: set = set()
    out = []
    for rid in ids:
        key = str(rid)
        if key not in seen:
            seen.add(key)
            out.append(rid)
    return out


def completed_reviews_for(submission: Any, reviews: Iterable[Any]) -> list:
    """
    Completed reviews that count toward the submission's quota.

    With assigned reviewers, only their reviews count and each reviewer counts
    once (the most recently submitted review wins).
    """
    done = [r for r in reviews if is_completed(r)]
    assigned = {str(rid) for rid in _assigned_ids(submission)}
    if not assigned:
        return done

    by_reviewer: dict[str, Any] = {}
    for r in done:
        key = str(getattr(r, "reviewer_id", ""))
        if key not in assigned:
            continue
        prev = by_reviewer.get(key)
        if prev is None or _submitted_key(r) >= _submitted_key(prev):
            by_reviewer[key] = r
    return list(by_reviewer.values())


def _submitted_key(review: Any):
    ts = getattr(review, "submitted_at", None)
    return (ts is not None, as_utc(ts).timestamp() if ts is not None else 0.0)


def compute_progress(completed: int, required: int) -> ReviewProgress:
    if required <= 0:
        return ReviewProgress(completed=completed, required=0, percentage=0)
    pct = (completed * 100) // required
    return ReviewProgress(completed=completed, required=required, percentage=max(0, min(100, pct)))


def compute_vote_breakdown(reviews: Iterable[Any]) -> VoteBreakdown:
    counts = Counter(_value(getattr(r, "recommendation", None)) for r in reviews)
    return VoteBreakdown(
        accept=counts.get(Recommendation.ACCEPT.value, 0),
        reject=counts.get(Recommendation.REJECT.value, 0),
        minor_revision=counts.get(Recommendation.MINOR_REVISION.value, 0),
        major_revision=counts.get(Recommendation.MAJOR_REVISION.value, 0),
    )


def compute_average_score(reviews: Iterable[Any]) -> Optional[float]:
    scores = [Decimal(str(r.score)) for r in reviews if getattr(r, "score", None) is not None]
    if not scores:
        return None
    mean = sum(scores) / Decimal(len(scores))
    return float(mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def decide_majority(votes: VoteBreakdown) -> Optional[MajorityDecision]:
    tally = {
        MajorityDecision.ACCEPTED: votes.accept,
        MajorityDecision.REJECTED: votes.reject,
        MajorityDecision.NEEDS_REVISION: votes.minor_revision + votes.major_revision,
    }
    top = max(tally.values())
    if top == 0:
        return None
    leaders = [d for d in TIE_BREAK_ORDER if tally[d] == top]
    if len(leaders) == 1:
        return leaders[0]
    return MajorityDecision.NEEDS_REVISION


def summarize_reviews(submission: Any, reviews: Iterable[Any], default_required: int = 0) -> ReviewSummary:
    """
    Build the review summary for ``submission``.

    ``default_required`` is the quota used when no reviewers are assigned.
    """
    assigned = _assigned_ids(submission)
    required = len(assigned) if assigned else max(0, int(default_required or 0))

    completed = completed_reviews_for(submission, list(reviews))
    progress = compute_progress(len(completed), required)
    votes = compute_vote_breakdown(completed)

    decision = None
    if required > 0 and len(completed) >= required:
        decision = decide_majority(votes)

    return ReviewSummary(
        review_progress=progress,
        vote_breakdown=votes,
        average_score=compute_average_score(completed),
        majority_decision=decision,
        completed_reviews=tuple(completed),
    )
