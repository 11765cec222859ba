# src/CMS/api/routers/reviews.py
from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from CMS.api.deps import get_outbox
from CMS.app_logger import get_logger
from CMS.auth.deps import require_reviewer
from CMS.core.errors import AuthorizationError, NotFoundError, ValidationError
from CMS.db.base import utcnow
from CMS.db.models.enums import ReviewStatus, SubmissionStatus
from CMS.db.models.reviews import Review
from CMS.db.models.submissions import Submission, submission_reviewers
from CMS.db.models.users import User
from CMS.db.session import get_db
from CMS.schemas.base import APIModel
from CMS.schemas.reviews import ReviewAssignment, ReviewDraft, ReviewReadFull, ReviewSubmit
from CMS.schemas.submissions import SubmissionRead
from CMS.services.outbox import OutboundQueue
from CMS.services.submissions import email_context, get_submission, reviews_for, summary_for, transition

log = get_logger("reviews")
router = APIRouter(prefix="/api/reviewer", tags=["reviewer"])


class AssignmentOut(APIModel):
    submission_id: uuid.UUID
    submission_title: str
    conference_name: Optional[str] = None
    submission_status: SubmissionStatus
    review_id: Optional[uuid.UUID] = None
    review_status: Optional[ReviewStatus] = None


def _assignment_row(review: Review) -> ReviewAssignment:
    data = ReviewReadFull.model_validate(review).model_dump()
    submission = review.submission
    return ReviewAssignment(
        **data,
        submission_title=submission.title if submission else None,
        conference_name=submission.conference.name if submission and submission.conference else None,
    )


async def _assigned_submission(session: AsyncSession, submission_id: uuid.UUID, user: User) -> Submission:
    submission = await get_submission(session, submission_id)
    if user.id not in submission.assigned_reviewer_ids:
        raise AuthorizationError("You are not assigned to review this submission")
    return submission


async def _own_review(session: AsyncSession, submission_id: uuid.UUID, user: User) -> Optional[Review]:
    return await session.scalar(
        select(Review).where(Review.submission_id == submission_id, Review.reviewer_id == user.id)
    )


@router.get("/assignments", response_model=list[AssignmentOut])
async def list_assignments(
    user: User = Depends(require_reviewer),
    session: AsyncSession = Depends(get_db),
) -> list[AssignmentOut]:
    rows = await session.scalars(
        select(Submission)
        .join(submission_reviewers, submission_reviewers.c.submission_id == Submission.id)
        .where(submission_reviewers.c.reviewer_id == user.id)
        .order_by(Submission.created_at)
    )
    submissions = rows.unique().all()
    mine = {
        r.submission_id: r
        for r in (await session.scalars(select(Review).where(Review.reviewer_id == user.id))).unique().all()
    }
    out = []
    for s in submissions:
        review = mine.get(s.id)
        out.append(AssignmentOut(
            submission_id=s.id,
            submission_title=s.title,
            conference_name=s.conference.name if s.conference else None,
            submission_status=s.status,
            review_id=review.id if review else None,
            review_status=review.status if review else None,
        ))
    return out


@router.get("/reviews", response_model=list[ReviewAssignment])
async def list_my_reviews(
    user: User = Depends(require_reviewer),
    session: AsyncSession = Depends(get_db),
) -> list[ReviewAssignment]:
    rows = await session.scalars(
        select(Review).where(Review.reviewer_id == user.id).order_by(Review.updated_at.desc())
    )
    return [_assignment_row(r) for r in rows.unique().all()]


@router.get("/reviews/{review_id}", response_model=ReviewAssignment)
async def read_review(
    review_id: uuid.UUID,
    user: User = Depends(require_reviewer),
    session: AsyncSession = Depends(get_db),
) -> ReviewAssignment:
    review = await session.get(Review, review_id)
    if review is None or review.reviewer_id != user.id:
        raise NotFoundError("Review", review_id)
    return _assignment_row(review)


@router.get("/submissions/{submission_id}", response_model=SubmissionRead)
async def read_assigned_submission(
    submission_id: uuid.UUID,
    user: User = Depends(require_reviewer),
    session: AsyncSession = Depends(get_db),
) -> SubmissionRead:
    return SubmissionRead.model_validate(await _assigned_submission(session, submission_id, user))


def _apply(review: Review, body: ReviewDraft | ReviewSubmit) -> None:
    data = body.model_dump(exclude_unset=True)
    if "score" in data:
        review.score = data["score"]
    if "recommendation" in data:
        rec = data["recommendation"]
        review.recommendation = rec.value if rec is not None else None
    if "comments" in data:
        review.comments = data["comments"]
    if "confidential_comments" in data:
        review.confidential_comments = data["confidential_comments"]


async def _editable_review(session: AsyncSession, submission: Submission, user: User) -> Review:
    review = await _own_review(session, submission.id, user)
    if review is None:
        review = Review(
            submission_id=submission.id,
            submission=submission,
            reviewer_id=user.id,
            reviewer=user,
            status=ReviewStatus.IN_PROGRESS.value,
        )
        session.add(review)
    elif review.is_completed:
        raise ValidationError("Review has already been submitted", error_code="invalid_state", status_code=409)
    return review


@router.put("/submissions/{submission_id}/review", response_model=ReviewReadFull)
async def save_draft(
    submission_id: uuid.UUID,
    body: ReviewDraft,
    user: User = Depends(require_reviewer),
    session: AsyncSession = Depends(get_db),
) -> ReviewReadFull:
    submission = await _assigned_submission(session, submission_id, user)
    review = await _editable_review(session, submission, user)
    _apply(review, body)
    review.status = ReviewStatus.IN_PROGRESS.value
    await session.commit()
    return ReviewReadFull.model_validate(review)


@router.post("/submissions/{submission_id}/review/submit", response_model=ReviewReadFull)
async def submit_review(
    submission_id: uuid.UUID,
    body: ReviewSubmit,
    user: User = Depends(require_reviewer),
    session: AsyncSession = Depends(get_db),
    queue: OutboundQueue = Depends(get_outbox),
) -> ReviewReadFull:
    submission = await _assigned_submission(session, submission_id, user)
    review = await _editable_review(session, submission, user)
    _apply(review, body)
    review.status = ReviewStatus.SUBMITTED.value
    review.submitted_at = utcnow()
    await session.flush()

    reviews = (await reviews_for(session, [submission.id]))[submission.id]
    summary = summary_for(submission, reviews)
    progress = summary.review_progress

    if (
        submission.status == SubmissionStatus.UNDER_REVIEW.value
        and progress.required > 0
        and progress.completed >= progress.required
    ):
        transition(submission, SubmissionStatus.REVIEW_COMPLETED)

    organizer = submission.conference.organizer if submission.conference else None
    if organizer is not None and organizer.email:
        queue.enqueue(
            organizer.email,
            "review_submitted",
            email_context(
                submission,
                organizer_name=organizer.name,
                reviewer_name=user.name,
                score=review.score,
                recommendation=review.recommendation,
                completed=progress.completed,
                required=progress.required,
            ),
        )
    await session.commit()
    log.info("review %s submitted for %s (%d/%d)", review.id, submission.id, progress.completed, progress.required)
    return ReviewReadFull.model_validate(review)
