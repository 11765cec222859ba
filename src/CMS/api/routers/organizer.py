# src/CMS/api/routers/organizer.py
from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from CMS.api.deps import get_outbox
from CMS.api.routers.conferences import get_owned_conference
from CMS.api.routers.submissions import with_summary
from CMS.app_logger import get_logger
from CMS.auth.deps import require_organizer
from CMS.core.errors import AuthorizationError, ValidationError
from CMS.db.models.conferences import Conference
from CMS.db.models.enums import Role, SubmissionStatus
from CMS.db.models.submissions import Submission
from CMS.db.models.users import User
from CMS.db.session import get_db
from CMS.schemas.conferences import ConferenceRead
from CMS.schemas.reviews import ReviewReadFull, ReviewSummaryOut
from CMS.schemas.submissions import (
    AssignReviewersRequest,
    DecisionRequest,
    SubmissionDetailFull,
    SubmissionRead,
    SubmissionWithSummary,
)
from CMS.schemas.users import UserBrief
from CMS.services.outbox import OutboundQueue
from CMS.services.submissions import (
    DECIDABLE_STATUSES,
    cc_for,
    email_context,
    get_submission,
    reviews_for,
    summary_for,
    transition,
)

log = get_logger("organizer")
router = APIRouter(prefix="/api/organizer", tags=["organizer"])


async def _managed_submission(session: AsyncSession, submission_id: uuid.UUID, user: User) -> Submission:
    submission = await get_submission(session, submission_id)
    if submission.conference is None or submission.conference.organizer_id != user.id:
        raise AuthorizationError("Not authorized to manage this submission")
    return submission


@router.get("/conferences", response_model=list[ConferenceRead])
async def my_conferences(
    user: User = Depends(require_organizer),
    session: AsyncSession = Depends(get_db),
) -> list[ConferenceRead]:
    rows = await session.scalars(
        select(Conference).where(Conference.organizer_id == user.id).order_by(Conference.start_date.desc())
    )
    return [ConferenceRead.model_validate(c) for c in rows.unique().all()]


@router.get("/conferences/{conference_id}/submissions", response_model=list[SubmissionWithSummary])
async def conference_submissions(
    conference_id: uuid.UUID,
    status_filter: Optional[SubmissionStatus] = Query(default=None, alias="status"),
    user: User = Depends(require_organizer),
    session: AsyncSession = Depends(get_db),
) -> list[SubmissionWithSummary]:
    conference = await get_owned_conference(session, conference_id, user)
    stmt = select(Submission).where(Submission.conference_id == conference.id)
    if status_filter is not None:
        stmt = stmt.where(Submission.status == status_filter.value)
    submissions = (await session.scalars(stmt.order_by(Submission.created_at))).unique().all()
    reviews = await reviews_for(session, [s.id for s in submissions])
    return [with_summary(s, reviews.get(s.id, [])) for s in submissions]


@router.get("/submissions/{submission_id}", response_model=SubmissionDetailFull)
async def submission_detail(
    submission_id: uuid.UUID,
    user: User = Depends(require_organizer),
    session: AsyncSession = Depends(get_db),
) -> SubmissionDetailFull:
    submission = await _managed_submission(session, submission_id, user)
    reviews = (await reviews_for(session, [submission.id]))[submission.id]
    summary = summary_for(submission, reviews)
    return SubmissionDetailFull(
        submission=SubmissionRead.model_validate(submission),
        reviews=[ReviewReadFull.model_validate(r) for r in reviews],
        **ReviewSummaryOut.from_summary(summary).model_dump(),
    )


@router.get("/reviewers", response_model=list[UserBrief])
async def list_reviewers(
    expertise: Optional[str] = None,
    _user: User = Depends(require_organizer),
    session: AsyncSession = Depends(get_db),
) -> list[UserBrief]:
    reviewers = (
        await session.scalars(select(User).where(User.role == Role.REVIEWER.value).order_by(User.name))
    ).all()
    if expertise:
        needle = expertise.strip().lower()
        reviewers = [u for u in reviewers if any(needle in d.lower() for d in (u.expertise_domains or []))]
    return [UserBrief.model_validate(u) for u in reviewers]


@router.post("/submissions/{submission_id}/reviewers", response_model=SubmissionRead)
async def assign_reviewers(
    submission_id: uuid.UUID,
    body: AssignReviewersRequest,
    user: User = Depends(require_organizer),
    session: AsyncSession = Depends(get_db),
    queue: OutboundQueue = Depends(get_outbox),
) -> SubmissionRead:
    submission = await _managed_submission(session, submission_id, user)
    if submission.status not in DECIDABLE_STATUSES:
        raise ValidationError(
            f"Reviewers cannot be assigned once a decision is made (status: {submission.status})",
            error_code="invalid_state",
            status_code=409,
        )

    wanted = list(dict.fromkeys(body.reviewer_ids))
    found = {
        u.id: u for u in (await session.scalars(select(User).where(User.id.in_(wanted)))).all()
    }
    missing = [str(rid) for rid in wanted if rid not in found]
    if missing:
        raise ValidationError(f"Unknown reviewer(s): {', '.join(missing)}", field="reviewer_ids")
    not_reviewers = [str(rid) for rid in wanted if found[rid].role != Role.REVIEWER.value]
    if not_reviewers:
        raise ValidationError(f"User(s) are not reviewers: {', '.join(not_reviewers)}", field="reviewer_ids")
    if submission.author_id in found:
        raise ValidationError("Authors cannot review their own submission", field="reviewer_ids")

    already = set(submission.assigned_reviewer_ids)
    added = [found[rid] for rid in wanted if rid not in already]
    for reviewer in added:
        submission.assigned_reviewers.append(reviewer)

    if added and submission.status in (SubmissionStatus.SUBMITTED.value, SubmissionStatus.REVIEW_COMPLETED.value):
        transition(submission, SubmissionStatus.UNDER_REVIEW)

    for reviewer in added:
        queue.enqueue(
            reviewer.email,
            "reviewer_assigned",
            email_context(submission, reviewer_name=reviewer.name, abstract=submission.abstract),
        )
    await session.commit()
    log.info("submission %s: %d reviewer(s) assigned, %d already present",
             submission.id, len(added), len(wanted) - len(added))
    return SubmissionRead.model_validate(submission)


@router.post("/submissions/{submission_id}/decision", response_model=SubmissionRead)
async def record_decision(
    submission_id: uuid.UUID,
    body: DecisionRequest,
    user: User = Depends(require_organizer),
    session: AsyncSession = Depends(get_db),
    queue: OutboundQueue = Depends(get_outbox),
) -> SubmissionRead:
    submission = await _managed_submission(session, submission_id, user)
    if submission.status not in DECIDABLE_STATUSES:
        raise ValidationError(
            f"A decision was already recorded (status: {submission.status})",
            error_code="invalid_state",
            status_code=409,
        )
    transition(submission, body.decision)

    author = submission.author
    queue.enqueue(
        author.email,
        "decision",
        email_context(submission, author_name=author.name, decision=body.decision, comments=body.comments),
        cc=cc_for(submission),
    )
    # the author has been notified; accepted papers now wait for the camera-ready upload
    if body.decision == SubmissionStatus.ACCEPTED.value:
        transition(submission, SubmissionStatus.CAMERA_READY_PENDING)

    await session.commit()
    log.info("submission %s decided: %s", submission.id, body.decision)
    return SubmissionRead.model_validate(submission)
