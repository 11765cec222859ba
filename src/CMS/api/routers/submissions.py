# src/CMS/api/routers/submissions.py
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, File, Response, UploadFile, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from CMS.api.deps import get_outbox, get_storage
from CMS.app_logger import get_logger
from CMS.auth.deps import require_author
from CMS.core.errors import AuthorizationError, NotFoundError, ValidationError
from CMS.db.models.conferences import Conference, Track
from CMS.db.models.enums import SubmissionStatus
from CMS.db.models.submissions import Submission
from CMS.db.models.users import User
from CMS.db.session import get_db
from CMS.schemas.reviews import ReviewRead, ReviewSummaryOut
from CMS.schemas.submissions import (
    SubmissionCreate,
    SubmissionDetail,
    SubmissionRead,
    SubmissionUpdate,
    SubmissionWithSummary,
)
from CMS.services.outbox import OutboundQueue
from CMS.services.storage import StorageBackend, read_upload
from CMS.services.submissions import (
    CAMERA_READY_STATUSES,
    EDITABLE_STATUSES,
    cc_for,
    email_context,
    get_submission,
    reviews_for,
    set_co_authors,
    summary_for,
    transition,
)

log = get_logger("submissions")
router = APIRouter(prefix="/api/author", tags=["author"])


async def _own_submission(session: AsyncSession, submission_id: uuid.UUID, user: User) -> Submission:
    submission = await get_submission(session, submission_id)
    if submission.author_id != user.id:
        raise AuthorizationError("Not authorized to access this submission")
    return submission


async def _track_for(session: AsyncSession, conference_id, track_id) -> Track | None:
    if track_id is None:
        return None
    track = await session.get(Track, track_id)
    if track is None or track.conference_id != conference_id:
        raise ValidationError("Track does not belong to this conference", field="track_id")
    return track


def _require_editable(submission: Submission) -> None:
    if submission.status not in EDITABLE_STATUSES:
        raise ValidationError(
            f"Submission can no longer be changed (status: {submission.status})",
            error_code="invalid_state",
            status_code=409,
        )


def with_summary(submission: Submission, reviews) -> SubmissionWithSummary:
    summary = ReviewSummaryOut.from_summary(summary_for(submission, reviews))
    return SubmissionWithSummary(
        **SubmissionRead.model_validate(submission).model_dump(),
        **summary.model_dump(),
        conference_name=submission.conference.name if submission.conference else None,
        track_name=submission.track.name if submission.track else None,
    )


@router.post("/submissions", response_model=SubmissionRead, status_code=status.HTTP_201_CREATED)
async def create_submission(
    body: SubmissionCreate,
    user: User = Depends(require_author),
    session: AsyncSession = Depends(get_db),
    queue: OutboundQueue = Depends(get_outbox),
) -> SubmissionRead:
    conference = await session.get(Conference, body.conference_id)
    if conference is None:
        raise NotFoundError("Conference", body.conference_id)
    track = await _track_for(session, conference.id, body.track_id)

    submission = Submission(
        title=body.title.strip(),
        abstract=body.abstract.strip(),
        keywords=list(body.keywords),
        conference=conference,
        track=track,
        author_id=user.id,
        author=user,
        status=SubmissionStatus.SUBMITTED.value,
        assigned_reviewers=[],
        co_authors=[],
    )
    await set_co_authors(session, submission, body.co_authors, author_email=user.email)
    session.add(submission)
    await session.flush()

    queue.enqueue(
        user.email,
        "submission_received",
        email_context(submission, author_name=user.name),
        cc=cc_for(submission),
    )
    await session.commit()
    log.info("submission %s created by %s for conference %s", submission.id, user.id, conference.id)
    return SubmissionRead.model_validate(submission)


@router.get("/submissions", response_model=list[SubmissionWithSummary])
async def list_my_submissions(
    user: User = Depends(require_author),
    session: AsyncSession = Depends(get_db),
) -> list[SubmissionWithSummary]:
    rows = await session.scalars(
        select(Submission).where(Submission.author_id == user.id).order_by(Submission.created_at.desc())
    )
    submissions = rows.unique().all()
    reviews = await reviews_for(session, [s.id for s in submissions])
    return [with_summary(s, reviews.get(s.id, [])) for s in submissions]


@router.get("/submissions/{submission_id}", response_model=SubmissionDetail)
async def read_my_submission(
    submission_id: uuid.UUID,
    user: User = Depends(require_author),
    session: AsyncSession = Depends(get_db),
) -> SubmissionDetail:
    submission = await _own_submission(session, submission_id, user)
    reviews = (await reviews_for(session, [submission.id]))[submission.id]
    summary = summary_for(submission, reviews)
    return SubmissionDetail(
        submission=SubmissionRead.model_validate(submission),
        # authors only see finished reviews, never confidential comments
        reviews=[ReviewRead.model_validate(r) for r in summary.completed_reviews],
        **ReviewSummaryOut.from_summary(summary).model_dump(),
    )


@router.put("/submissions/{submission_id}", response_model=SubmissionRead)
async def update_submission(
    submission_id: uuid.UUID,
    body: SubmissionUpdate,
    user: User = Depends(require_author),
    session: AsyncSession = Depends(get_db),
) -> SubmissionRead:
    submission = await _own_submission(session, submission_id, user)
    _require_editable(submission)

    data = body.model_dump(exclude_unset=True)
    if "title" in data and data["title"] is not None:
        submission.title = data["title"].strip()
    if "abstract" in data and data["abstract"] is not None:
        submission.abstract = data["abstract"].strip()
    if "keywords" in data and data["keywords"] is not None:
        submission.keywords = [k.strip() for k in data["keywords"] if k and k.strip()]
    if "track_id" in data:
        submission.track = await _track_for(session, submission.conference_id, data["track_id"])
    if body.co_authors is not None:
        await set_co_authors(session, submission, body.co_authors, author_email=user.email)

    await session.commit()
    return SubmissionRead.model_validate(submission)


@router.delete("/submissions/{submission_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_submission(
    submission_id: uuid.UUID,
    user: User = Depends(require_author),
    session: AsyncSession = Depends(get_db),
) -> Response:
    submission = await _own_submission(session, submission_id, user)
    _require_editable(submission)
    await session.delete(submission)
    await session.commit()
    log.info("submission %s deleted by %s", submission_id, user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/submissions/{submission_id}/file", response_model=SubmissionRead)
async def upload_paper(
    submission_id: uuid.UUID,
    file: UploadFile = File(...),
    user: User = Depends(require_author),
    session: AsyncSession = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
) -> SubmissionRead:
    submission = await _own_submission(session, submission_id, user)
    _require_editable(submission)
    content = await read_upload(file, storage.max_bytes)
    stored = await storage.save(file.filename or "paper.pdf", content, file.content_type)
    submission.file_url = stored.url
    await session.commit()
    return SubmissionRead.model_validate(submission)


@router.post("/submissions/{submission_id}/camera-ready", response_model=SubmissionRead)
async def upload_camera_ready(
    submission_id: uuid.UUID,
    file: UploadFile = File(...),
    user: User = Depends(require_author),
    session: AsyncSession = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
) -> SubmissionRead:
    submission = await _own_submission(session, submission_id, user)
    if submission.status not in CAMERA_READY_STATUSES:
        raise ValidationError(
            "Camera-ready versions are only accepted for accepted papers",
            error_code="invalid_state",
            status_code=409,
        )
    content = await read_upload(file, storage.max_bytes)
    stored = await storage.save(file.filename or "camera-ready.pdf", content, file.content_type)
    submission.camera_ready_url = stored.url
    transition(submission, SubmissionStatus.FINAL_SUBMITTED)
    await session.commit()
    return SubmissionRead.model_validate(submission)
