from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import EmailStr, Field, field_validator

from CMS.db.models.enums import SubmissionStatus
from CMS.schemas.base import APIModel
from CMS.schemas.reviews import ReviewRead, ReviewReadFull, ReviewSummaryOut


class CoAuthorIn(APIModel):
    email: EmailStr
    name: Optional[str] = None


class CoAuthorRead(APIModel):
    email: str
    name: Optional[str] = None
    user_id: Optional[uuid.UUID] = None


class SubmissionCreate(APIModel):
    title: str = Field(min_length=1, max_length=500)
    abstract: str = Field(min_length=1)
    keywords: List[str] = Field(default_factory=list)
    conference_id: uuid.UUID
    track_id: Optional[uuid.UUID] = None
    co_authors: List[CoAuthorIn] = Field(default_factory=list)

    @field_validator("keywords")
    @classmethod
    def _clean_keywords(cls, v: List[str]) -> List[str]:
        return [k.strip() for k in v if k and k.strip()]


class SubmissionUpdate(APIModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    abstract: Optional[str] = Field(default=None, min_length=1)
    keywords: Optional[List[str]] = None
    track_id: Optional[uuid.UUID] = None
    co_authors: Optional[List[CoAuthorIn]] = None


class SubmissionRead(APIModel):
    id: uuid.UUID
    title: str
    abstract: str
    keywords: List[str] = Field(default_factory=list)
    conference_id: uuid.UUID
    track_id: Optional[uuid.UUID] = None
    author_id: uuid.UUID
    status: SubmissionStatus
    file_url: Optional[str] = None
    camera_ready_url: Optional[str] = None
    co_authors: List[CoAuthorRead] = Field(default_factory=list)
    assigned_reviewer_ids: List[uuid.UUID] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SubmissionWithSummary(SubmissionRead, ReviewSummaryOut):
    conference_name: Optional[str] = None
    track_name: Optional[str] = None


class SubmissionDetail(ReviewSummaryOut):
    submission: SubmissionRead
    reviews: List[ReviewRead] = Field(default_factory=list)


class SubmissionDetailFull(ReviewSummaryOut):
    submission: SubmissionRead
    reviews: List[ReviewReadFull] = Field(default_factory=list)


class AssignReviewersRequest(APIModel):
    reviewer_ids: List[uuid.UUID] = Field(min_length=1)


class DecisionRequest(APIModel):
    decision: Literal["accepted", "rejected"]
    comments: Optional[str] = None
