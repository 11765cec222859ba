from __future__ import annotations

import uuid
from datetime import datetime
from typing import Dict, Optional

from pydantic import Field

from CMS.db.models.enums import Recommendation, ReviewStatus
from CMS.schemas.base import APIModel


class ReviewDraft(APIModel):
    score: Optional[float] = Field(default=None, ge=0, le=10)
    recommendation: Optional[Recommendation] = None
    comments: Optional[str] = None
    confidential_comments: Optional[str] = None


class ReviewSubmit(APIModel):
    score: float = Field(ge=0, le=10)
    recommendation: Recommendation
    comments: Optional[str] = None
    confidential_comments: Optional[str] = None


class ReviewRead(APIModel):
    """Review as shown to the paper's author: no confidential comments."""

    id: uuid.UUID
    submission_id: uuid.UUID
    status: ReviewStatus
    score: Optional[float] = None
    recommendation: Optional[Recommendation] = None
    comments: Optional[str] = None
    submitted_at: Optional[datetime] = None


class ReviewReadFull(ReviewRead):
    reviewer_id: uuid.UUID
    confidential_comments: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ReviewAssignment(ReviewReadFull):
    """Reviewer dashboard row."""

    submission_title: Optional[str] = None
    conference_name: Optional[str] = None


# ---- aggregation output ---------------------------------------------------

class ReviewProgressOut(APIModel):
    completed: int
    required: int
    percentage: int


class VoteBreakdownOut(APIModel):
    accept: int = 0
    reject: int = 0
    minor_revision: int = Field(default=0, alias="minorRevision")
    major_revision: int = Field(default=0, alias="majorRevision")


class ReviewSummaryOut(APIModel):
    review_progress: ReviewProgressOut
    vote_breakdown: VoteBreakdownOut
    average_score: Optional[float] = None
    majority_decision: Optional[str] = None

    @classmethod
    def from_summary(cls, summary) -> "ReviewSummaryOut":
        data: Dict = summary.to_dict()
        return cls.model_validate(data)
