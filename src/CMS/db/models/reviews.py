from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from CMS.db.base import Base, GUID, TimestampMixin, UUIDMixin
from CMS.db.models.enums import COMPLETED_REVIEW_STATUSES, Recommendation, ReviewStatus, values


class Review(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "reviews"

    NOTE: ClassVar[str] = (
        "description=One reviewer's assessment of one submission. A review counts as "
        "completed once its status is submitted or pending_revision."
    )

    __table_args__ = (
        sa.UniqueConstraint("submission_id", "reviewer_id", name="uq_reviews_submission_reviewer"),
        sa.CheckConstraint("score IS NULL OR (score >= 0 AND score <= 10)", name="score_range"),
        {"comment": NOTE},
    )

    submission_id: Mapped[Any] = mapped_column(
        GUID(),
        sa.ForeignKey("submissions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    reviewer_id: Mapped[Any] = mapped_column(
        GUID(),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    status: Mapped[str] = mapped_column(
        sa.Enum(*values(ReviewStatus), name="review_status", native_enum=False),
        nullable=False,
        server_default=ReviewStatus.DRAFT.value,
        default=ReviewStatus.DRAFT.value,
        index=True,
    )
    score: Mapped[Optional[float]] = mapped_column(sa.Float)
    recommendation: Mapped[Optional[str]] = mapped_column(
        sa.Enum(*values(Recommendation), name="review_recommendation", native_enum=False),
    )
    comments: Mapped[Optional[str]] = mapped_column(sa.Text)
    confidential_comments: Mapped[Optional[str]] = mapped_column(sa.Text)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))

    submission = relationship("Submission", lazy="joined")
    reviewer = relationship("User", lazy="joined")

    @property
    def is_completed(self) -> bool:
        return self.status in COMPLETED_REVIEW_STATUSES
