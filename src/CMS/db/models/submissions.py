from __future__ import annotations

from typing import Any, ClassVar, List, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from CMS.db.base import Base, GUID, JSONB, TimestampMixin, UUIDMixin
from CMS.db.models.enums import SubmissionStatus, values


submission_reviewers = sa.Table(
    "submission_reviewers",
    Base.metadata,
    sa.Column("submission_id", GUID(), sa.ForeignKey("submissions.id", ondelete="CASCADE"), primary_key=True),
    sa.Column("reviewer_id", GUID(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    sa.Column("assigned_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
)


class Submission(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "submissions"

    NOTE: ClassVar[str] = (
        "description=Paper submissions to a conference/track. Review progress, vote "
        "breakdown and majority decision are derived from reviews on read and never stored."
    )

    __table_args__ = {"comment": NOTE}

    title: Mapped[str] = mapped_column(sa.String(500), nullable=False)
    abstract: Mapped[str] = mapped_column(sa.Text, nullable=False)
    keywords: Mapped[List[str]] = mapped_column(JSONB, nullable=False, default=list)

    conference_id: Mapped[Any] = mapped_column(
        GUID(),
        sa.ForeignKey("conferences.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    track_id: Mapped[Optional[Any]] = mapped_column(
        GUID(),
        sa.ForeignKey("tracks.id", ondelete="SET NULL"),
        index=True,
    )
    author_id: Mapped[Any] = mapped_column(
        GUID(),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    status: Mapped[str] = mapped_column(
        sa.Enum(*values(SubmissionStatus), name="submission_status", native_enum=False),
        nullable=False,
        server_default=SubmissionStatus.SUBMITTED.value,
        default=SubmissionStatus.SUBMITTED.value,
        index=True,
    )
    file_url: Mapped[Optional[str]] = mapped_column(sa.String(1024))
    camera_ready_url: Mapped[Optional[str]] = mapped_column(sa.String(1024))

    conference = relationship("Conference", lazy="joined")
    track = relationship("Track", lazy="joined")
    author = relationship("User", foreign_keys=[author_id], lazy="joined")

    assigned_reviewers: Mapped[List["User"]] = relationship(
        "User",
        secondary=submission_reviewers,
        lazy="selectin",
    )

    co_authors: Mapped[List["SubmissionCoAuthor"]] = relationship(
        "SubmissionCoAuthor",
        back_populates="submission",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    @property
    def assigned_reviewer_ids(self) -> list:
        return [u.id for u in self.assigned_reviewers]

    @property
    def co_author_emails(self) -> list[str]:
        return [c.email for c in self.co_authors]


class SubmissionCoAuthor(UUIDMixin, Base):
    __tablename__ = "submission_co_authors"
    __table_args__ = (
        sa.UniqueConstraint("submission_id", "email", name="uq_submission_co_authors_submission_email"),
    )

    submission_id: Mapped[Any] = mapped_column(
        GUID(),
        sa.ForeignKey("submissions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    email: Mapped[str] = mapped_column(sa.String(320), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(sa.String(255))
    # set when the co-author already has an account
    user_id: Mapped[Optional[Any]] = mapped_column(
        GUID(),
        sa.ForeignKey("users.id", ondelete="SET NULL"),
        index=True,
    )

    submission: Mapped["Submission"] = relationship("Submission", back_populates="co_authors")
