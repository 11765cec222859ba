"""Initial CMS schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-17
"""
from __future__ import annotations

import logging

from alembic import op
import sqlalchemy as sa

from CMS.db.base import GUID, JSONB

log = logging.getLogger(__name__)

# ---- Alembic identifiers ----
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

ROLES = ("organizer", "author", "reviewer", "participant")
PROVIDERS = ("google", "orcid")
SUBMISSION_STATUSES = (
    "submitted", "under_review", "review_completed", "accepted",
    "rejected", "camera_ready_pending", "final_submitted",
)
REVIEW_STATUSES = ("draft", "submitted", "pending_revision", "in_progress")
RECOMMENDATIONS = ("ACCEPT", "REJECT", "MINOR_REVISION", "MAJOR_REVISION")
OUTBOUND_STATUSES = ("pending", "sent", "failed")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _enum(values, name: str) -> sa.Enum:
    return sa.Enum(*values, name=name, native_enum=False)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("password_hash", sa.String(255)),
        sa.Column("role", _enum(ROLES, "user_role"), nullable=False, server_default="author"),
        sa.Column("affiliation", sa.String(255)),
        sa.Column("profile_picture", sa.String(1024)),
        sa.Column("expertise_domains", JSONB(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_index("ix_users_email", "users", ["email"])

    op.create_table(
        "identity_links",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("user_id", GUID(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("provider", _enum(PROVIDERS, "identity_provider"), nullable=False),
        sa.Column("subject", sa.String(255), nullable=False),
        sa.Column("access_token", sa.Text()),
        sa.Column("refresh_token", sa.Text()),
        *_timestamps(),
        sa.UniqueConstraint("provider", "subject", name="uq_identity_links_provider_subject"),
        sa.UniqueConstraint("user_id", "provider", name="uq_identity_links_user_provider"),
    )
    op.create_index("ix_identity_links_user_id", "identity_links", ["user_id"])

    op.create_table(
        "conferences",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("venue", sa.String(255)),
        sa.Column("organizer_id", GUID(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True)),
        *_timestamps(),
    )
    op.create_index("ix_conferences_organizer_id", "conferences", ["organizer_id"])
    op.create_index("ix_conferences_start_date", "conferences", ["start_date"])
    op.create_index("ix_conferences_end_date", "conferences", ["end_date"])

    op.create_table(
        "tracks",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("conference_id", GUID(), sa.ForeignKey("conferences.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text()),
        *_timestamps(),
        sa.UniqueConstraint("conference_id", "name", name="uq_tracks_conference_name"),
    )
    op.create_index("ix_tracks_conference_id", "tracks", ["conference_id"])

    op.create_table(
        "submissions",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("abstract", sa.Text(), nullable=False),
        sa.Column("keywords", JSONB(), nullable=False),
        sa.Column("conference_id", GUID(), sa.ForeignKey("conferences.id", ondelete="CASCADE"), nullable=False),
        sa.Column("track_id", GUID(), sa.ForeignKey("tracks.id", ondelete="SET NULL")),
        sa.Column("author_id", GUID(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", _enum(SUBMISSION_STATUSES, "submission_status"),
                  nullable=False, server_default="submitted"),
        sa.Column("file_url", sa.String(1024)),
        sa.Column("camera_ready_url", sa.String(1024)),
        *_timestamps(),
    )
    for col in ("conference_id", "track_id", "author_id", "status"):
        op.create_index(f"ix_submissions_{col}", "submissions", [col])

    op.create_table(
        "submission_reviewers",
        sa.Column("submission_id", GUID(), sa.ForeignKey("submissions.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("reviewer_id", GUID(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "submission_co_authors",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("submission_id", GUID(), sa.ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("name", sa.String(255)),
        sa.Column("user_id", GUID(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        sa.UniqueConstraint("submission_id", "email", name="uq_submission_co_authors_submission_email"),
    )
    op.create_index("ix_submission_co_authors_submission_id", "submission_co_authors", ["submission_id"])
    op.create_index("ix_submission_co_authors_user_id", "submission_co_authors", ["user_id"])

    op.create_table(
        "reviews",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("submission_id", GUID(), sa.ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("reviewer_id", GUID(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", _enum(REVIEW_STATUSES, "review_status"), nullable=False, server_default="draft"),
        sa.Column("score", sa.Float()),
        sa.Column("recommendation", _enum(RECOMMENDATIONS, "review_recommendation")),
        sa.Column("comments", sa.Text()),
        sa.Column("confidential_comments", sa.Text()),
        sa.Column("submitted_at", sa.DateTime(timezone=True)),
        *_timestamps(),
        sa.UniqueConstraint("submission_id", "reviewer_id", name="uq_reviews_submission_reviewer"),
        sa.CheckConstraint("score IS NULL OR (score >= 0 AND score <= 10)", name="ck_reviews_score_range"),
    )
    for col in ("submission_id", "reviewer_id", "status"):
        op.create_index(f"ix_reviews_{col}", "reviews", [col])

    op.create_table(
        "outbound_emails",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("recipient", sa.String(320), nullable=False),
        sa.Column("cc", JSONB(), nullable=False),
        sa.Column("template", sa.String(64), nullable=False),
        sa.Column("context", JSONB(), nullable=False),
        sa.Column("status", _enum(OUTBOUND_STATUSES, "outbound_status"), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text()),
        sa.Column("delivery_id", sa.String(255)),
        sa.Column("available_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True)),
        *_timestamps(),
    )
    op.create_index("ix_outbound_emails_status", "outbound_emails", ["status"])
    op.create_index("ix_outbound_emails_available_at", "outbound_emails", ["available_at"])
    log.info("created CMS schema")


def downgrade() -> None:
    for table in (
        "outbound_emails",
        "reviews",
        "submission_co_authors",
        "submission_reviewers",
        "submissions",
        "tracks",
        "conferences",
        "identity_links",
        "users",
    ):
        op.drop_table(table)
