from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    ORGANIZER = "organizer"
    AUTHOR = "author"
    REVIEWER = "reviewer"
    PARTICIPANT = "participant"


# Roles that may share one email and switch between each other on login.
SHAREABLE_ROLES = frozenset({Role.AUTHOR.value, Role.REVIEWER.value, Role.PARTICIPANT.value})


class IdentityProvider(str, Enum):
    GOOGLE = "google"
    ORCID = "orcid"


class SubmissionStatus(str, Enum):
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    REVIEW_COMPLETED = "review_completed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CAMERA_READY_PENDING = "camera_ready_pending"
    FINAL_SUBMITTED = "final_submitted"


class ReviewStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    PENDING_REVISION = "pending_revision"
    IN_PROGRESS = "in_progress"


COMPLETED_REVIEW_STATUSES = frozenset({ReviewStatus.SUBMITTED.value, ReviewStatus.PENDING_REVISION.value})


class Recommendation(str, Enum):
    ACCEPT = "ACCEPT"
    REJECT = "REJECT"
    MINOR_REVISION = "MINOR_REVISION"
    MAJOR_REVISION = "MAJOR_REVISION"


class OutboundStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


def values(enum_cls) -> list[str]:
    return [m.value for m in enum_cls]
