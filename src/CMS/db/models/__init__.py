# Import every model so Base.metadata is complete (Alembic, create_all).
from CMS.db.base import Base
from CMS.db.models.users import User, IdentityLink
from CMS.db.models.conferences import Conference, Track
from CMS.db.models.submissions import Submission, SubmissionCoAuthor, submission_reviewers
from CMS.db.models.reviews import Review
from CMS.db.models.outbound_emails import OutboundEmail

__all__ = [
    "Base",
    "User",
    "IdentityLink",
    "Conference",
    "Track",
    "Submission",
    "SubmissionCoAuthor",
    "submission_reviewers",
    "Review",
    "OutboundEmail",
]
