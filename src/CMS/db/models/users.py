from __future__ import annotations

from typing import Any, ClassVar, List, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from CMS.db.base import Base, GUID, JSONB, TimestampMixin, UUIDMixin
from CMS.db.models.enums import IdentityProvider, Role, values


class User(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "users"

    NOTE: ClassVar[str] = (
        "description=Platform accounts. One account per email; the role decides which "
        "dashboard the account uses. OAuth identities hang off identity_links."
    )

    __table_args__ = {"comment": NOTE}

    name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    email: Mapped[str] = mapped_column(sa.String(320), nullable=False, unique=True, index=True)
    password_hash: Mapped[Optional[str]] = mapped_column(sa.String(255))
    role: Mapped[str] = mapped_column(
        sa.Enum(*values(Role), name="user_role", native_enum=False),
        nullable=False,
        server_default=Role.AUTHOR.value,
    )
    affiliation: Mapped[Optional[str]] = mapped_column(sa.String(255))
    profile_picture: Mapped[Optional[str]] = mapped_column(sa.String(1024))
    expertise_domains: Mapped[List[str]] = mapped_column(JSONB, nullable=False, default=list)

    identities: Mapped[List["IdentityLink"]] = relationship(
        "IdentityLink",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    def identity(self, provider: IdentityProvider | str) -> Optional["IdentityLink"]:
        key = provider.value if isinstance(provider, IdentityProvider) else provider
        return next((i for i in self.identities if i.provider == key), None)


class IdentityLink(UUIDMixin, TimestampMixin, Base):
    """
    External identity attached to a user.

    ``provider`` is the tag of the union: Google links carry a refresh token,
    ORCID links carry the iD as ``subject``.
    """
    __tablename__ = "identity_links"
    __table_args__ = (
        sa.UniqueConstraint("provider", "subject", name="uq_identity_links_provider_subject"),
        sa.UniqueConstraint("user_id", "provider", name="uq_identity_links_user_provider"),
    )

    user_id: Mapped[Any] = mapped_column(
        GUID(),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    provider: Mapped[str] = mapped_column(
        sa.Enum(*values(IdentityProvider), name="identity_provider", native_enum=False),
        nullable=False,
    )
    subject: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    access_token: Mapped[Optional[str]] = mapped_column(sa.Text)
    refresh_token: Mapped[Optional[str]] = mapped_column(sa.Text)

    user: Mapped["User"] = relationship("User", back_populates="identities")
