from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar, List, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from CMS.db.base import Base, GUID, TimestampMixin, UUIDMixin


class Conference(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "conferences"

    NOTE: ClassVar[str] = (
        "description=Conferences run by an organizer. A null end_date means the "
        "conference has not ended and is still included in weekly digests."
    )

    __table_args__ = {"comment": NOTE}

    name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    venue: Mapped[Optional[str]] = mapped_column(sa.String(255))
    organizer_id: Mapped[Any] = mapped_column(
        GUID(),
        sa.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    start_date: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False, index=True)
    end_date: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True), index=True)

    organizer = relationship("User", lazy="joined")

    tracks: Mapped[List["Track"]] = relationship(
        "Track",
        back_populates="conference",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
        order_by="Track.name",
    )


class Track(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "tracks"
    __table_args__ = (
        sa.UniqueConstraint("conference_id", "name", name="uq_tracks_conference_name"),
    )

    conference_id: Mapped[Any] = mapped_column(
        GUID(),
        sa.ForeignKey("conferences.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)

    conference: Mapped["Conference"] = relationship("Conference", back_populates="tracks")
