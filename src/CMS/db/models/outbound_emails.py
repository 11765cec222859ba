from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from CMS.db.base import Base, JSONB, TimestampMixin, UUIDMixin, utcnow
from CMS.db.models.enums import OutboundStatus, values


class OutboundEmail(UUIDMixin, TimestampMixin, Base):
    """Outbox row: written with the business transaction, delivered later."""

    __tablename__ = "outbound_emails"

    recipient: Mapped[str] = mapped_column(sa.String(320), nullable=False)
    cc: Mapped[List[str]] = mapped_column(JSONB, nullable=False, default=list)
    template: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    context: Mapped[Dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)

    status: Mapped[str] = mapped_column(
        sa.Enum(*values(OutboundStatus), name="outbound_status", native_enum=False),
        nullable=False,
        default=OutboundStatus.PENDING.value,
        server_default=OutboundStatus.PENDING.value,
        index=True,
    )
    attempts: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0, server_default="0")
    last_error: Mapped[Optional[str]] = mapped_column(sa.Text)
    delivery_id: Mapped[Optional[str]] = mapped_column(sa.String(255))
    available_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        index=True,
    )
    sent_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
