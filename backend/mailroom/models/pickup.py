"""
Mailroom Backend: Pickup Event & Signature Models
===================================================

What:  ORM models for `pickup_events` and `signatures` (event schema).

One pickup event covers every package handed over in one batch; packages
point back to it through `packages.pickup_event_id`. A signature belongs to
exactly one event.

Databases created before pickup events existed lack `pickup_events` and key
signatures by package instead; see mailroom.stores.legacy_store for that
layout.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from mailroom.database import Base
from mailroom.models._columns import created_at_column, utcnow


class PickupEvent(Base):
    """One handover of one or more packages to one collector."""

    __tablename__ = "pickup_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    mailbox_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("mailboxes.id", ondelete="CASCADE"),
        nullable=False,
    )
    tenant_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("tenants.id", ondelete="SET NULL"),
        nullable=True,
    )

    pickup_person_name: Mapped[str] = mapped_column(String(255), nullable=False)
    staff_initials: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    signature_required: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    signature_captured: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )

    pickup_timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        Index("idx_pickup_events_timestamp", "pickup_timestamp"),
        Index("idx_pickup_events_mailbox", "mailbox_id"),
        Index("idx_pickup_events_tenant", "tenant_id"),
    )

    def __repr__(self) -> str:
        return f"<PickupEvent(id={self.id}, mailbox_id={self.mailbox_id})>"


class Signature(Base):
    """Captured collector signature: a base64 data URI or an external URL."""

    __tablename__ = "signatures"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    pickup_event_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("pickup_events.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    signature_data: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    signature_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = created_at_column()

    def __repr__(self) -> str:
        return f"<Signature(id={self.id}, pickup_event_id={self.pickup_event_id})>"
