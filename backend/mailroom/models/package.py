"""
Mailroom Backend: Package Model
=================================

What:  ORM model for the `packages` table.

Lifecycle:
    received ──▶ ready_for_pickup ──▶ picked_up
        │               │
        └───────────────┴──▶ returned_to_sender

    picked_up is only reached through the pickup workflow, exactly once.
    An explicit status reset through the package endpoint is the only way back
    and clears picked_up_at.

Query Patterns:
    - Pickup screen: WHERE mailbox_id = ? AND status IN (...)  → idx_packages_mailbox_status
    - Scanner lookup: WHERE tracking_number = ?                 → unique index
    - Reports: WHERE received_at BETWEEN ? AND ?                → idx_packages_received_at
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from mailroom.database import Base
from mailroom.models._columns import created_at_column, updated_at_column, utcnow

PACKAGE_STATUSES = ("received", "ready_for_pickup", "picked_up", "returned_to_sender")
OPEN_STATUSES = ("received", "ready_for_pickup")
SIZE_CATEGORIES = ("small", "medium", "large", "oversized")


class Package(Base):
    """One parcel received at the front desk."""

    __tablename__ = "packages"

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

    tracking_number: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default="received", server_default=text("'received'")
    )

    high_value: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )

    # Authorised collector at intake; actual collector after a legacy pickup
    pickup_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    carrier: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    size_category: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    picked_up_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    pickup_event_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("pickup_events.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at: Mapped[datetime] = created_at_column()
    updated_at: Mapped[datetime] = updated_at_column()

    __table_args__ = (
        CheckConstraint(
            "status IN ('received', 'ready_for_pickup', 'picked_up', 'returned_to_sender')",
            name="valid_status",
        ),
        CheckConstraint(
            "size_category IS NULL OR size_category IN ('small', 'medium', 'large', 'oversized')",
            name="valid_size",
        ),
        Index("idx_packages_mailbox_status", "mailbox_id", "status"),
        Index("idx_packages_tenant_id", "tenant_id"),
        Index("idx_packages_received_at", "received_at"),
        Index("idx_packages_pickup_event_id", "pickup_event_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Package(id={self.id}, tracking='{self.tracking_number}', "
            f"status='{self.status}')>"
        )
