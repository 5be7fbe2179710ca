"""
Mailroom Backend: Mailbox Model
=================================

What:  ORM model for the `mailboxes` table, the anchor of the directory.
How:   Each mailbox has a unique string number ("101", "145") and optionally a
       default tenant that intake pre-selects.

Design notes:
    - mailbox_number is a string so leading zeros survive, but list ordering
      casts it to an integer (numeric order: 2 before 10).
    - default_tenant_id and tenants.mailbox_id form a cycle; the FK on this
      side is created after both tables (use_alter).
    - Deactivation is soft (`active = false`) under the default delete policy.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from mailroom.database import Base
from mailroom.models._columns import created_at_column, updated_at_column


class Mailbox(Base):
    """A physical mailbox slot in the package room."""

    __tablename__ = "mailboxes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    mailbox_number: Mapped[str] = mapped_column(String(10), nullable=False, unique=True)

    # ── Default tenant ────────────────────────────────────────────────────
    # SET NULL: deleting the tenant leaves the mailbox without a default
    default_tenant_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey(
            "tenants.id",
            ondelete="SET NULL",
            use_alter=True,
            name="fk_mailboxes_default_tenant",
        ),
        nullable=True,
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )

    created_at: Mapped[datetime] = created_at_column()
    updated_at: Mapped[datetime] = updated_at_column()

    __table_args__ = (
        Index("idx_mailboxes_active", "active"),
    )

    def __repr__(self) -> str:
        return f"<Mailbox(id={self.id}, number='{self.mailbox_number}', active={self.active})>"
