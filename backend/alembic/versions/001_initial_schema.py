"""Create the mailroom schema

Revision ID: 001
Revises: None
Create Date: 2026-10-18 00:00:00.000000+00:00

What:  Creates mailboxes, tenants, packages, pickup_events and signatures
       (the pickup event layout).
How:   mailboxes.default_tenant_id and tenants.mailbox_id reference each
       other. On PostgreSQL the mailbox side is added with ALTER TABLE once
       both tables exist; SQLite accepts the forward reference inline.

Rollback: downgrade() drops every table (destructive).
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP")),
    ]


def upgrade() -> None:
    is_sqlite = op.get_bind().dialect.name == "sqlite"

    # ── mailboxes ─────────────────────────────────────────────────────────
    default_tenant_fk = (
        [sa.ForeignKeyConstraint(["default_tenant_id"], ["tenants.id"],
                                 name="fk_mailboxes_default_tenant", ondelete="SET NULL")]
        if is_sqlite else []
    )
    op.create_table(
        "mailboxes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("mailbox_number", sa.String(10), nullable=False),
        sa.Column("default_tenant_id", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.UniqueConstraint("mailbox_number", name="uq_mailboxes_mailbox_number"),
        *default_tenant_fk,
    )
    op.create_index("idx_mailboxes_active", "mailboxes", ["active"])

    # ── tenants ───────────────────────────────────────────────────────────
    op.create_table(
        "tenants",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("mailbox_id", sa.Integer(),
                  sa.ForeignKey("mailboxes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("contact_info", sa.JSON().with_variant(postgresql.JSONB(), "postgresql"), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )
    op.create_index("idx_tenants_mailbox_active", "tenants", ["mailbox_id", "active"])
    op.create_index("idx_tenants_name", "tenants", ["name"])

    if not is_sqlite:
        op.create_foreign_key(
            "fk_mailboxes_default_tenant", "mailboxes", "tenants",
            ["default_tenant_id"], ["id"], ondelete="SET NULL",
        )

    # ── pickup_events ─────────────────────────────────────────────────────
    op.create_table(
        "pickup_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("mailbox_id", sa.Integer(),
                  sa.ForeignKey("mailboxes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("tenant_id", sa.Integer(),
                  sa.ForeignKey("tenants.id", ondelete="SET NULL"), nullable=True),
        sa.Column("pickup_person_name", sa.String(255), nullable=False),
        sa.Column("staff_initials", sa.String(10), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("signature_required", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("signature_captured", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("pickup_timestamp", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_index("idx_pickup_events_timestamp", "pickup_events", ["pickup_timestamp"])
    op.create_index("idx_pickup_events_mailbox", "pickup_events", ["mailbox_id"])
    op.create_index("idx_pickup_events_tenant", "pickup_events", ["tenant_id"])

    # ── packages ──────────────────────────────────────────────────────────
    op.create_table(
        "packages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("mailbox_id", sa.Integer(),
                  sa.ForeignKey("mailboxes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("tenant_id", sa.Integer(),
                  sa.ForeignKey("tenants.id", ondelete="SET NULL"), nullable=True),
        sa.Column("tracking_number", sa.String(255), nullable=False),
        sa.Column("status", sa.String(50), nullable=False, server_default=sa.text("'received'")),
        sa.Column("high_value", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("pickup_by", sa.String(255), nullable=True),
        sa.Column("carrier", sa.String(100), nullable=True),
        sa.Column("size_category", sa.String(20), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("picked_up_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pickup_event_id", sa.Integer(),
                  sa.ForeignKey("pickup_events.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("tracking_number", name="uq_packages_tracking_number"),
        sa.CheckConstraint(
            "status IN ('received', 'ready_for_pickup', 'picked_up', 'returned_to_sender')",
            name="valid_status",
        ),
        sa.CheckConstraint(
            "size_category IS NULL OR size_category IN ('small', 'medium', 'large', 'oversized')",
            name="valid_size",
        ),
    )
    op.create_index("idx_packages_mailbox_status", "packages", ["mailbox_id", "status"])
    op.create_index("idx_packages_tenant_id", "packages", ["tenant_id"])
    op.create_index("idx_packages_received_at", "packages", ["received_at"])
    op.create_index("idx_packages_pickup_event_id", "packages", ["pickup_event_id"])

    # ── signatures ────────────────────────────────────────────────────────
    op.create_table(
        "signatures",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("pickup_event_id", sa.Integer(),
                  sa.ForeignKey("pickup_events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("signature_data", sa.Text(), nullable=True),
        sa.Column("signature_url", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.UniqueConstraint("pickup_event_id", name="uq_signatures_pickup_event_id"),
    )


def downgrade() -> None:
    op.drop_table("signatures")
    op.drop_table("packages")
    op.drop_table("pickup_events")
    if op.get_bind().dialect.name != "sqlite":
        op.drop_constraint("fk_mailboxes_default_tenant", "mailboxes", type_="foreignkey")
    op.drop_table("tenants")
    op.drop_table("mailboxes")
