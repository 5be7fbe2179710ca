"""
Mailroom Backend: Legacy Pickup Store
=======================================

What:  PickupStore for databases created before pickup events existed.
How:   There is no pickup_events table. The collector's name is written to
       packages.pickup_by and each package carries its own signature
       (signatures.package_id is unique). Every picked-up package is reported
       as a pickup of one package.

Differences from the event store:
    - signature_captured is derived from the existence of a signature row,
      so deleting a signature needs no flag update
    - pickup_event_id is always null in responses
    - lookups by pickup event raise NotFoundError
"""

import logging
from typing import Any, Dict, List

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Select,
    String,
    Table,
    Text,
    case,
    func,
    literal,
    select,
    text,
)
from sqlalchemy.ext.asyncio import AsyncSession

from mailroom.database import execute, upsert
from mailroom.exceptions import AlreadyPickedUpError, NotFoundError
from mailroom.models import Mailbox, Tenant
from mailroom.models._columns import utcnow
from mailroom.models.package import OPEN_STATUSES
from mailroom.stores.base import (
    AuditWindow,
    PickupBatch,
    PickupQuery,
    PickupRecord,
    PickupStore,
    closed_packages,
)

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Legacy table layout
# ══════════════════════════════════════════════════════════════════════════

LEGACY_METADATA = MetaData()

mailboxes = Mailbox.__table__.to_metadata(LEGACY_METADATA)
tenants = Tenant.__table__.to_metadata(LEGACY_METADATA)

packages = Table(
    "packages",
    LEGACY_METADATA,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("mailbox_id", Integer, ForeignKey("mailboxes.id", ondelete="CASCADE"), nullable=False),
    Column("tenant_id", Integer, ForeignKey("tenants.id", ondelete="SET NULL"), nullable=True),
    Column("tracking_number", String(255), nullable=False, unique=True),
    Column("status", String(50), nullable=False, default="received", server_default=text("'received'")),
    Column("high_value", Boolean, nullable=False, default=False, server_default=text("false")),
    Column("pickup_by", String(255), nullable=True),
    Column("carrier", String(100), nullable=True),
    Column("size_category", String(20), nullable=True),
    Column("notes", Text, nullable=True),
    Column("received_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("picked_up_at", DateTime(timezone=True), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("updated_at", DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow),
)

signatures = Table(
    "signatures",
    LEGACY_METADATA,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "package_id",
        Integer,
        ForeignKey("packages.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    ),
    Column("signature_data", Text, nullable=True),
    Column("signature_url", String(500), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
)


class LegacyPickupStore(PickupStore):
    """Pickup persistence that writes pickup metadata onto the package rows."""

    variant = "legacy"

    # ── Write path ────────────────────────────────────────────────────────

    async def mark_picked_up(self, session: AsyncSession, batch: PickupBatch) -> PickupRecord:
        result = await execute(
            session,
            packages.update()
            .where(
                packages.c.id.in_(batch.package_ids),
                packages.c.status.in_(OPEN_STATUSES),
            )
            .values(
                status="picked_up",
                picked_up_at=batch.picked_up_at,
                updated_at=batch.picked_up_at,
                pickup_by=batch.pickup_person_name,
            ),
            name="pickup:mark_picked_up",
        )
        if result.rowcount != len(batch.package_ids):
            closed = await closed_packages(session, packages, batch.package_ids)
            logger.warning(
                "Pickup guard matched %d of %d packages; concurrent pickup of %s",
                result.rowcount, len(batch.package_ids), [p["id"] for p in closed],
            )
            raise AlreadyPickedUpError(closed)

        return PickupRecord(
            picked_up_at=batch.picked_up_at,
            signature_owners=list(batch.package_ids),
        )

    async def save_signature(self, session: AsyncSession, owner_id: int, signature_data: str) -> int:
        await upsert(
            session,
            signatures,
            {"package_id": owner_id, "signature_data": signature_data, "created_at": utcnow()},
            conflict_cols=["package_id"],
            update_cols=["signature_data"],
        )
        return (
            await execute(session, select(signatures.c.id).where(signatures.c.package_id == owner_id))
        ).scalar()

    # ── Pickup reads ──────────────────────────────────────────────────────

    def _filters(self, query: PickupQuery) -> List[Any]:
        conditions = [packages.c.status == "picked_up", packages.c.picked_up_at.is_not(None)]
        if query.since is not None:
            conditions.append(packages.c.picked_up_at >= query.since)
        if query.until is not None:
            conditions.append(packages.c.picked_up_at <= query.until)
        if query.tenant_id is not None:
            conditions.append(packages.c.tenant_id == query.tenant_id)
        if query.mailbox_id is not None:
            conditions.append(packages.c.mailbox_id == query.mailbox_id)
        return conditions

    def _pickup_select(self) -> Select:
        return (
            select(
                packages.c.id,
                packages.c.mailbox_id,
                packages.c.tenant_id,
                packages.c.pickup_by.label("pickup_person_name"),
                packages.c.high_value,
                packages.c.tracking_number,
                packages.c.status,
                packages.c.carrier,
                packages.c.size_category,
                packages.c.notes,
                packages.c.picked_up_at.label("pickup_timestamp"),
                mailboxes.c.mailbox_number,
                tenants.c.name.label("tenant_name"),
                tenants.c.phone.label("tenant_phone"),
                signatures.c.id.label("signature_id"),
            )
            .select_from(packages)
            .join(mailboxes, mailboxes.c.id == packages.c.mailbox_id)
            .outerjoin(tenants, tenants.c.id == packages.c.tenant_id)
            .outerjoin(signatures, signatures.c.package_id == packages.c.id)
        )

    @staticmethod
    def _shape(row: Dict[str, Any]) -> Dict[str, Any]:
        has_signature = row["signature_id"] is not None
        high_value = bool(row.pop("high_value"))
        package = {
            "id": row["id"],
            "tracking_number": row.pop("tracking_number"),
            "status": row.pop("status"),
            "high_value": high_value,
            "carrier": row.pop("carrier"),
            "size_category": row.pop("size_category"),
            "tenant_id": row["tenant_id"],
            "tenant_name": row["tenant_name"],
        }
        row.update(
            pickup_event_id=None,
            staff_initials=None,
            signature_required=high_value,
            signature_captured=has_signature,
            has_signature=has_signature,
            package_count=1,
            package_ids=[package["id"]],
            tracking_numbers=[package["tracking_number"]],
            high_value_count=1 if high_value else 0,
            packages=[package],
        )
        return row

    async def list_pickups(self, session: AsyncSession, query: PickupQuery) -> List[Dict[str, Any]]:
        stmt = (
            self._pickup_select()
            .where(*self._filters(query))
            .order_by(packages.c.picked_up_at.desc(), packages.c.id.desc())
            .limit(query.limit)
            .offset(query.offset)
        )
        rows = (await execute(session, stmt, name="pickup:list")).rows
        shaped = [self._shape(row) for row in rows]
        for row in shaped:
            row.pop("packages")
        return shaped

    async def count_pickups(self, session: AsyncSession, query: PickupQuery) -> int:
        stmt = select(func.count()).select_from(packages).where(*self._filters(query))
        return (await execute(session, stmt, name="pickup:count")).scalar() or 0

    async def get_pickup(self, session: AsyncSession, pickup_id: int) -> Dict[str, Any]:
        row = (
            await execute(
                session,
                self._pickup_select().where(packages.c.id == pickup_id, *self._filters(PickupQuery())),
            )
        ).first()
        if row is None:
            raise NotFoundError(resource="pickup", resource_id=pickup_id)
        return self._shape(row)

    def audit_select(self, window: AuditWindow) -> Select:
        conditions = [
            packages.c.status == "picked_up",
            packages.c.picked_up_at >= window.since,
            packages.c.picked_up_at <= window.until,
        ]
        if window.mailbox_id is not None:
            conditions.append(mailboxes.c.id == window.mailbox_id)
        collector = packages.c.pickup_by
        return (
            select(
                literal("pickup", String).label("action_type"),
                packages.c.picked_up_at.label("timestamp"),
                mailboxes.c.mailbox_number.label("mailbox_number"),
                tenants.c.name.label("tenant_name"),
                collector.label("reference"),
                literal("1 packages", String).label("summary"),
                case(
                    (signatures.c.id.is_not(None), literal("With signature", String)),
                    else_=literal("No signature", String),
                ).label("details"),
                literal(None, String).label("staff_initials"),
                (literal("Pickup by ", String) + collector).label("description"),
            )
            .select_from(packages)
            .join(mailboxes, mailboxes.c.id == packages.c.mailbox_id)
            .outerjoin(tenants, tenants.c.id == packages.c.tenant_id)
            .outerjoin(signatures, signatures.c.package_id == packages.c.id)
            .where(*conditions)
        )

    # ── Signatures ────────────────────────────────────────────────────────

    def _signature_select(self) -> Select:
        return (
            select(
                signatures.c.id,
                signatures.c.package_id,
                signatures.c.signature_data,
                signatures.c.signature_url,
                signatures.c.created_at,
                packages.c.tracking_number,
                packages.c.pickup_by.label("pickup_person_name"),
                packages.c.picked_up_at,
                mailboxes.c.mailbox_number,
                tenants.c.name.label("tenant_name"),
            )
            .select_from(signatures)
            .join(packages, packages.c.id == signatures.c.package_id)
            .join(mailboxes, mailboxes.c.id == packages.c.mailbox_id)
            .outerjoin(tenants, tenants.c.id == packages.c.tenant_id)
        )

    async def _load_signature(self, session: AsyncSession, condition, missing: NotFoundError) -> Dict[str, Any]:
        row = (
            await execute(session, self._signature_select().where(condition), name="signature:get")
        ).first()
        if row is None:
            raise missing
        package_id = row.pop("package_id")
        row.update(
            pickup_event_id=None,
            staff_initials=None,
            package_ids=[package_id],
            tracking_numbers=[row.pop("tracking_number")],
        )
        return row

    async def get_signature(self, session: AsyncSession, signature_id: int) -> Dict[str, Any]:
        return await self._load_signature(
            session,
            signatures.c.id == signature_id,
            NotFoundError(resource="signature", resource_id=signature_id),
        )

    async def get_signature_for_package(self, session: AsyncSession, package_id: int) -> Dict[str, Any]:
        return await self._load_signature(
            session,
            signatures.c.package_id == package_id,
            NotFoundError(
                resource="signature",
                context={"package_id": package_id, "reason": "No signature found for this package"},
            ),
        )

    async def get_signature_for_event(self, session: AsyncSession, event_id: int) -> Dict[str, Any]:
        raise NotFoundError(
            resource="signature",
            context={
                "pickup_event_id": event_id,
                "reason": "Pickup events are not recorded by this database",
            },
        )

    async def delete_signature(self, session: AsyncSession, signature_id: int) -> Dict[str, Any]:
        signature = await self.get_signature(session, signature_id)
        await execute(session, signatures.delete().where(signatures.c.id == signature_id))
        return {
            "id": signature_id,
            "pickup_event_id": None,
            "pickup_person_name": signature["pickup_person_name"],
            "tracking_numbers": signature["tracking_numbers"],
        }
