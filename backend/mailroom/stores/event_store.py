"""
Mailroom Backend: Event Pickup Store
======================================

What:  PickupStore backed by the `pickup_events` table.
How:   One pickup_events row per batch. Every package of the batch links back
       through packages.pickup_event_id, and the batch has at most one
       signature (signatures.pickup_event_id is unique).

Write path (inside the caller's transaction):
    INSERT pickup_events (...)                      → event id
    UPDATE packages SET status='picked_up', ...     → guarded by status IN (open)
           WHERE id IN (:ids) AND status IN ('received', 'ready_for_pickup')
    rowcount != len(ids)                            → AlreadyPickedUpError

Signature path (after commit, one savepoint):
    INSERT signatures ON CONFLICT (pickup_event_id) DO UPDATE
    UPDATE pickup_events SET signature_captured = true
"""

import logging
from collections import defaultdict
from typing import Any, Dict, List

from sqlalchemy import Select, String, and_, case, cast, func, literal, select
from sqlalchemy.ext.asyncio import AsyncSession

from mailroom.database import execute, insert_returning, upsert
from mailroom.exceptions import AlreadyPickedUpError, NotFoundError
from mailroom.models import Mailbox, Package, PickupEvent, Signature, Tenant
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

mailboxes = Mailbox.__table__
tenants = Tenant.__table__
packages = Package.__table__
pickup_events = PickupEvent.__table__
signatures = Signature.__table__


class EventPickupStore(PickupStore):
    """Pickup persistence for databases that have the pickup_events table."""

    variant = "event"

    # ── Write path ────────────────────────────────────────────────────────

    async def mark_picked_up(self, session: AsyncSession, batch: PickupBatch) -> PickupRecord:
        event = await insert_returning(
            session,
            pickup_events,
            {
                "mailbox_id": batch.mailbox_id,
                "tenant_id": batch.tenant_id,
                "pickup_person_name": batch.pickup_person_name,
                "staff_initials": batch.staff_initials,
                "notes": batch.notes,
                "signature_required": batch.signature_required,
                "signature_captured": False,
                "pickup_timestamp": batch.picked_up_at,
            },
        )
        event_id = event["id"]

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
                pickup_event_id=event_id,
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
            signature_owners=[event_id],
            event_id=event_id,
        )

    async def save_signature(self, session: AsyncSession, owner_id: int, signature_data: str) -> int:
        await upsert(
            session,
            signatures,
            {"pickup_event_id": owner_id, "signature_data": signature_data},
            conflict_cols=["pickup_event_id"],
            update_cols=["signature_data"],
        )
        signature_id = (
            await execute(
                session,
                select(signatures.c.id).where(signatures.c.pickup_event_id == owner_id),
            )
        ).scalar()
        await execute(
            session,
            pickup_events.update()
            .where(pickup_events.c.id == owner_id)
            .values(signature_captured=True),
        )
        return signature_id

    # ── Pickup reads ──────────────────────────────────────────────────────

    def _filters(self, query: PickupQuery) -> List[Any]:
        conditions = []
        if query.since is not None:
            conditions.append(pickup_events.c.pickup_timestamp >= query.since)
        if query.until is not None:
            conditions.append(pickup_events.c.pickup_timestamp <= query.until)
        if query.tenant_id is not None:
            conditions.append(pickup_events.c.tenant_id == query.tenant_id)
        if query.mailbox_id is not None:
            conditions.append(pickup_events.c.mailbox_id == query.mailbox_id)
        return conditions

    def _event_select(self) -> Select:
        return (
            select(
                pickup_events.c.id,
                pickup_events.c.mailbox_id,
                pickup_events.c.tenant_id,
                pickup_events.c.pickup_person_name,
                pickup_events.c.staff_initials,
                pickup_events.c.notes,
                pickup_events.c.signature_required,
                pickup_events.c.signature_captured,
                pickup_events.c.pickup_timestamp,
                mailboxes.c.mailbox_number,
                tenants.c.name.label("tenant_name"),
                tenants.c.phone.label("tenant_phone"),
                signatures.c.id.label("signature_id"),
            )
            .select_from(pickup_events)
            .join(mailboxes, mailboxes.c.id == pickup_events.c.mailbox_id)
            .outerjoin(tenants, tenants.c.id == pickup_events.c.tenant_id)
            .outerjoin(signatures, signatures.c.pickup_event_id == pickup_events.c.id)
        )

    async def _packages_by_event(self, session: AsyncSession, event_ids: List[int]) -> Dict[int, List[Dict[str, Any]]]:
        if not event_ids:
            return {}
        rows = (
            await execute(
                session,
                select(
                    packages.c.id,
                    packages.c.pickup_event_id,
                    packages.c.tracking_number,
                    packages.c.status,
                    packages.c.high_value,
                    packages.c.carrier,
                    packages.c.size_category,
                    packages.c.tenant_id,
                    tenants.c.name.label("tenant_name"),
                )
                .select_from(packages)
                .outerjoin(tenants, tenants.c.id == packages.c.tenant_id)
                .where(packages.c.pickup_event_id.in_(event_ids))
                .order_by(packages.c.tracking_number),
                name="pickup:packages_by_event",
            )
        ).rows
        grouped: Dict[int, List[Dict[str, Any]]] = defaultdict(list)
        for row in rows:
            grouped[row.pop("pickup_event_id")].append(row)
        return grouped

    @staticmethod
    def _shape(event: Dict[str, Any], event_packages: List[Dict[str, Any]]) -> Dict[str, Any]:
        event["pickup_event_id"] = event["id"]
        event["has_signature"] = event["signature_id"] is not None
        event["signature_required"] = bool(event["signature_required"])
        event["signature_captured"] = bool(event["signature_captured"])
        event["package_count"] = len(event_packages)
        event["package_ids"] = [p["id"] for p in event_packages]
        event["tracking_numbers"] = [p["tracking_number"] for p in event_packages]
        event["high_value_count"] = sum(1 for p in event_packages if p["high_value"])
        return event

    async def list_pickups(self, session: AsyncSession, query: PickupQuery) -> List[Dict[str, Any]]:
        stmt = (
            self._event_select()
            .where(*self._filters(query))
            .order_by(pickup_events.c.pickup_timestamp.desc(), pickup_events.c.id.desc())
            .limit(query.limit)
            .offset(query.offset)
        )
        events = (await execute(session, stmt, name="pickup:list")).rows
        by_event = await self._packages_by_event(session, [e["id"] for e in events])
        return [self._shape(e, by_event.get(e["id"], [])) for e in events]

    async def count_pickups(self, session: AsyncSession, query: PickupQuery) -> int:
        stmt = select(func.count()).select_from(pickup_events).where(*self._filters(query))
        return (await execute(session, stmt, name="pickup:count")).scalar() or 0

    async def get_pickup(self, session: AsyncSession, pickup_id: int) -> Dict[str, Any]:
        event = (
            await execute(session, self._event_select().where(pickup_events.c.id == pickup_id))
        ).first()
        if event is None:
            raise NotFoundError(resource="pickup event", resource_id=pickup_id)
        event_packages = (await self._packages_by_event(session, [pickup_id])).get(pickup_id, [])
        shaped = self._shape(event, event_packages)
        shaped["packages"] = event_packages
        return shaped

    def audit_select(self, window: AuditWindow) -> Select:
        package_count = func.count(packages.c.id.distinct())
        conditions = [
            pickup_events.c.pickup_timestamp >= window.since,
            pickup_events.c.pickup_timestamp <= window.until,
        ]
        if window.mailbox_id is not None:
            conditions.append(mailboxes.c.id == window.mailbox_id)

        return (
            select(
                literal("pickup", String).label("action_type"),
                pickup_events.c.pickup_timestamp.label("timestamp"),
                mailboxes.c.mailbox_number.label("mailbox_number"),
                tenants.c.name.label("tenant_name"),
                pickup_events.c.pickup_person_name.label("reference"),
                (cast(package_count, String) + literal(" packages", String)).label("summary"),
                case(
                    (func.count(signatures.c.id) > 0, literal("With signature", String)),
                    else_=literal("No signature", String),
                ).label("details"),
                pickup_events.c.staff_initials.label("staff_initials"),
                (literal("Pickup by ", String) + pickup_events.c.pickup_person_name).label("description"),
            )
            .select_from(pickup_events)
            .join(mailboxes, mailboxes.c.id == pickup_events.c.mailbox_id)
            .outerjoin(tenants, tenants.c.id == pickup_events.c.tenant_id)
            .outerjoin(packages, packages.c.pickup_event_id == pickup_events.c.id)
            .outerjoin(signatures, signatures.c.pickup_event_id == pickup_events.c.id)
            .where(and_(*conditions))
            .group_by(
                pickup_events.c.id,
                pickup_events.c.pickup_timestamp,
                mailboxes.c.mailbox_number,
                tenants.c.name,
                pickup_events.c.pickup_person_name,
                pickup_events.c.staff_initials,
            )
        )

    # ── Signatures ────────────────────────────────────────────────────────

    def _signature_select(self) -> Select:
        return (
            select(
                signatures.c.id,
                signatures.c.pickup_event_id,
                signatures.c.signature_data,
                signatures.c.signature_url,
                signatures.c.created_at,
                pickup_events.c.pickup_person_name,
                pickup_events.c.pickup_timestamp.label("picked_up_at"),
                pickup_events.c.staff_initials,
                mailboxes.c.mailbox_number,
                tenants.c.name.label("tenant_name"),
            )
            .select_from(signatures)
            .join(pickup_events, pickup_events.c.id == signatures.c.pickup_event_id)
            .join(mailboxes, mailboxes.c.id == pickup_events.c.mailbox_id)
            .outerjoin(tenants, tenants.c.id == pickup_events.c.tenant_id)
        )

    async def _load_signature(self, session: AsyncSession, condition, missing: NotFoundError) -> Dict[str, Any]:
        row = (
            await execute(session, self._signature_select().where(condition), name="signature:get")
        ).first()
        if row is None:
            raise missing
        event_packages = (
            await self._packages_by_event(session, [row["pickup_event_id"]])
        ).get(row["pickup_event_id"], [])
        row["package_ids"] = [p["id"] for p in event_packages]
        row["tracking_numbers"] = [p["tracking_number"] for p in event_packages]
        return row

    async def get_signature(self, session: AsyncSession, signature_id: int) -> Dict[str, Any]:
        return await self._load_signature(
            session,
            signatures.c.id == signature_id,
            NotFoundError(resource="signature", resource_id=signature_id),
        )

    async def get_signature_for_package(self, session: AsyncSession, package_id: int) -> Dict[str, Any]:
        event_id = (
            await execute(
                session,
                select(packages.c.pickup_event_id).where(packages.c.id == package_id),
            )
        ).scalar()
        missing = NotFoundError(
            resource="signature",
            context={"package_id": package_id, "reason": "No signature found for this package"},
        )
        if event_id is None:
            raise missing
        return await self._load_signature(session, signatures.c.pickup_event_id == event_id, missing)

    async def get_signature_for_event(self, session: AsyncSession, event_id: int) -> Dict[str, Any]:
        return await self._load_signature(
            session,
            signatures.c.pickup_event_id == event_id,
            NotFoundError(
                resource="signature",
                context={"pickup_event_id": event_id, "reason": "No signature found for this pickup event"},
            ),
        )

    async def delete_signature(self, session: AsyncSession, signature_id: int) -> Dict[str, Any]:
        signature = await self.get_signature(session, signature_id)
        await execute(session, signatures.delete().where(signatures.c.id == signature_id))
        await execute(
            session,
            pickup_events.update()
            .where(pickup_events.c.id == signature["pickup_event_id"])
            .values(signature_captured=False),
        )
        return {
            "id": signature_id,
            "pickup_event_id": signature["pickup_event_id"],
            "pickup_person_name": signature["pickup_person_name"],
            "tracking_numbers": signature["tracking_numbers"],
        }

