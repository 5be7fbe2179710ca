"""
Mailroom Backend: Pickup Service (Pickup Workflow)
====================================================

What:  Records that a batch of packages was handed to a collector, captures
       the collector's signature, lists past pickups and applies bulk status
       changes.
How:   Validation and precondition reads run first; the status transition is
       delegated to the PickupStore chosen at startup; signatures are
       written after the transition has been committed.
Who:   Pickup routes; ReportService reuses list/count for pickup history.

Workflow (POST /api/pickups):
    ┌────────────┐   ┌──────────────┐   ┌─────────────┐   ┌──────────────┐
    │ Load batch │──▶│ Preconditions│──▶│ Mark picked │──▶│  Signatures  │
    │  packages  │   │  (no writes) │   │ up + COMMIT │   │ (savepoints) │
    └────────────┘   └──────────────┘   └─────────────┘   └──────────────┘

Preconditions, in order:
    1. every package exists and belongs to the mailbox  (count mismatch)
       the optional tenant_id is a tenant of the mailbox
    2. no package is already picked up                  (AlreadyPickedUpError)
       nor returned to sender
    3. a signature is supplied if any package is high-value

Partial failure policy:
    The status transition is authoritative. It commits before any signature
    is written; a signature that fails to save is logged and skipped and the
    response reports signature_captured accordingly.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mailroom.config import settings
from mailroom.database import execute
from mailroom.exceptions import (
    AlreadyPickedUpError,
    DatabaseError,
    MailroomError,
    PickupPreconditionError,
)
from mailroom.models import Mailbox, Package, Tenant
from mailroom.models._columns import utcnow
from mailroom.models.package import OPEN_STATUSES
from mailroom.schemas.common import Pagination
from mailroom.schemas.pickup import (
    BulkStatusRequest,
    BulkStatusResponse,
    PickedUpPackage,
    PickupDetail,
    PickupDetailResponse,
    PickupFilters,
    PickupListItem,
    PickupListResponse,
    PickupRequest,
    PickupResponse,
    PickupSummary,
    UpdatedPackage,
)
from mailroom.stores import PickupBatch, PickupQuery, PickupRecord, PickupStore

logger = logging.getLogger(__name__)

mailboxes = Mailbox.__table__
tenants = Tenant.__table__
packages = Package.__table__


def describe_tenants(batch_packages: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Resolves the tenant side of a pickup summary.

    Packages without a tenant count as one more distinct owner, so a batch
    mixing a tenant's packages with unassigned ones is a cross-tenant pickup.

    Returns:
        {"tenant_id": id or None, "tenant_name": name or "N tenants",
         "cross_tenant": bool}
    """
    owners: Dict[Optional[int], Optional[str]] = {}
    for package in batch_packages:
        owners.setdefault(package["tenant_id"], package["tenant_name"])
    if len(owners) == 1:
        tenant_id, name = next(iter(owners.items()))
        return {"tenant_id": tenant_id, "tenant_name": name, "cross_tenant": False}
    return {"tenant_id": None, "tenant_name": f"{len(owners)} tenants", "cross_tenant": True}


class PickupService:
    """
    Pickup workflow bound to one PickupStore.

    Built once at startup (see mailroom.main.initialize_services) because the
    store depends on the schema of the connected database.
    """

    def __init__(self, store: PickupStore):
        self.store = store

    # ══════════════════════════════════════════════════════════════════════
    # Pickup
    # ══════════════════════════════════════════════════════════════════════

    async def _load_batch(self, db: AsyncSession, request: PickupRequest) -> List[Dict[str, Any]]:
        stmt = (
            select(
                packages.c.id,
                packages.c.tenant_id,
                packages.c.tracking_number,
                packages.c.status,
                packages.c.high_value,
                mailboxes.c.mailbox_number,
                tenants.c.name.label("tenant_name"),
            )
            .select_from(packages)
            .join(mailboxes, mailboxes.c.id == packages.c.mailbox_id)
            .outerjoin(tenants, tenants.c.id == packages.c.tenant_id)
            .where(
                packages.c.id.in_(request.package_ids),
                packages.c.mailbox_id == request.mailbox_id,
            )
            .order_by(packages.c.id)
        )
        return (await execute(db, stmt, name="pickup:load_batch")).rows

    async def _check_tenant(self, db: AsyncSession, request: PickupRequest) -> Optional[str]:
        row = (
            await execute(
                db,
                select(tenants.c.name).where(
                    tenants.c.id == request.tenant_id,
                    tenants.c.mailbox_id == request.mailbox_id,
                ),
                name="pickup:check_tenant",
            )
        ).first()
        if row is None:
            raise PickupPreconditionError(
                "Tenant does not belong to this mailbox",
                context={"tenant_id": request.tenant_id, "mailbox_id": request.mailbox_id},
            )
        return row["name"]

    async def _check_preconditions(self, db: AsyncSession, request: PickupRequest) -> List[Dict[str, Any]]:
        batch_packages = await self._load_batch(db, request)

        # 1. Ownership
        if len(batch_packages) != len(request.package_ids):
            found = {p["id"] for p in batch_packages}
            raise PickupPreconditionError(
                "Some packages were not found or do not belong to this mailbox",
                context={
                    "expected_count": len(request.package_ids),
                    "found_count": len(batch_packages),
                    "missing_package_ids": [pid for pid in request.package_ids if pid not in found],
                },
            )
        if request.tenant_id is not None:
            await self._check_tenant(db, request)

        # 2. Nothing already closed
        closed = [
            {"id": p["id"], "tracking_number": p["tracking_number"]}
            for p in batch_packages
            if p["status"] == "picked_up"
        ]
        if closed:
            raise AlreadyPickedUpError(closed)
        unavailable = [
            {"id": p["id"], "tracking_number": p["tracking_number"], "status": p["status"]}
            for p in batch_packages
            if p["status"] not in OPEN_STATUSES
        ]
        if unavailable:
            raise PickupPreconditionError(
                "Some packages are not available for pickup",
                context={"unavailable_packages": unavailable},
            )

        # 3. Signature for high-value packages
        high_value = [
            {"id": p["id"], "tracking_number": p["tracking_number"]}
            for p in batch_packages
            if p["high_value"]
        ]
        if high_value and not request.signature_data:
            raise PickupPreconditionError(
                "Signature required for high-value packages",
                context={"high_value_packages": high_value, "signature_required": True},
            )
        return batch_packages

    async def _save_signatures(self, db: AsyncSession, record: PickupRecord, signature_data: str) -> List[int]:
        signature_ids = []
        for owner_id in record.signature_owners:
            try:
                async with db.begin_nested():
                    signature_ids.append(await self.store.save_signature(db, owner_id, signature_data))
            except MailroomError as e:
                logger.error(
                    "Signature for %s owner %s not saved; pickup stands: %s | Context: %s",
                    self.store.variant, owner_id, e.message, e.context,
                )
            except SQLAlchemyError as e:
                # Raised by the savepoint itself, outside execute()'s translation
                logger.error(
                    "Signature for %s owner %s not saved; pickup stands: %s",
                    self.store.variant, owner_id, e, exc_info=True,
                )
        await db.commit()
        return signature_ids

    async def process_pickup(self, db: AsyncSession, request: PickupRequest) -> PickupResponse:
        """
        Runs the pickup workflow for one batch.

        Args:
            db: Request session. This method commits it: once after the
                status transition and once after the signatures.
            request: Validated pickup request

        Returns:
            PickupResponse with the pickup summary and the transitioned packages

        Raises:
            PickupPreconditionError: ownership, tenant or signature precondition failed
            AlreadyPickedUpError: a package is (or concurrently became) picked up
            DatabaseError: the transition failed; nothing was changed
        """
        try:
            batch_packages = await self._check_preconditions(db, request)
            owners = describe_tenants(batch_packages)
            signature_required = any(p["high_value"] for p in batch_packages)

            batch = PickupBatch(
                mailbox_id=request.mailbox_id,
                package_ids=[p["id"] for p in batch_packages],
                pickup_person_name=request.pickup_person_name,
                picked_up_at=utcnow(),
                signature_required=signature_required,
                tenant_id=request.tenant_id if request.tenant_id is not None else owners["tenant_id"],
                staff_initials=request.staff_initials,
                notes=request.notes,
            )
            record = await self.store.mark_picked_up(db, batch)
            await db.commit()
        except MailroomError:
            await db.rollback()
            raise
        except Exception as e:
            await db.rollback()
            logger.error("Unexpected error in process_pickup: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="The pickup could not be recorded. Please try again.",
                context={"original_error": type(e).__name__},
            )

        logger.info(
            "Pickup recorded: %d packages from mailbox %s by %s (store=%s, event=%s)",
            len(batch.package_ids), request.mailbox_id, request.pickup_person_name,
            self.store.variant, record.event_id,
        )

        signature_ids: List[int] = []
        if request.signature_data:
            signature_ids = await self._save_signatures(db, record, request.signature_data)

        mailbox_number = batch_packages[0]["mailbox_number"]
        count = len(batch_packages)
        summary = PickupSummary(
            packages_picked_up=count,
            tenant_name=owners["tenant_name"],
            tenant_mailbox=mailbox_number,
            pickup_person=request.pickup_person_name,
            signature_required=signature_required,
            signature_captured=bool(signature_ids),
            signature_ids=signature_ids,
            staff_initials=request.staff_initials,
            pickup_timestamp=record.picked_up_at,
            cross_tenant_pickup=owners["cross_tenant"],
            pickup_event_id=record.event_id,
        )
        return PickupResponse(
            success=True,
            message=f"Successfully processed pickup of {count} package{'s' if count != 1 else ''}",
            pickup_summary=summary,
            packages=[
                PickedUpPackage(
                    id=p["id"],
                    tracking_number=p["tracking_number"],
                    status="picked_up",
                    tenant_name=p["tenant_name"],
                )
                for p in batch_packages
            ],
        )

    # ══════════════════════════════════════════════════════════════════════
    # Listing
    # ══════════════════════════════════════════════════════════════════════

    async def list_pickups(
        self,
        db: AsyncSession,
        tenant_id: Optional[int] = None,
        days: Optional[int] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> PickupListResponse:
        """Pickups in the trailing `days` window, most recent first."""
        days = days or settings.pickup_history_default_days
        query = PickupQuery(
            since=utcnow() - timedelta(days=days),
            tenant_id=tenant_id,
            limit=limit,
            offset=offset,
        )
        rows = await self.store.list_pickups(db, query)
        total = await self.store.count_pickups(db, query)
        return PickupListResponse(
            pickup_events=[PickupListItem(**row) for row in rows],
            filters=PickupFilters(tenant_id=tenant_id, days=days),
            pagination=Pagination.build(limit, offset, total),
        )

    async def get_pickup(self, db: AsyncSession, pickup_id: int) -> PickupDetailResponse:
        return PickupDetailResponse(pickup_event=PickupDetail(**await self.store.get_pickup(db, pickup_id)))

    # ══════════════════════════════════════════════════════════════════════
    # Bulk status
    # ══════════════════════════════════════════════════════════════════════

    async def bulk_update_status(self, db: AsyncSession, request: BulkStatusRequest) -> BulkStatusResponse:
        """
        Moves open packages to ready_for_pickup or returned_to_sender.

        One guarded UPDATE; packages outside {received, ready_for_pickup}
        are left alone and show up as the difference between
        requested_count and updated_count.
        """
        now = utcnow()
        values: Dict[str, Any] = {"status": request.status, "updated_at": now}
        if request.notes is not None:
            values["notes"] = request.notes

        stmt = (
            packages.update()
            .where(packages.c.id.in_(request.package_ids), packages.c.status.in_(OPEN_STATUSES))
            .values(**values)
        )
        returned = (packages.c.id, packages.c.tracking_number, packages.c.status)
        if getattr(db.get_bind().dialect, "update_returning", False):
            rows = (await execute(db, stmt.returning(*returned), name="pickup:bulk_status")).rows
        else:
            await execute(db, stmt, name="pickup:bulk_status")
            rows = (
                await execute(
                    db,
                    select(*returned).where(
                        packages.c.id.in_(request.package_ids),
                        packages.c.status == request.status,
                        packages.c.updated_at == now,
                    ),
                )
            ).rows
        rows.sort(key=lambda r: r["id"])

        logger.info(
            "Bulk status %s: %d of %d packages updated",
            request.status, len(rows), len(request.package_ids),
        )
        return BulkStatusResponse(
            message=f"{len(rows)} packages updated to {request.status}",
            updated_packages=[UpdatedPackage(**r) for r in rows],
            requested_count=len(request.package_ids),
            updated_count=len(rows),
        )
