"""
Mailroom Backend: Package Service
===================================

What:  Package intake, lookups, detail edits and single-package status
       changes.
How:   Reads and writes name their columns explicitly and never touch
       packages.pickup_event_id, so the same statements work whether or not
       the database has the pickup event schema.
Who:   Package routes; ReportService reuses the row shape.

Status rules:
    - picked_up is reached through the pickup workflow only
    - moving a package out of picked_up clears picked_up_at
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mailroom.database import execute, insert_returning
from mailroom.exceptions import ConflictError, NotFoundError, ValidationError
from mailroom.models import Mailbox, Package, Tenant
from mailroom.models._columns import utcnow
from mailroom.schemas.common import Pagination
from mailroom.schemas.package import (
    DeletedPackage,
    PackageCreate,
    PackageDeleteResponse,
    PackageEnvelope,
    PackageListResponse,
    PackageResponse,
    PackageStatusUpdate,
    PackageUpdate,
)
from mailroom.services.mailbox_service import mailbox_service
from mailroom.services.tenant_service import tenant_service

logger = logging.getLogger(__name__)

mailboxes = Mailbox.__table__
tenants = Tenant.__table__
packages = Package.__table__

# Columns present in both the event and the legacy layout of `packages`
PACKAGE_COLUMNS = [c for c in packages.c if c.key != "pickup_event_id"]


@dataclass
class PackageFilters:
    """Filters for GET /api/packages; None means "don't filter"."""

    mailbox_id: Optional[int] = None
    tenant_id: Optional[int] = None
    status: Optional[str] = None
    tracking_number: Optional[str] = None
    limit: int = 100
    offset: int = 0

    def conditions(self) -> List[Any]:
        conditions = []
        if self.mailbox_id is not None:
            conditions.append(packages.c.mailbox_id == self.mailbox_id)
        if self.tenant_id is not None:
            conditions.append(packages.c.tenant_id == self.tenant_id)
        if self.status is not None:
            conditions.append(packages.c.status == self.status)
        if self.tracking_number:
            conditions.append(
                packages.c.tracking_number.contains(self.tracking_number.strip(), autoescape=True)
            )
        return conditions


def package_select() -> Select:
    """Package rows joined with their mailbox number and tenant name."""
    return (
        select(
            *PACKAGE_COLUMNS,
            mailboxes.c.mailbox_number,
            tenants.c.name.label("tenant_name"),
        )
        .select_from(packages)
        .join(mailboxes, mailboxes.c.id == packages.c.mailbox_id)
        .outerjoin(tenants, tenants.c.id == packages.c.tenant_id)
    )


class PackageService:
    """Business logic for packages outside the pickup workflow."""

    async def require(self, db: AsyncSession, package_id: int) -> Dict[str, Any]:
        row = (
            await execute(db, package_select().where(packages.c.id == package_id), name="package:get")
        ).first()
        if row is None:
            raise NotFoundError(resource="package", resource_id=package_id)
        return row

    async def list_packages(self, db: AsyncSession, filters: PackageFilters) -> PackageListResponse:
        conditions = filters.conditions()
        stmt = (
            package_select()
            .where(*conditions)
            .order_by(packages.c.received_at.desc(), packages.c.id.desc())
            .limit(filters.limit)
            .offset(filters.offset)
        )
        rows = (await execute(db, stmt, name="package:list")).rows
        total = (
            await execute(
                db,
                select(func.count()).select_from(packages).where(*conditions),
                name="package:count",
            )
        ).scalar() or 0
        return PackageListResponse(
            packages=[PackageResponse(**r) for r in rows],
            count=len(rows),
            pagination=Pagination.build(filters.limit, filters.offset, total),
        )

    async def get_package(self, db: AsyncSession, package_id: int) -> PackageResponse:
        return PackageResponse(**await self.require(db, package_id))

    async def get_by_tracking(self, db: AsyncSession, tracking_number: str) -> PackageResponse:
        row = (
            await execute(
                db,
                package_select().where(packages.c.tracking_number == tracking_number.strip()),
                name="package:by_tracking",
            )
        ).first()
        if row is None:
            raise NotFoundError(resource="package", context={"tracking_number": tracking_number})
        return PackageResponse(**row)

    async def list_by_tenant(self, db: AsyncSession, tenant_id: int) -> PackageListResponse:
        await tenant_service.require(db, tenant_id)
        rows = (
            await execute(
                db,
                package_select()
                .where(packages.c.tenant_id == tenant_id)
                .order_by(packages.c.received_at.desc(), packages.c.id.desc()),
                name="package:by_tenant",
            )
        ).rows
        return PackageListResponse(packages=[PackageResponse(**r) for r in rows], count=len(rows))

    # ── Writes ────────────────────────────────────────────────────────────

    async def _ensure_tracking_free(
        self, db: AsyncSession, tracking_number: str, exclude_id: Optional[int] = None
    ) -> None:
        stmt = select(packages.c.id).where(packages.c.tracking_number == tracking_number)
        if exclude_id is not None:
            stmt = stmt.where(packages.c.id != exclude_id)
        if (await execute(db, stmt, name="package:tracking_taken")).first() is not None:
            raise ConflictError(
                message=f"A package with tracking number {tracking_number} already exists",
                context={"tracking_number": tracking_number},
            )

    async def _verify_tenant(self, db: AsyncSession, mailbox_id: int, tenant_id: int) -> None:
        tenant = await tenant_service.require(db, tenant_id)
        if tenant["mailbox_id"] != mailbox_id or not tenant["active"]:
            raise ValidationError(
                message="Tenant does not belong to this mailbox",
                field="tenant_id",
                context={"tenant_id": tenant_id, "mailbox_id": mailbox_id},
            )

    async def create(self, db: AsyncSession, data: PackageCreate) -> PackageEnvelope:
        """
        Package intake.

        Steps:
            1. Resolve the mailbox (by id or number)
            2. Default the tenant to the mailbox's default tenant
            3. Verify the tenant belongs to the mailbox
            4. Reject a duplicate tracking number (409)
            5. Insert with status 'received'
        """
        mailbox = await tenant_service.resolve_mailbox(db, data.mailbox_id, data.mailbox_number)
        tenant_id = data.tenant_id if data.tenant_id is not None else mailbox["default_tenant_id"]
        if tenant_id is not None:
            await self._verify_tenant(db, mailbox["id"], tenant_id)
        await self._ensure_tracking_free(db, data.tracking_number)

        now = utcnow()
        created = await insert_returning(
            db,
            packages,
            {
                "mailbox_id": mailbox["id"],
                "tenant_id": tenant_id,
                "tracking_number": data.tracking_number,
                "status": "received",
                "high_value": data.high_value,
                "pickup_by": data.pickup_by,
                "carrier": data.carrier,
                "size_category": data.size_category,
                "notes": data.notes,
                "received_at": now,
                "created_at": now,
                "updated_at": now,
            },
            columns=[packages.c.id],
        )
        logger.info(
            "Package %s received for mailbox %s (high_value=%s)",
            data.tracking_number, mailbox["mailbox_number"], data.high_value,
        )
        return PackageEnvelope(
            package=await self.get_package(db, created["id"]),
            message="Package received successfully",
        )

    async def update(self, db: AsyncSession, package_id: int, data: PackageUpdate) -> PackageEnvelope:
        current = await self.require(db, package_id)
        changes = data.model_dump(exclude_unset=True)

        for key in ("tracking_number", "high_value"):
            if key in changes and changes[key] is None:
                changes.pop(key)
        if changes.get("tracking_number") and changes["tracking_number"] != current["tracking_number"]:
            await self._ensure_tracking_free(db, changes["tracking_number"], exclude_id=package_id)
        if changes.get("tenant_id") is not None:
            await self._verify_tenant(db, current["mailbox_id"], changes["tenant_id"])

        if changes:
            changes["updated_at"] = utcnow()
            await execute(
                db,
                packages.update().where(packages.c.id == package_id).values(**changes),
                name="package:update",
            )
        return PackageEnvelope(
            package=await self.get_package(db, package_id),
            message="Package updated successfully",
        )

    async def update_status(self, db: AsyncSession, package_id: int, data: PackageStatusUpdate) -> PackageEnvelope:
        current = await self.require(db, package_id)
        if data.status == "picked_up":
            raise ValidationError(
                message="Packages are marked as picked up through the pickup workflow",
                field="status",
            )

        values: Dict[str, Any] = {"status": data.status, "updated_at": utcnow()}
        if current["status"] == "picked_up":
            values["picked_up_at"] = None
        if data.notes is not None:
            values["notes"] = data.notes

        await execute(
            db,
            packages.update().where(packages.c.id == package_id).values(**values),
            name="package:update_status",
        )
        logger.info("Package %s status %s → %s", package_id, current["status"], data.status)
        return PackageEnvelope(
            package=await self.get_package(db, package_id),
            message=f"Package status updated to {data.status}",
        )

    async def delete(self, db: AsyncSession, package_id: int) -> PackageDeleteResponse:
        current = await self.require(db, package_id)
        await execute(db, packages.delete().where(packages.c.id == package_id), name="package:delete")
        logger.info("Package %s (%s) deleted", package_id, current["tracking_number"])
        return PackageDeleteResponse(
            message="Package deleted successfully",
            package=DeletedPackage(id=package_id, tracking_number=current["tracking_number"]),
        )


# ── Singleton Instance ────────────────────────────────────────────────────
package_service = PackageService()
