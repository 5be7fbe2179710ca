"""
Mailroom Backend: Pickup Service Tests
========================================

What:  Tests for the pickup workflow on the pickup event schema.
How:   Runs PickupService with an EventPickupStore against the seeded
       SQLite database and inspects the rows afterwards.

What we test:
    ✅ A batch becomes one pickup event with every package linked to it
    ✅ Precondition failures change nothing
    ✅ A failed status transition rolls back the event row too
    ✅ Resubmitting a completed batch is rejected
    ✅ High-value packages need a signature, which is stored once per event
    ✅ A signature that cannot be stored leaves the pickup committed
    ✅ Listing windows, paging, detail and bulk status changes
"""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError

from mailroom.exceptions import (
    AlreadyPickedUpError,
    DatabaseError,
    NotFoundError,
    PickupPreconditionError,
)
from mailroom.models import Package, PickupEvent, Signature
from mailroom.models._columns import utcnow
from mailroom.schemas.pickup import BulkStatusRequest, PickupRequest
from mailroom.services.pickup_service import PickupService, describe_tenants
from mailroom.stores import EventPickupStore

packages = Package.__table__
pickup_events = PickupEvent.__table__
signatures = Signature.__table__


async def _package_rows(database, ids):
    async with database.session_factory() as session:
        result = await session.execute(
            select(packages.c.id, packages.c.status, packages.c.pickup_event_id, packages.c.picked_up_at)
            .where(packages.c.id.in_(ids))
            .order_by(packages.c.id)
        )
        return [dict(row) for row in result.mappings()]


async def _count(database, table) -> int:
    async with database.session_factory() as session:
        return (await session.execute(select(func.count()).select_from(table))).scalar()


class TestDescribeTenants:
    """Tests for the tenant side of the pickup summary."""

    def test_single_tenant(self):
        owners = describe_tenants([
            {"tenant_id": 1, "tenant_name": "Alice"},
            {"tenant_id": 1, "tenant_name": "Alice"},
        ])
        assert owners == {"tenant_id": 1, "tenant_name": "Alice", "cross_tenant": False}

    def test_unassigned_package_counts_as_another_owner(self):
        owners = describe_tenants([
            {"tenant_id": 1, "tenant_name": "Alice"},
            {"tenant_id": None, "tenant_name": None},
        ])
        assert owners["cross_tenant"] is True
        assert owners["tenant_name"] == "2 tenants"
        assert owners["tenant_id"] is None


class TestPickupRequest:
    """Request validation happens before any database access."""

    def test_duplicate_package_ids_rejected(self):
        with pytest.raises(SchemaValidationError):
            PickupRequest(package_ids=[1, 1], mailbox_id=1, pickup_person_name="Jane")

    def test_empty_batch_rejected(self):
        with pytest.raises(SchemaValidationError):
            PickupRequest(package_ids=[], mailbox_id=1, pickup_person_name="Jane")

    def test_blank_person_rejected(self):
        with pytest.raises(SchemaValidationError):
            PickupRequest(package_ids=[1], mailbox_id=1, pickup_person_name="   ")

    def test_blank_signature_is_absent(self):
        request = PickupRequest(package_ids=[1], mailbox_id=1, pickup_person_name="Jane", signature_data="  ")
        assert request.signature_data is None


class TestProcessPickup:
    """Tests for PickupService.process_pickup() on the event schema."""

    def setup_method(self):
        self.service = PickupService(EventPickupStore())

    @pytest.mark.asyncio
    async def test_standard_pickup_creates_one_event(self, database, seed):
        """Two standard packages of different tenants, no signature."""
        request = PickupRequest(
            package_ids=[seed.standard, seed.bobs],
            mailbox_id=seed.mailbox_a,
            pickup_person_name="Alice Smith",
            staff_initials="AB",
        )
        async with database.session_factory() as db:
            response = await self.service.process_pickup(db, request)

        summary = response.pickup_summary
        assert response.success is True
        assert response.message == "Successfully processed pickup of 2 packages"
        assert summary.packages_picked_up == 2
        assert summary.tenant_mailbox == "101"
        assert summary.cross_tenant_pickup is True
        assert summary.tenant_name == "2 tenants"
        assert summary.signature_required is False
        assert summary.signature_captured is False
        assert summary.pickup_event_id is not None
        assert [p.status for p in response.packages] == ["picked_up", "picked_up"]

        rows = await _package_rows(database, [seed.standard, seed.bobs])
        assert all(r["status"] == "picked_up" for r in rows)
        assert all(r["picked_up_at"] is not None for r in rows)
        assert {r["pickup_event_id"] for r in rows} == {summary.pickup_event_id}
        assert await _count(database, pickup_events) == 1

    @pytest.mark.asyncio
    async def test_single_tenant_summary(self, database, seed):
        request = PickupRequest(
            package_ids=[seed.standard],
            mailbox_id=seed.mailbox_a,
            tenant_id=seed.alice,
            pickup_person_name="Alice Smith",
        )
        async with database.session_factory() as db:
            response = await self.service.process_pickup(db, request)

        assert response.message == "Successfully processed pickup of 1 package"
        assert response.pickup_summary.tenant_name == "Alice Smith"
        assert response.pickup_summary.cross_tenant_pickup is False

    @pytest.mark.asyncio
    async def test_high_value_without_signature_changes_nothing(self, database, seed):
        request = PickupRequest(
            package_ids=[seed.standard, seed.high_value],
            mailbox_id=seed.mailbox_a,
            pickup_person_name="Alice Smith",
        )
        async with database.session_factory() as db:
            with pytest.raises(PickupPreconditionError) as exc_info:
                await self.service.process_pickup(db, request)

        assert exc_info.value.context["signature_required"] is True
        assert exc_info.value.context["high_value_packages"] == [
            {"id": seed.high_value, "tracking_number": "TRK-1002"}
        ]
        rows = await _package_rows(database, [seed.standard, seed.high_value])
        assert [r["status"] for r in rows] == ["received", "ready_for_pickup"]
        assert await _count(database, pickup_events) == 0

    @pytest.mark.asyncio
    async def test_high_value_with_signature(self, database, seed, signature_data_uri):
        request = PickupRequest(
            package_ids=[seed.high_value],
            mailbox_id=seed.mailbox_a,
            pickup_person_name="Alice Smith",
            signature_data=signature_data_uri,
        )
        async with database.session_factory() as db:
            response = await self.service.process_pickup(db, request)

        summary = response.pickup_summary
        assert summary.signature_required is True
        assert summary.signature_captured is True
        assert len(summary.signature_ids) == 1

        async with database.session_factory() as db:
            event = (
                await db.execute(select(pickup_events).where(pickup_events.c.id == summary.pickup_event_id))
            ).mappings().one()
            stored = (
                await db.execute(select(signatures).where(signatures.c.pickup_event_id == summary.pickup_event_id))
            ).mappings().one()
        assert event["signature_captured"] is True
        assert event["signature_required"] is True
        assert stored["id"] == summary.signature_ids[0]
        assert stored["signature_data"] == signature_data_uri

    @pytest.mark.asyncio
    async def test_mixed_batch_with_signature(self, database, seed, signature_data_uri):
        """Standard and high-value package of one tenant, signed: both close, one signature row."""
        request = PickupRequest(
            package_ids=[seed.standard, seed.high_value],
            mailbox_id=seed.mailbox_a,
            pickup_person_name="Jane",
            signature_data=signature_data_uri,
        )
        async with database.session_factory() as db:
            response = await self.service.process_pickup(db, request)

        assert response.pickup_summary.cross_tenant_pickup is False
        assert response.pickup_summary.tenant_name == "Alice Smith"
        rows = await _package_rows(database, [seed.standard, seed.high_value])
        assert [r["status"] for r in rows] == ["picked_up", "picked_up"]
        assert await _count(database, signatures) == 1

    @pytest.mark.asyncio
    async def test_package_of_another_mailbox(self, database, seed):
        request = PickupRequest(
            package_ids=[seed.standard, seed.other_mailbox],
            mailbox_id=seed.mailbox_a,
            pickup_person_name="Alice Smith",
        )
        async with database.session_factory() as db:
            with pytest.raises(PickupPreconditionError) as exc_info:
                await self.service.process_pickup(db, request)

        assert exc_info.value.context["missing_package_ids"] == [seed.other_mailbox]
        assert exc_info.value.context["expected_count"] == 2
        assert exc_info.value.context["found_count"] == 1
        rows = await _package_rows(database, [seed.standard])
        assert rows[0]["status"] == "received"

    @pytest.mark.asyncio
    async def test_tenant_of_another_mailbox(self, database, seed):
        request = PickupRequest(
            package_ids=[seed.standard],
            mailbox_id=seed.mailbox_a,
            tenant_id=seed.carol,
            pickup_person_name="Carol White",
        )
        async with database.session_factory() as db:
            with pytest.raises(PickupPreconditionError):
                await self.service.process_pickup(db, request)
        assert await _count(database, pickup_events) == 0

    @pytest.mark.asyncio
    async def test_returned_package_not_available(self, database, seed):
        request = PickupRequest(
            package_ids=[seed.returned],
            mailbox_id=seed.mailbox_a,
            pickup_person_name="Alice Smith",
        )
        async with database.session_factory() as db:
            with pytest.raises(PickupPreconditionError) as exc_info:
                await self.service.process_pickup(db, request)
        assert exc_info.value.context["unavailable_packages"][0]["status"] == "returned_to_sender"

    @pytest.mark.asyncio
    async def test_resubmission_rejected(self, database, seed):
        request = PickupRequest(
            package_ids=[seed.standard, seed.bobs],
            mailbox_id=seed.mailbox_a,
            pickup_person_name="Alice Smith",
        )
        async with database.session_factory() as db:
            await self.service.process_pickup(db, request)
        async with database.session_factory() as db:
            with pytest.raises(AlreadyPickedUpError) as exc_info:
                await self.service.process_pickup(db, request)

        assert exc_info.value.status_code == 400
        assert {p["id"] for p in exc_info.value.packages} == {seed.standard, seed.bobs}
        assert await _count(database, pickup_events) == 1

    @pytest.mark.asyncio
    async def test_failed_transition_rolls_back_everything(self, database, seed):
        """The third package's UPDATE fails: no status changes and no event row survive."""
        async with database.session() as db:
            await db.execute(text(
                f"CREATE TRIGGER block_pickup BEFORE UPDATE ON packages WHEN NEW.id = {seed.bobs} "
                "BEGIN SELECT RAISE(ABORT, 'pickup blocked'); END"
            ))

        request = PickupRequest(
            package_ids=[seed.standard, seed.high_value, seed.bobs],
            mailbox_id=seed.mailbox_a,
            pickup_person_name="Alice Smith",
            signature_data="https://signatures.example.com/1.png",
        )
        async with database.session_factory() as db:
            with pytest.raises(DatabaseError):
                await self.service.process_pickup(db, request)

        rows = await _package_rows(database, [seed.standard, seed.high_value, seed.bobs])
        assert [r["status"] for r in rows] == ["received", "ready_for_pickup", "received"]
        assert all(r["pickup_event_id"] is None for r in rows)
        assert await _count(database, pickup_events) == 0
        assert await _count(database, signatures) == 0

    @pytest.mark.asyncio
    async def test_signature_write_failure_keeps_pickup(self, database, seed, signature_data_uri):
        """The signature INSERT aborts: packages stay picked up, no signature is reported."""
        async with database.session() as db:
            await db.execute(text(
                "CREATE TRIGGER block_signature BEFORE INSERT ON signatures "
                "BEGIN SELECT RAISE(ABORT, 'signature storage offline'); END"
            ))

        request = PickupRequest(
            package_ids=[seed.standard, seed.high_value],
            mailbox_id=seed.mailbox_a,
            pickup_person_name="Alice Smith",
            signature_data=signature_data_uri,
        )
        async with database.session_factory() as db:
            response = await self.service.process_pickup(db, request)

        summary = response.pickup_summary
        assert summary.signature_required is True
        assert summary.signature_captured is False
        assert summary.signature_ids == []

        rows = await _package_rows(database, [seed.standard, seed.high_value])
        assert [r["status"] for r in rows] == ["picked_up", "picked_up"]
        assert all(r["pickup_event_id"] == summary.pickup_event_id for r in rows)
        assert await _count(database, signatures) == 0
        async with database.session_factory() as db:
            captured = (
                await db.execute(
                    select(pickup_events.c.signature_captured).where(pickup_events.c.id == summary.pickup_event_id)
                )
            ).scalar()
        assert captured is False

    @pytest.mark.asyncio
    async def test_savepoint_error_keeps_pickup(self, database, seed):
        """A raw SQLAlchemy error from the signature step is logged, not raised."""
        self.service.store.save_signature = AsyncMock(side_effect=SQLAlchemyError("savepoint released twice"))
        request = PickupRequest(
            package_ids=[seed.high_value],
            mailbox_id=seed.mailbox_a,
            pickup_person_name="Alice Smith",
            signature_data="https://signatures.example.com/2.png",
        )
        async with database.session_factory() as db:
            response = await self.service.process_pickup(db, request)

        assert response.pickup_summary.signature_captured is False
        assert response.pickup_summary.signature_ids == []
        rows = await _package_rows(database, [seed.high_value])
        assert rows[0]["status"] == "picked_up"


class TestPickupListing:
    """Tests for list_pickups() and get_pickup()."""

    def setup_method(self):
        self.service = PickupService(EventPickupStore())

    async def _pickup(self, database, seed, package_ids, **kwargs):
        request = PickupRequest(
            package_ids=package_ids,
            mailbox_id=seed.mailbox_a,
            pickup_person_name="Alice Smith",
            **kwargs,
        )
        async with database.session_factory() as db:
            return await self.service.process_pickup(db, request)

    @pytest.mark.asyncio
    async def test_list_groups_packages_by_event(self, database, seed):
        await self._pickup(database, seed, [seed.standard, seed.bobs])

        async with database.session_factory() as db:
            listing = await self.service.list_pickups(db)

        assert listing.pagination.total == 1
        assert listing.filters.days == 30
        event = listing.pickup_events[0]
        assert event.package_count == 2
        assert event.tracking_numbers == ["TRK-1001", "TRK-1003"]
        assert event.mailbox_number == "101"
        assert event.has_signature is False

    @pytest.mark.asyncio
    async def test_list_filters_by_tenant(self, database, seed):
        await self._pickup(database, seed, [seed.standard], tenant_id=seed.alice)
        await self._pickup(database, seed, [seed.bobs], tenant_id=seed.bob)

        async with database.session_factory() as db:
            listing = await self.service.list_pickups(db, tenant_id=seed.bob)

        assert [e.tenant_name for e in listing.pickup_events] == ["Bob Jones"]

    @pytest.mark.asyncio
    async def test_detail_includes_packages(self, database, seed, signature_data_uri):
        response = await self._pickup(
            database, seed, [seed.high_value], signature_data=signature_data_uri
        )
        event_id = response.pickup_summary.pickup_event_id

        async with database.session_factory() as db:
            detail = (await self.service.get_pickup(db, event_id)).pickup_event

        assert detail.pickup_event_id == event_id
        assert detail.has_signature is True
        assert detail.high_value_count == 1
        assert [p.tracking_number for p in detail.packages] == ["TRK-1002"]

    @pytest.mark.asyncio
    async def test_detail_not_found(self, database, seed):
        async with database.session_factory() as db:
            with pytest.raises(NotFoundError):
                await self.service.get_pickup(db, 999)

    @pytest.mark.asyncio
    async def test_days_window_and_paging(self, database, seed):
        """days bounds the window; limit and offset page inside it."""
        older = (await self._pickup(database, seed, [seed.standard])).pickup_summary.pickup_event_id
        recent = (await self._pickup(database, seed, [seed.bobs])).pickup_summary.pickup_event_id
        stale = (
            await self._pickup(
                database, seed, [seed.high_value], signature_data="https://signatures.example.com/3.png"
            )
        ).pickup_summary.pickup_event_id

        async with database.session() as db:
            for event_id, age in ((older, 10), (stale, 45)):
                await db.execute(
                    pickup_events.update()
                    .where(pickup_events.c.id == event_id)
                    .values(pickup_timestamp=utcnow() - timedelta(days=age))
                )

        async with database.session_factory() as db:
            last_five = await self.service.list_pickups(db, days=5)
            second_page = await self.service.list_pickups(db, days=30, limit=1, offset=1)
            first_only = await self.service.list_pickups(db, limit=1)
            wide = await self.service.list_pickups(db, days=60)

        assert last_five.pagination.total == 1
        assert [e.pickup_event_id for e in last_five.pickup_events] == [recent]
        assert [e.pickup_event_id for e in second_page.pickup_events] == [older]
        assert second_page.pagination.total == 2
        assert [e.pickup_event_id for e in first_only.pickup_events] == [recent]
        assert first_only.filters.days == 30
        assert first_only.pagination.total == 2
        assert [e.pickup_event_id for e in wide.pickup_events] == [recent, older, stale]


class TestBulkStatus:
    """Tests for bulk_update_status()."""

    def setup_method(self):
        self.service = PickupService(EventPickupStore())

    @pytest.mark.asyncio
    async def test_only_open_packages_change(self, database, seed):
        request = BulkStatusRequest(
            package_ids=[seed.standard, seed.bobs, seed.returned],
            status="ready_for_pickup",
            notes="Shelf B",
        )
        async with database.session() as db:
            response = await self.service.bulk_update_status(db, request)

        assert response.requested_count == 3
        assert response.updated_count == 2
        assert [p.id for p in response.updated_packages] == [seed.standard, seed.bobs]
        rows = await _package_rows(database, [seed.standard, seed.bobs, seed.returned])
        assert [r["status"] for r in rows] == ["ready_for_pickup", "ready_for_pickup", "returned_to_sender"]

    @pytest.mark.asyncio
    async def test_picked_up_packages_are_excluded(self, database, seed):
        pickup = PickupRequest(package_ids=[seed.standard], mailbox_id=seed.mailbox_a, pickup_person_name="Alice")
        async with database.session_factory() as db:
            await self.service.process_pickup(db, pickup)

        request = BulkStatusRequest(package_ids=[seed.standard, seed.bobs], status="returned_to_sender")
        async with database.session() as db:
            response = await self.service.bulk_update_status(db, request)

        assert response.updated_count == 1
        assert response.updated_packages[0].tracking_number == "TRK-1003"

    def test_picked_up_is_not_a_bulk_status(self):
        with pytest.raises(SchemaValidationError):
            BulkStatusRequest(package_ids=[1], status="picked_up")
