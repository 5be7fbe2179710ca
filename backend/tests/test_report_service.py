"""
Mailroom Backend: Report Service Tests
========================================

What:  Tests for statistics, pickup history, the audit trail and the
       mailbox summary on the event schema.

What we test:
    ✅ Status overview, carrier pickup rates and top mailboxes
    ✅ Daily trends cover every day of the range, zeros included
    ✅ The audit trail merges intake and pickups, newest first
    ✅ Mailbox summary counts and recent packages
"""

from datetime import date, timedelta

import pytest

from mailroom.models._columns import utcnow
from mailroom.schemas.pickup import PickupRequest
from mailroom.services.pickup_service import PickupService
from mailroom.services.report_service import ReportService, ReportWindow, as_day
from mailroom.stores import EventPickupStore


class TestHelpers:

    def test_as_day(self):
        assert as_day(date(2024, 3, 5)) == "2024-03-05"
        assert as_day("2024-03-05") == "2024-03-05"

    def test_window_filters_echo_dates(self):
        window = ReportWindow(start_date=date(2024, 1, 1), end_date=date(2024, 1, 31), mailbox_id=3)
        filters = window.filters()
        assert filters.start_date == "2024-01-01"
        assert filters.end_date == "2024-01-31"
        assert filters.mailbox_id == 3
        assert window.since.tzinfo is not None


class TestReportService:

    def setup_method(self):
        store = EventPickupStore()
        self.pickups = PickupService(store)
        self.reports = ReportService(store)

    async def _pickup(self, database, seed, package_ids, **kwargs):
        request = PickupRequest(
            package_ids=package_ids,
            mailbox_id=seed.mailbox_a,
            pickup_person_name="Alice Smith",
            **kwargs,
        )
        async with database.session_factory() as db:
            return await self.pickups.process_pickup(db, request)

    @pytest.mark.asyncio
    async def test_overview(self, db_session, seed):
        stats = (await self.reports.statistics(db_session, ReportWindow())).statistics
        overview = stats.overview
        assert overview.total_packages == 5
        assert overview.received == 3
        assert overview.ready_for_pickup == 1
        assert overview.returned_to_sender == 1
        assert overview.picked_up == 0
        assert overview.high_value_packages == 1
        assert overview.mailboxes_with_packages == 2
        assert overview.tenants_with_packages == 3

    @pytest.mark.asyncio
    async def test_carriers_and_top_mailboxes(self, database, seed):
        await self._pickup(database, seed, [seed.standard])

        async with database.session_factory() as db:
            stats = (await self.reports.statistics(db, ReportWindow())).statistics

        carriers = {c.carrier: c for c in stats.carriers}
        assert stats.carriers[0].carrier == "UPS"
        assert carriers["UPS"].package_count == 2
        assert carriers["UPS"].pickup_rate == 50.0
        assert carriers["Unknown"].package_count == 1
        assert carriers["FedEx"].pickup_rate == 0.0

        top = stats.top_mailboxes[0]
        assert (top.mailbox_number, top.package_count, top.pending_count) == ("101", 4, 2)

    @pytest.mark.asyncio
    async def test_daily_trends_are_zero_filled(self, database, seed):
        await self._pickup(database, seed, [seed.standard, seed.bobs])
        today = utcnow().date()

        async with database.session_factory() as db:
            stats = (await self.reports.statistics(db, ReportWindow())).statistics

        trends = stats.daily_trends
        assert len(trends) == 30
        assert trends[0].date == (today - timedelta(days=29)).isoformat()
        assert trends[-1].date == today.isoformat()
        assert (trends[-1].received, trends[-1].picked_up) == (5, 2)
        assert all(t.received == 0 and t.picked_up == 0 for t in trends[:-1])

    @pytest.mark.asyncio
    async def test_window_outside_data(self, db_session, seed):
        window = ReportWindow(start_date=date(2020, 1, 1), end_date=date(2020, 1, 3))
        stats = (await self.reports.statistics(db_session, window)).statistics
        assert stats.overview.total_packages == 0
        assert [t.date for t in stats.daily_trends] == ["2020-01-01", "2020-01-02", "2020-01-03"]
        assert stats.top_mailboxes == []

    @pytest.mark.asyncio
    async def test_pickup_history(self, database, seed):
        await self._pickup(database, seed, [seed.standard], tenant_id=seed.alice)
        await self._pickup(database, seed, [seed.bobs], tenant_id=seed.bob)

        async with database.session_factory() as db:
            history = await self.reports.pickup_history(db, ReportWindow(tenant_id=seed.bob))

        assert history.pagination.total == 1
        assert history.pickups[0].tracking_numbers == ["TRK-1003"]
        assert history.filters.tenant_id == seed.bob

    @pytest.mark.asyncio
    async def test_audit_merges_intake_and_pickups(self, database, seed, signature_data_uri):
        await self._pickup(database, seed, [seed.standard, seed.high_value], signature_data=signature_data_uri)

        async with database.session_factory() as db:
            audit = await self.reports.audit(db)

        assert audit.pagination.total == 6
        newest = audit.audit_log[0]
        assert newest.action_type == "pickup"
        assert newest.summary == "2 packages"
        assert newest.details == "With signature"
        assert newest.description == "Pickup by Alice Smith"

        intake = [e for e in audit.audit_log if e.action_type == "package_intake"]
        assert len(intake) == 5
        high_value = next(e for e in intake if e.reference == "TRK-1002")
        assert high_value.details == "High value"
        assert high_value.summary == "FedEx"
        assert high_value.description == "Package received: TRK-1002"
        assert audit.filters.end_date == utcnow().date().isoformat()

    @pytest.mark.asyncio
    async def test_audit_filters(self, database, seed):
        await self._pickup(database, seed, [seed.standard])

        async with database.session_factory() as db:
            pickups_only = await self.reports.audit(db, action_type="pickup")
            other_box = await self.reports.audit(db, mailbox_id=seed.mailbox_b)
            paged = await self.reports.audit(db, limit=2, offset=1)

        assert [e.action_type for e in pickups_only.audit_log] == ["pickup"]
        assert [e.reference for e in other_box.audit_log] == ["TRK-2001"]
        assert len(paged.audit_log) == 2
        assert paged.pagination.has_more is True

    @pytest.mark.asyncio
    async def test_mailbox_summary(self, database, seed):
        await self._pickup(database, seed, [seed.standard, seed.bobs])

        async with database.session_factory() as db:
            response = await self.reports.mailbox_summary(db, seed.mailbox_a, days=7)

        summary = response.summary
        assert response.mailbox.mailbox_number == "101"
        assert summary.period_days == 7
        assert summary.statistics.total_packages == 4
        assert summary.statistics.picked_up == 2
        assert summary.statistics.pickups == 1
        assert len(summary.recent_packages) == 4
