"""
Mailroom Backend: Migration Command Tests
===========================================

What:  Tests for mailroom-migrate: value conversion, table planning and a
       full SQLite to SQLite copy.

What we test:
    ✅ Timestamps, booleans and JSON from either engine are normalized
    ✅ NOT NULL foreign keys reorder tables; nullable ones are deferred
    ✅ A copy reproduces every row, including deferred foreign keys
    ✅ Re-running a copy upserts instead of duplicating
    ✅ Tables missing on one side are skipped and reported
    ✅ The command exits 1 with a JSON summary when the source is missing
"""

import argparse
import json
from datetime import date, datetime, timezone

import pytest
from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, select

from mailroom.database import Base, Database
from mailroom.exceptions import MigrationError
from mailroom.migrate import (
    convert_row,
    convert_value,
    deferred_columns,
    main,
    migrate,
    parse_tables,
    plan_order,
    to_bool,
    to_datetime,
)
from mailroom.models import Mailbox, Package, PickupEvent, Signature
from mailroom.schemas.pickup import PickupRequest
from mailroom.services.pickup_service import PickupService
from mailroom.stores import EventPickupStore


class TestConverters:

    def test_to_datetime_formats(self):
        expected = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert to_datetime("2024-01-02T03:04:05Z") == expected
        assert to_datetime("2024-01-02 03:04:05") == expected
        assert to_datetime("2024-01-02T04:04:05+01:00") == expected
        assert to_datetime(datetime(2024, 1, 2, 3, 4, 5)) == expected
        assert to_datetime(date(2024, 1, 2)) == datetime(2024, 1, 2, tzinfo=timezone.utc)
        assert to_datetime(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)
        assert to_datetime("  ") is None

    def test_to_bool(self):
        assert to_bool("t") is True
        assert to_bool("No") is False
        assert to_bool(1) is True
        assert to_bool(0) is False
        with pytest.raises(ValueError):
            to_bool("maybe")

    def test_convert_value_by_column_type(self):
        tenants = Base.metadata.tables["tenants"]
        assert convert_value('{"floor": 2}', tenants.c.contact_info.type) == {"floor": 2}
        assert convert_value({"floor": 2}, tenants.c.name.type) == '{"floor": 2}'
        assert convert_value(1, tenants.c.active.type) is True
        assert convert_value(None, tenants.c.active.type) is None

    def test_convert_row_reports_the_column(self):
        tenants = Base.metadata.tables["tenants"]
        with pytest.raises(MigrationError) as exc_info:
            convert_row(tenants, {"id": 7, "active": "sometimes"}, ["id", "active"])
        assert exc_info.value.context == {"table": "tenants", "column": "active", "row_id": 7}


class TestPlanning:

    def test_signatures_follow_pickup_events(self):
        order = plan_order(dict(Base.metadata.tables), list(Base.metadata.tables))
        assert order == ["mailboxes", "tenants", "packages", "pickup_events", "signatures"]

    def test_subset_keeps_nominal_order(self):
        order = plan_order(dict(Base.metadata.tables), ["packages", "mailboxes"])
        assert order == ["mailboxes", "packages"]

    def test_circular_required_keys(self):
        metadata = MetaData()
        Table(
            "mailboxes", metadata,
            Column("id", Integer, primary_key=True),
            Column("tenant_id", Integer, ForeignKey("tenants.id"), nullable=False),
        )
        Table(
            "tenants", metadata,
            Column("id", Integer, primary_key=True),
            Column("mailbox_id", Integer, ForeignKey("mailboxes.id"), nullable=False),
            Column("name", String(50)),
        )
        with pytest.raises(MigrationError):
            plan_order(dict(metadata.tables), ["mailboxes", "tenants"])

    def test_deferred_columns(self):
        tables = Base.metadata.tables
        assert deferred_columns(tables["mailboxes"], {"tenants", "packages"}) == ["default_tenant_id"]
        assert deferred_columns(tables["packages"], {"pickup_events"}) == ["pickup_event_id"]
        assert deferred_columns(tables["packages"], set()) == []

    def test_parse_tables(self):
        assert parse_tables("mailboxes, tenants") == ["mailboxes", "tenants"]
        with pytest.raises(argparse.ArgumentTypeError):
            parse_tables("mailboxes,notes")


class TestMigrate:

    @pytest.mark.asyncio
    async def test_full_copy(self, database, seed, sqlite_url, tmp_path, signature_data_uri):
        request = PickupRequest(
            package_ids=[seed.standard, seed.high_value],
            mailbox_id=seed.mailbox_a,
            pickup_person_name="Alice Smith",
            signature_data=signature_data_uri,
        )
        async with database.session_factory() as db:
            event_id = (await PickupService(EventPickupStore()).process_pickup(db, request)).pickup_summary.pickup_event_id

        target_url = f"sqlite+aiosqlite:///{tmp_path / 'copy.db'}"
        report = await migrate(sqlite_url, target_url, create_schema=True, batch_size=2)

        assert report.success is True
        assert report.deferred_updates == 3
        counts = {name: (t.source_count, t.target_count) for name, t in report.tables.items()}
        assert counts == {
            "mailboxes": (2, 2),
            "tenants": (3, 3),
            "packages": (5, 5),
            "pickup_events": (1, 1),
            "signatures": (1, 1),
        }

        target = Database(target_url)
        try:
            async with target.session_factory() as db:
                default_tenant = (
                    await db.execute(
                        select(Mailbox.__table__.c.default_tenant_id).where(Mailbox.__table__.c.id == seed.mailbox_a)
                    )
                ).scalar()
                linked = (
                    await db.execute(
                        select(Package.__table__.c.id)
                        .where(Package.__table__.c.pickup_event_id == event_id)
                        .order_by(Package.__table__.c.id)
                    )
                ).scalars().all()
                event = (
                    await db.execute(select(PickupEvent.__table__).where(PickupEvent.__table__.c.id == event_id))
                ).mappings().one()
                signature = (await db.execute(select(Signature.__table__))).mappings().one()
        finally:
            await target.dispose()

        assert default_tenant == seed.alice
        assert linked == [seed.standard, seed.high_value]
        assert event["signature_captured"] is True
        assert event["pickup_timestamp"] is not None
        assert signature["signature_data"] == signature_data_uri

    @pytest.mark.asyncio
    async def test_rerun_upserts(self, database, seed, sqlite_url, tmp_path):
        target_url = f"sqlite+aiosqlite:///{tmp_path / 'copy.db'}"
        await migrate(sqlite_url, target_url, create_schema=True)
        report = await migrate(sqlite_url, target_url)

        assert report.success is True
        assert report.tables["packages"].target_count == 5

    @pytest.mark.asyncio
    async def test_legacy_source_skips_missing_tables(self, legacy_database, legacy_seed, sqlite_url, tmp_path):
        target_url = f"sqlite+aiosqlite:///{tmp_path / 'copy.db'}"
        report = await migrate(
            sqlite_url,
            target_url,
            tables=["mailboxes", "tenants", "packages", "pickup_events"],
            create_schema=True,
        )

        assert report.success is True
        assert report.tables["pickup_events"].status == "skipped"
        assert report.tables["pickup_events"].reason == "missing in source"
        assert report.tables["packages"].target_count == 5
        assert "signatures" not in report.tables

    @pytest.mark.asyncio
    async def test_missing_source_file(self, tmp_path):
        with pytest.raises(MigrationError):
            await migrate(
                f"sqlite+aiosqlite:///{tmp_path / 'absent.db'}",
                f"sqlite+aiosqlite:///{tmp_path / 'copy.db'}",
            )


class TestCommandLine:

    def test_failure_prints_summary(self, tmp_path, capsys):
        exit_code = main([
            "--source-url", f"sqlite+aiosqlite:///{tmp_path / 'absent.db'}",
            "--target-url", f"sqlite+aiosqlite:///{tmp_path / 'copy.db'}",
        ])

        summary = json.loads(capsys.readouterr().out)
        assert exit_code == 1
        assert summary["success"] is False
        assert "absent.db" in summary["error"]

    def test_unknown_table_is_a_usage_error(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--source-url", "sqlite+aiosqlite:///a.db", "--target-url", "sqlite+aiosqlite:///b.db",
                  "--tables", "notes"])
        assert exc_info.value.code == 2
