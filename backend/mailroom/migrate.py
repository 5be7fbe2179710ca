"""
Mailroom Backend: Data Migration Command
==========================================

What:  Copies every mailroom table from one database to another, e.g. a
       PostgreSQL server to the SQLite file used by the desktop build, or back.
How:   Source rows are read as raw dicts, converted column by column to the
       types of the reflected target table, and upserted by primary id in
       batches. The whole copy runs in one target transaction.

Usage:
    mailroom-migrate --source-url postgresql+asyncpg://... \\
                     --target-url sqlite+aiosqlite:///mailroom.sqlite \\
                     [--create-schema] [--tables mailboxes,tenants]

Table order:
    mailboxes → tenants → packages → signatures → pickup_events

    A NOT NULL foreign key to a later table moves the referencing table after
    it (signatures follow pickup_events in the event schema). A nullable
    foreign key to a later table is inserted as NULL and patched once every
    table is loaded (mailboxes.default_tenant_id, packages.pickup_event_id).

Conversions (by target column type):
    DateTime  ← ISO strings ("Z" suffix and space separator accepted), naive = UTC
    Boolean   ← 0/1, "t"/"f", "true"/"false", "yes"/"no"
    JSON      ← JSON text
    String    ← datetimes as ISO strings, dicts/lists as JSON text

Prints a JSON summary with per-table source and target counts. Exit code 0 on
success, 1 on failure.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from sqlalchemy import MetaData, Table, bindparam, func, inspect, select, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection
from sqlalchemy.sql import sqltypes

from mailroom.database import Base, Database, build_upsert
from mailroom.exceptions import MailroomError, MigrationError
import mailroom.models  # noqa: F401  (registers tables on Base.metadata)

logger = logging.getLogger("mailroom.migrate")

TABLE_ORDER = ("mailboxes", "tenants", "packages", "signatures", "pickup_events")
BATCH_SIZE = 500

TRUE_VALUES = {"1", "t", "true", "y", "yes", "on"}
FALSE_VALUES = {"0", "f", "false", "n", "no", "off"}


# ══════════════════════════════════════════════════════════════════════════
# Value conversion
# ══════════════════════════════════════════════════════════════════════════

def to_datetime(value: Any) -> Optional[datetime]:
    """Parses a timestamp from either engine into an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, datetime.min.time())
    elif isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        raw = str(value).strip()
        if not raw:
            return None
        if raw.endswith(("Z", "z")):
            raw = raw[:-1] + "+00:00"
        parsed = datetime.fromisoformat(raw.replace(" ", "T", 1))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_bool(value: Any) -> Optional[bool]:
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    raw = str(value).strip().lower()
    if raw in TRUE_VALUES:
        return True
    if raw in FALSE_VALUES:
        return False
    raise ValueError(f"not a boolean: {value!r}")


def to_json(value: Any) -> Any:
    if value is None or isinstance(value, (dict, list)):
        return value
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    raw = str(value).strip()
    return json.loads(raw) if raw else None


def convert_value(value: Any, column_type: Any) -> Any:
    """Coerces one source value to what the target column type binds."""
    if value is None:
        return None
    if isinstance(column_type, sqltypes.DateTime):
        return to_datetime(value)
    if isinstance(column_type, sqltypes.Boolean):
        return to_bool(value)
    if isinstance(column_type, sqltypes.JSON):
        return to_json(value)
    if isinstance(column_type, sqltypes.String):
        if isinstance(value, datetime):
            return to_datetime(value).isoformat()
        if isinstance(value, (dict, list)):
            return json.dumps(value)
    return value


def convert_row(table: Table, row: Dict[str, Any], columns: Sequence[str]) -> Dict[str, Any]:
    converted = {}
    for name in columns:
        try:
            converted[name] = convert_value(row.get(name), table.c[name].type)
        except (TypeError, ValueError) as e:
            raise MigrationError(
                message=f"Cannot convert {table.name}.{name} for row {row.get('id')}: {e}",
                context={"table": table.name, "column": name, "row_id": row.get("id")},
            )
    return converted


# ══════════════════════════════════════════════════════════════════════════
# Planning
# ══════════════════════════════════════════════════════════════════════════

def plan_order(tables: Dict[str, Table], names: Sequence[str]) -> List[str]:
    """
    Nominal order, except that a table waits for every table its NOT NULL
    foreign keys point to (when that table is part of the copy).
    """
    remaining = [n for n in TABLE_ORDER if n in names]
    ordered: List[str] = []
    while remaining:
        for name in remaining:
            required = {
                fk.column.table.name
                for fk in tables[name].foreign_keys
                if not fk.parent.nullable and fk.column.table.name != name
            }
            if not required & set(remaining):
                ordered.append(name)
                remaining.remove(name)
                break
        else:
            raise MigrationError(
                message="Circular NOT NULL foreign keys between tables",
                context={"tables": remaining},
            )
    return ordered


def deferred_columns(table: Table, pending: Set[str]) -> List[str]:
    """Nullable foreign key columns pointing at tables not loaded yet."""
    return sorted(
        {
            fk.parent.name
            for fk in table.foreign_keys
            if fk.parent.nullable and fk.column.table.name in pending
        }
    )


# ══════════════════════════════════════════════════════════════════════════
# Copy
# ══════════════════════════════════════════════════════════════════════════

@dataclass
class TableReport:
    status: str = "copied"
    source_count: int = 0
    target_count: Optional[int] = None
    reason: Optional[str] = None


@dataclass
class MigrationReport:
    source: str
    target: str
    tables: Dict[str, TableReport] = field(default_factory=dict)
    deferred_updates: int = 0
    success: bool = False
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "target": self.target,
            "success": self.success,
            "error": self.error,
            "deferred_updates": self.deferred_updates,
            "tables": {
                name: {k: v for k, v in vars(report).items() if v is not None}
                for name, report in self.tables.items()
            },
        }


def mask_url(url: str) -> str:
    return make_url(url).render_as_string(hide_password=True)


def quote(conn: AsyncConnection, name: str) -> str:
    return conn.dialect.identifier_preparer.quote(name)


async def table_names(conn: AsyncConnection) -> Set[str]:
    return set(await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names()))


async def read_rows(conn: AsyncConnection, name: str) -> List[Dict[str, Any]]:
    result = await conn.execute(text(f"SELECT * FROM {quote(conn, name)} ORDER BY id"))
    return [dict(row) for row in result.mappings().all()]


async def count_rows(conn: AsyncConnection, table: Table) -> int:
    return (await conn.execute(select(func.count()).select_from(table))).scalar_one()


async def write_rows(conn: AsyncConnection, table: Table, rows: List[Dict[str, Any]], batch_size: int) -> None:
    for start in range(0, len(rows), batch_size):
        batch = rows[start:start + batch_size]
        stmt = build_upsert(conn.dialect.name, table, batch, conflict_cols=["id"])
        await conn.execute(stmt)


async def patch_deferred(conn: AsyncConnection, table: Table, column: str, updates: List[Tuple[int, Any]]) -> None:
    stmt = (
        table.update()
        .where(table.c.id == bindparam("row_id"))
        .values({column: bindparam("new_value")})
    )
    await conn.execute(stmt, [{"row_id": row_id, "new_value": value} for row_id, value in updates])


async def reset_sequences(conn: AsyncConnection, names: Sequence[str]) -> None:
    """Moves PostgreSQL id sequences past the copied ids."""
    for name in names:
        await conn.execute(
            text(
                f"SELECT setval(pg_get_serial_sequence(:table, 'id'), "
                f"COALESCE(MAX(id), 1), MAX(id) IS NOT NULL) FROM {quote(conn, name)}"
            ),
            {"table": name},
        )


def _check_source_exists(url: str) -> None:
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite" and parsed.database not in (None, "", ":memory:"):
        if not os.path.exists(parsed.database):
            raise MigrationError(
                message=f"Source database file not found: {parsed.database}",
                context={"path": parsed.database},
            )


async def migrate(
    source_url: str,
    target_url: str,
    *,
    tables: Optional[Sequence[str]] = None,
    create_schema: bool = False,
    batch_size: int = BATCH_SIZE,
) -> MigrationReport:
    """
    Copy the selected tables from source to target.

    Raises:
        MigrationError: a value could not be converted or the plan is impossible
        SQLAlchemyError: the source or target rejected a statement
    """
    report = MigrationReport(source=mask_url(source_url), target=mask_url(target_url))
    requested = list(tables or TABLE_ORDER)
    _check_source_exists(source_url)

    source = Database(source_url)
    target = Database(target_url)
    try:
        async with source.engine.connect() as src, target.engine.begin() as dst:
            if create_schema:
                logger.info("Creating schema on target")
                await dst.run_sync(Base.metadata.create_all)

            source_tables = await table_names(src)
            target_tables = await table_names(dst)
            selected = []
            for name in requested:
                if name not in source_tables:
                    report.tables[name] = TableReport(status="skipped", reason="missing in source")
                    logger.warning("Skipping %s: table missing in source", name)
                elif name not in target_tables:
                    report.tables[name] = TableReport(status="skipped", reason="missing in target")
                    logger.warning("Skipping %s: table missing in target", name)
                else:
                    selected.append(name)

            metadata = MetaData()
            await dst.run_sync(lambda sync_conn: metadata.reflect(sync_conn, only=selected))
            reflected = {name: metadata.tables[name] for name in selected}

            order = plan_order(reflected, selected)
            pending = set(order)
            deferred: Dict[Tuple[str, str], List[Tuple[int, Any]]] = {}

            for name in order:
                table = reflected[name]
                pending.discard(name)
                rows = await read_rows(src, name)
                entry = report.tables[name] = TableReport(source_count=len(rows))

                columns = [c for c in (rows[0].keys() if rows else ()) if c in table.c]
                postponed = [c for c in deferred_columns(table, pending) if c in columns]
                converted = []
                for row in rows:
                    values = convert_row(table, row, columns)
                    for column in postponed:
                        if values[column] is not None:
                            deferred.setdefault((name, column), []).append((values["id"], values[column]))
                            values[column] = None
                    converted.append(values)

                await write_rows(dst, table, converted, batch_size)
                logger.info("Copied %d rows into %s", len(converted), name)
                entry.target_count = len(converted)

            for (name, column), updates in deferred.items():
                await patch_deferred(dst, reflected[name], column, updates)
                logger.info("Patched %d deferred %s.%s values", len(updates), name, column)
                report.deferred_updates += len(updates)

            if dst.dialect.name == "postgresql":
                await reset_sequences(dst, order)

            for name in order:
                report.tables[name].target_count = await count_rows(dst, reflected[name])

        report.success = True
        return report
    finally:
        await source.dispose()
        await target.dispose()


# ══════════════════════════════════════════════════════════════════════════
# Command line
# ══════════════════════════════════════════════════════════════════════════

def parse_tables(value: str) -> List[str]:
    names = [n.strip() for n in value.split(",") if n.strip()]
    unknown = [n for n in names if n not in TABLE_ORDER]
    if unknown or not names:
        raise argparse.ArgumentTypeError(
            f"unknown table(s): {', '.join(unknown) or value!r}; choose from {', '.join(TABLE_ORDER)}"
        )
    return names


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mailroom-migrate",
        description="Copy mailroom data between two SQL databases (PostgreSQL, SQLite).",
    )
    parser.add_argument("--source-url", required=True, help="Async SQLAlchemy URL to read from")
    parser.add_argument("--target-url", required=True, help="Async SQLAlchemy URL to write to")
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create missing tables on the target before copying",
    )
    parser.add_argument(
        "--tables",
        type=parse_tables,
        default=None,
        help=f"Comma-separated subset of: {','.join(TABLE_ORDER)}",
    )
    parser.add_argument("--batch-size", type=int, default=BATCH_SIZE, help="Rows per upsert statement")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    # stdout carries the JSON summary; logs go to stderr
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        stream=sys.stderr,
    )

    try:
        report = asyncio.run(
            migrate(
                args.source_url,
                args.target_url,
                tables=args.tables,
                create_schema=args.create_schema,
                batch_size=max(args.batch_size, 1),
            )
        )
    except (MailroomError, SQLAlchemyError, OSError) as e:
        logger.error("Migration failed: %s", e)
        report = MigrationReport(source=mask_url(args.source_url), target=mask_url(args.target_url))
        report.error = str(e)

    print(json.dumps(report.as_dict(), indent=2))
    return 0 if report.success else 1


if __name__ == "__main__":
    sys.exit(main())
