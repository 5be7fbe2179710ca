"""
Mailroom Backend: Persistence Adapter
=======================================

What:  Async SQLAlchemy engine, session factory, FastAPI dependency and the
       statement helpers every service goes through.
How:   A `Database` object owns one engine and one session factory. It is
       built once at startup (lifespan) and shared through `app.state.database`.
       Sessions commit on success and roll back on error.
       `execute()` bounds each statement with DB_STATEMENT_TIMEOUT, logs slow
       statements and translates driver errors into application exceptions.
Why:   Services never touch driver exceptions or dialect differences; they
       see QueryResult rows and the MailroomError hierarchy only.
Who:   Services and pickup stores (execute/insert_returning/upsert), routes
       (get_db_session), main.py (lifecycle), the migration command.
When:  One Database per process, opened in the lifespan handler; sessions
       are created per request.

Architecture Decision:
    A Database object instead of a module-level engine because:
    1. The migration command needs two engines (source and target) at once
    2. Tests point each case at its own temporary SQLite file
    3. Startup can retry the connection before the app accepts traffic
    Alternative considered: module-level engine bound at import. Simpler,
    but the URL is then fixed before tests or the CLI can choose one.

Error translation:
    missing table / column          → SchemaCompatibilityError
    unique constraint violation     → ConflictError
    statement timeout               → DatabaseTimeoutError
    any other SQLAlchemyError       → DatabaseError

Connection Pooling Strategy (PostgreSQL only, SQLite uses the default pool):
    pool_size=20:      Persistent connections for normal load
    max_overflow=10:   Temporary connections for spikes (total max = 30)
    pool_pre_ping:     Validates connections before use
    pool_recycle=3600: Recycles connections every hour
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Dict, Iterable, List, Optional

from fastapi import Request
from sqlalchemy import Table, event, select, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from mailroom.config import settings
from mailroom.exceptions import (
    ConflictError,
    DatabaseError,
    DatabaseTimeoutError,
    MailroomError,
    SchemaCompatibilityError,
)

logger = logging.getLogger(__name__)

# SQLSTATE codes for undefined_table / undefined_column (PostgreSQL)
_MISSING_SCHEMA_SQLSTATES = {"42P01", "42703"}
_MISSING_SCHEMA_MARKERS = ("no such table", "no such column", "does not exist", "has no column named")


# ── Base Model ────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    """Base class for all ORM models; its metadata drives Alembic and test setup."""
    pass


# ══════════════════════════════════════════════════════════════════════════
# Query results
# ══════════════════════════════════════════════════════════════════════════

@dataclass
class QueryResult:
    """
    Plain result of one statement.

    rows:           list of dict rows (empty for DML without RETURNING)
    rowcount:       rows affected by UPDATE/DELETE (-1 when the driver can't tell)
    last_insert_id: primary key of a single-row INSERT, when known
    """

    rows: List[Dict[str, Any]] = field(default_factory=list)
    rowcount: int = 0
    last_insert_id: Optional[Any] = None

    def first(self) -> Optional[Dict[str, Any]]:
        return self.rows[0] if self.rows else None

    def scalar(self) -> Any:
        row = self.first()
        if row is None:
            return None
        return next(iter(row.values()))

    def scalars(self) -> List[Any]:
        return [next(iter(row.values())) for row in self.rows]


# ══════════════════════════════════════════════════════════════════════════
# Error translation
# ══════════════════════════════════════════════════════════════════════════

def _is_missing_schema(exc: SQLAlchemyError) -> bool:
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _MISSING_SCHEMA_SQLSTATES:
        return True
    message = str(orig if orig is not None else exc).lower()
    return any(marker in message for marker in _MISSING_SCHEMA_MARKERS)


def _is_unique_violation(exc: IntegrityError) -> bool:
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate == "23505":
        return True
    message = str(orig if orig is not None else exc).lower()
    return "unique" in message or "duplicate key" in message


def translate_error(exc: SQLAlchemyError, name: str) -> MailroomError:
    """Maps a SQLAlchemy/driver error to the application exception hierarchy."""
    context = {"statement": name, "error_type": type(exc).__name__}
    if _is_missing_schema(exc):
        return SchemaCompatibilityError(context=context)
    if isinstance(exc, IntegrityError) and _is_unique_violation(exc):
        return ConflictError(
            message="A record with the same unique value already exists",
            context=context,
        )
    return DatabaseError(context=context)


# ══════════════════════════════════════════════════════════════════════════
# Statement helpers
# ══════════════════════════════════════════════════════════════════════════

def _statement_name(statement: Any) -> str:
    table = getattr(statement, "table", None)
    kind = type(statement).__name__.lower()
    if table is not None and getattr(table, "name", None):
        return f"{kind}:{table.name}"
    return kind


async def execute(
    session: AsyncSession,
    statement: Any,
    params: Optional[Dict[str, Any]] = None,
    *,
    name: Optional[str] = None,
) -> QueryResult:
    """
    Run one statement through the session with a timeout and error translation.

    Args:
        session:   Request-scoped async session
        statement: SQLAlchemy Core construct or text()
        params:    Bind parameters for text() statements
        name:      Short label for logs (defaults to "<kind>:<table>")

    Returns:
        QueryResult with dict rows, rowcount and, for a single INSERT,
        the inserted primary key.

    Raises:
        SchemaCompatibilityError, ConflictError, DatabaseTimeoutError, DatabaseError
    """
    label = name or _statement_name(statement)
    timeout = session.info.get("statement_timeout", settings.db_statement_timeout)
    slow_ms = session.info.get("slow_query_ms", settings.db_slow_query_ms)

    start = time.perf_counter()
    # Why wait_for: aiosqlite has no server-side statement_timeout
    try:
        result = await asyncio.wait_for(session.execute(statement, params), timeout=timeout)
    except asyncio.TimeoutError:
        logger.error("Statement %s exceeded %.1fs timeout", label, timeout)
        raise DatabaseTimeoutError(timeout, context={"statement": label})
    except SQLAlchemyError as e:
        translated = translate_error(e, label)
        if isinstance(translated, SchemaCompatibilityError):
            logger.debug("Statement %s hit missing schema: %s", label, e)
        else:
            logger.error("Statement %s failed: %s", label, e)
        raise translated from e

    elapsed_ms = (time.perf_counter() - start) * 1000
    if elapsed_ms > slow_ms:
        logger.warning("Slow statement %s took %.1fms", label, elapsed_ms)

    query_result = QueryResult()
    if result.returns_rows:
        query_result.rows = [dict(row) for row in result.mappings().all()]
        query_result.rowcount = len(query_result.rows)
    else:
        query_result.rowcount = result.rowcount
        if getattr(result, "is_insert", False) and result.rowcount == 1:
            pk = result.inserted_primary_key
            if pk:
                query_result.last_insert_id = pk[0]
    return query_result


def _dialect_name(session: AsyncSession) -> str:
    return session.get_bind().dialect.name


async def insert_returning(
    session: AsyncSession,
    table: Table,
    values: Dict[str, Any],
    columns: Optional[Iterable[Any]] = None,
) -> Dict[str, Any]:
    """
    Inserts one row and returns it as a dict.

    Uses RETURNING where the dialect supports it; otherwise re-selects the
    row by the inserted primary key. `columns` limits what is read back
    (defaults to every column of the table).
    """
    dialect = session.get_bind().dialect
    columns = list(columns) if columns is not None else list(table.c)
    stmt = table.insert().values(**values)
    if getattr(dialect, "insert_returning", False):
        result = await execute(session, stmt.returning(*columns))
        return result.first()

    result = await execute(session, stmt)
    pk_col = list(table.primary_key.columns)[0]
    fetched = await execute(session, select(*columns).where(pk_col == result.last_insert_id))
    return fetched.first()


def build_upsert(
    dialect_name: str,
    table: Table,
    values: Any,
    conflict_cols: Iterable[str],
    update_cols: Optional[Iterable[str]] = None,
):
    """
    Builds an INSERT ... ON CONFLICT DO UPDATE for PostgreSQL or SQLite.

    `values` is a dict (one row) or a list of dicts. When update_cols is None
    every non-conflict column present in the values is replaced.
    """
    if dialect_name == "postgresql":
        stmt = postgresql.insert(table).values(values)
    elif dialect_name == "sqlite":
        stmt = sqlite.insert(table).values(values)
    else:
        raise DatabaseError(
            message="Upsert is not supported for this database",
            context={"dialect": dialect_name},
        )

    conflict_cols = list(conflict_cols)
    if update_cols is None:
        sample = values[0] if isinstance(values, list) else values
        update_cols = [c for c in sample if c not in conflict_cols]
    return stmt.on_conflict_do_update(
        index_elements=conflict_cols,
        set_={col: stmt.excluded[col] for col in update_cols},
    )


async def upsert(
    session: AsyncSession,
    table: Table,
    values: Dict[str, Any],
    conflict_cols: Iterable[str],
    update_cols: Optional[Iterable[str]] = None,
) -> QueryResult:
    """Insert-or-replace keyed by `conflict_cols`."""
    stmt = build_upsert(_dialect_name(session), table, values, conflict_cols, update_cols)
    return await execute(session, stmt)


# ══════════════════════════════════════════════════════════════════════════
# Engine + session factory
# ══════════════════════════════════════════════════════════════════════════

# ── SQLite Connection Setup ───────────────────────────────────────────────
# What: Enables foreign keys and hands transaction control to SQLAlchemy
# Why: the pysqlite driver defers BEGIN on its own, which breaks savepoints
#   (begin_nested) used by the pickup signature step
def _sqlite_on_connect(dbapi_connection, connection_record) -> None:
    # ON DELETE CASCADE / SET NULL are inert in SQLite without this pragma
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
    # Let SQLAlchemy emit BEGIN itself so SAVEPOINT works inside transactions
    dbapi_connection.isolation_level = None


def _sqlite_on_begin(conn) -> None:
    conn.exec_driver_sql("BEGIN")


def create_engine_for(url: str, *, pooled: bool = True) -> AsyncEngine:
    """Creates an async engine, applying pool settings to server databases only."""
    kwargs: Dict[str, Any] = {"echo": settings.log_level == "DEBUG"}
    if not url.startswith("sqlite") and pooled:
        kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=settings.db_pool_pre_ping,
            pool_recycle=3600,
        )
    engine = create_async_engine(url, **kwargs)
    if engine.dialect.name == "sqlite":
        event.listen(engine.sync_engine, "connect", _sqlite_on_connect)
        event.listen(engine.sync_engine, "begin", _sqlite_on_begin)
    return engine


class Database:
    """
    Owns the engine and session factory for one database URL.

    Behavior:
        - session(): commit on success, rollback and re-raise on error
        - ping(): SELECT 1 through execute(), so failures arrive as DatabaseError
        - dispose(): closes pooled connections on shutdown

    Statement timeout and slow-query threshold travel in the session
    factory's `info`, so execute() reads them from whichever Database
    created the session.

    Usage:
        db = Database(settings.database_url)
        async with db.session() as session:
            await execute(session, select(...))
        await db.dispose()
    """

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        statement_timeout: Optional[float] = None,
    ):
        self.url = url or settings.database_url
        self.engine = create_engine_for(self.url)
        # expire_on_commit=False: rows stay readable after the pickup commit
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            info={
                "statement_timeout": statement_timeout or settings.db_statement_timeout,
                "slow_query_ms": settings.db_slow_query_ms,
            },
        )

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Session scope: commit on success, rollback on any error."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def ping(self) -> None:
        """Runs SELECT 1; raises DatabaseError when the database is unreachable."""
        async with self.session_factory() as session:
            await execute(session, text("SELECT 1"), name="ping")

    async def dispose(self) -> None:
        await self.engine.dispose()


# ── Session Dependency ────────────────────────────────────────────────────
async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides one session per request.

    The session commits when the handler returns and rolls back if it
    raises; the exception is re-raised for the global handlers.
    """
    database: Database = request.app.state.database
    async with database.session() as session:
        yield session
