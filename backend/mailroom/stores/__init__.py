"""
Mailroom Backend: Pickup Stores
=================================

What:  Chooses the PickupStore implementation that matches the live schema.
How:   detect_pickup_store() runs once at startup. It attempts the reads the
       event store depends on; if the adapter raises SchemaCompatibilityError
       it falls back to the legacy store. Connection failures are retried with
       exponential backoff (tenacity) because the database container may
       still be starting.

Never decided per request: a schema does not change while the process runs.
"""

import logging
from typing import Optional

from sqlalchemy import select
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from mailroom.config import settings
from mailroom.database import Database, execute
from mailroom.exceptions import DatabaseError, SchemaCompatibilityError
from mailroom.models import Package, PickupEvent, Signature
from mailroom.stores.base import (
    AuditWindow,
    PickupBatch,
    PickupQuery,
    PickupRecord,
    PickupStore,
)
from mailroom.stores.event_store import EventPickupStore
from mailroom.stores.legacy_store import LEGACY_METADATA, LegacyPickupStore

logger = logging.getLogger(__name__)

__all__ = [
    "AuditWindow",
    "EventPickupStore",
    "LEGACY_METADATA",
    "LegacyPickupStore",
    "PickupBatch",
    "PickupQuery",
    "PickupRecord",
    "PickupStore",
    "detect_pickup_store",
]


def _is_connection_failure(exc: BaseException) -> bool:
    return isinstance(exc, DatabaseError) and not isinstance(exc, SchemaCompatibilityError)


async def _probe_event_schema(database: Database) -> None:
    """Raises SchemaCompatibilityError if any event-schema table or column is absent."""
    probes = (
        ("probe:pickup_events", select(PickupEvent.__table__.c.id).limit(1)),
        ("probe:signatures.pickup_event_id", select(Signature.__table__.c.pickup_event_id).limit(1)),
        ("probe:packages.pickup_event_id", select(Package.__table__.c.pickup_event_id).limit(1)),
    )
    # A failed statement aborts a PostgreSQL transaction, so each probe gets its own session
    for name, statement in probes:
        async with database.session_factory() as session:
            await execute(session, statement, name=name)


async def detect_pickup_store(database: Database, attempts: Optional[int] = None) -> PickupStore:
    """
    Probe the connected database and return the matching PickupStore.

    Args:
        database: The application's Database
        attempts: Connection attempts before giving up (DB_CONNECT_ATTEMPTS)

    Raises:
        DatabaseError: the database stayed unreachable for every attempt
    """

    @retry(
        retry=retry_if_exception(_is_connection_failure),
        stop=stop_after_attempt(attempts or settings.db_connect_attempts),
        wait=wait_exponential(multiplier=0.5, max=8),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _detect() -> PickupStore:
        try:
            await _probe_event_schema(database)
        except SchemaCompatibilityError as e:
            logger.warning(
                "Pickup event schema not found (%s); using legacy pickup store",
                e.context.get("statement"),
            )
            return LegacyPickupStore()
        return EventPickupStore()

    store = await _detect()
    logger.info("Pickup store selected: %s", store.variant)
    return store
