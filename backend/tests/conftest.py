"""
Mailroom Backend: Test Configuration (conftest.py)
====================================================

What:  Shared pytest fixtures for the entire test suite.
Why:   The services are thin layers over SQL, so tests run them against a
       real database: a throwaway SQLite file per test.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.
Who:   Used by all test files in the tests/ directory.

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── sqlite_url: Path to an empty SQLite file under tmp_path
    ├── database: Database with the current (pickup event) schema
    ├── legacy_database: Database with the pre-event schema
    ├── seed / legacy_seed: Two mailboxes, three tenants, five packages
    ├── db_session: One AsyncSession on the seeded database
    ├── signature_data_uri: A 1x1 PNG as a base64 data URI
    └── test_client: HTTPX AsyncClient for API endpoint testing

Seed layout:
    mailbox "101" (id 1), default tenant Alice
        Alice Smith (1):  #1 TRK-1001 received
                          #2 TRK-1002 ready_for_pickup, high value
                          #5 TRK-1004 returned_to_sender
        Bob Jones (2):    #3 TRK-1003 received
    mailbox "102" (id 2)
        Carol White (3):  #4 TRK-2001 received
"""

import os
from dataclasses import dataclass
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport


# ══════════════════════════════════════════════════════════════════════════
# Environment Setup
# ══════════════════════════════════════════════════════════════════════════

# Override settings for testing BEFORE any mailroom imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test_mailroom.db"
os.environ["LOG_LEVEL"] = "WARNING"  # Reduce noise during tests
os.environ["DB_CONNECT_ATTEMPTS"] = "1"
os.environ["RATE_LIMIT_REQUESTS"] = "100000"

from mailroom.database import Base, Database  # noqa: E402
from mailroom.models import Mailbox, Package, Tenant  # noqa: E402
from mailroom.stores import LEGACY_METADATA  # noqa: E402
from mailroom.stores.legacy_store import packages as legacy_packages  # noqa: E402

PNG_1X1 = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)


@dataclass(frozen=True)
class Seed:
    """Ids of the seeded rows."""

    mailbox_a: int = 1
    mailbox_b: int = 2
    alice: int = 1
    bob: int = 2
    carol: int = 3
    standard: int = 1
    high_value: int = 2
    bobs: int = 3
    other_mailbox: int = 4
    returned: int = 5


async def _seed(database: Database, packages_table) -> Seed:
    seed = Seed()
    async with database.session() as session:
        await session.execute(
            Mailbox.__table__.insert(),
            [
                {"id": seed.mailbox_a, "mailbox_number": "101", "active": True},
                {"id": seed.mailbox_b, "mailbox_number": "102", "active": True},
            ],
        )
        await session.execute(
            Tenant.__table__.insert(),
            [
                {"id": seed.alice, "mailbox_id": seed.mailbox_a, "name": "Alice Smith",
                 "phone": "555-0101", "active": True},
                {"id": seed.bob, "mailbox_id": seed.mailbox_a, "name": "Bob Jones",
                 "phone": None, "active": True},
                {"id": seed.carol, "mailbox_id": seed.mailbox_b, "name": "Carol White",
                 "phone": None, "active": True},
            ],
        )
        await session.execute(
            Mailbox.__table__.update()
            .where(Mailbox.__table__.c.id == seed.mailbox_a)
            .values(default_tenant_id=seed.alice)
        )
        await session.execute(
            packages_table.insert(),
            [
                {"id": seed.standard, "mailbox_id": seed.mailbox_a, "tenant_id": seed.alice,
                 "tracking_number": "TRK-1001", "status": "received", "high_value": False,
                 "carrier": "UPS", "size_category": "small"},
                {"id": seed.high_value, "mailbox_id": seed.mailbox_a, "tenant_id": seed.alice,
                 "tracking_number": "TRK-1002", "status": "ready_for_pickup", "high_value": True,
                 "carrier": "FedEx", "size_category": "medium"},
                {"id": seed.bobs, "mailbox_id": seed.mailbox_a, "tenant_id": seed.bob,
                 "tracking_number": "TRK-1003", "status": "received", "high_value": False,
                 "carrier": "UPS", "size_category": None},
                {"id": seed.other_mailbox, "mailbox_id": seed.mailbox_b, "tenant_id": seed.carol,
                 "tracking_number": "TRK-2001", "status": "received", "high_value": False,
                 "carrier": None, "size_category": None},
                {"id": seed.returned, "mailbox_id": seed.mailbox_a, "tenant_id": seed.alice,
                 "tracking_number": "TRK-1004", "status": "returned_to_sender", "high_value": False,
                 "carrier": "USPS", "size_category": None},
            ],
        )
    return seed


# ══════════════════════════════════════════════════════════════════════════
# Function-Scoped Fixtures (created fresh for each test)
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def sqlite_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'mailroom.db'}"


@pytest_asyncio.fixture
async def database(sqlite_url) -> AsyncGenerator[Database, None]:
    """
    Provides a Database with the full current schema.

    What:    An empty SQLite file with every table from the ORM models.
    Why:     Guarded UPDATEs, savepoints and unions are what we test;
             a mock session cannot tell whether they are right.
    """
    db = Database(sqlite_url)
    async with db.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield db
    await db.dispose()


@pytest_asyncio.fixture
async def legacy_database(sqlite_url) -> AsyncGenerator[Database, None]:
    """A Database created before pickup events existed (no pickup_events table)."""
    db = Database(sqlite_url)
    async with db.engine.begin() as conn:
        await conn.run_sync(LEGACY_METADATA.create_all)
    yield db
    await db.dispose()


@pytest_asyncio.fixture
async def seed(database) -> Seed:
    return await _seed(database, Package.__table__)


@pytest_asyncio.fixture
async def legacy_seed(legacy_database) -> Seed:
    return await _seed(legacy_database, legacy_packages)


@pytest_asyncio.fixture
async def db_session(database, seed):
    """
    Provides an AsyncSession on the seeded database.

    Usage:
        async def test_get_mailbox(db_session, seed):
            mailbox = await mailbox_service.get_mailbox(db_session, seed.mailbox_a)
    """
    async with database.session_factory() as session:
        yield session


@pytest.fixture
def signature_data_uri() -> str:
    return f"data:image/png;base64,{PNG_1X1}"


@pytest_asyncio.fixture
async def test_client(database, seed) -> AsyncGenerator[AsyncClient, None]:
    """
    Provides an HTTPX AsyncClient for testing API endpoints.

    What:    Sends requests to the FastAPI app without starting a server.
    How:     ASGITransport does not run the lifespan, so the test database
             and the services are wired onto app.state here instead.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
            assert response.status_code == 200
    """
    from mailroom.main import app
    from mailroom.services import initialize_services

    app.state.database = database
    await initialize_services(app)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
