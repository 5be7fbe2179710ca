"""
Mailroom Backend: Services Layer
==================================

What:  Business logic between the routes (HTTP) and the database.
How:   Services take the request's AsyncSession as their first argument and
       return response schemas. Routes stay thin: parse, call, return.

Service Inventory:
    - MailboxService, TenantService:  directory (stateless singletons)
    - PackageService:                 intake, lookups, status edits (singleton)
    - PickupService:                  pickup workflow, history, bulk status
    - SignatureService:               signature metadata and images
    - ReportService:                  statistics, audit trail, summaries

The last three depend on the PickupStore chosen at startup, so they are
built by initialize_services() and stored on `app.state`.
"""

import logging

from fastapi import FastAPI, Request

from mailroom.database import Database
from mailroom.services.pickup_service import PickupService
from mailroom.services.report_service import ReportService
from mailroom.services.signature_service import SignatureService
from mailroom.stores import PickupStore, detect_pickup_store

logger = logging.getLogger(__name__)


async def initialize_services(app: FastAPI, store: PickupStore = None) -> PickupStore:
    """
    Binds the store-dependent services to `app.state`.

    The store is detected from `app.state.database` unless one is passed in.
    """
    if store is None:
        database: Database = app.state.database
        store = await detect_pickup_store(database)
    app.state.pickup_store = store
    app.state.pickup_service = PickupService(store)
    app.state.signature_service = SignatureService(store)
    app.state.report_service = ReportService(store)
    logger.info("Services initialized with %s pickup store", store.variant)
    return store


# ── Dependencies ──────────────────────────────────────────────────────────

def get_pickup_service(request: Request) -> PickupService:
    return request.app.state.pickup_service


def get_signature_service(request: Request) -> SignatureService:
    return request.app.state.signature_service


def get_report_service(request: Request) -> ReportService:
    return request.app.state.report_service
