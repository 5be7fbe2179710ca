"""
Mailroom Backend: ORM Models
==============================

Importing this package registers every table with `Base.metadata`, which is
what Alembic autogenerate and the test fixtures create the schema from.
"""

from mailroom.models.mailbox import Mailbox
from mailroom.models.package import Package
from mailroom.models.pickup import PickupEvent, Signature
from mailroom.models.tenant import Tenant

__all__ = ["Mailbox", "Tenant", "Package", "PickupEvent", "Signature"]
