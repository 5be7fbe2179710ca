"""
Mailroom Backend: Pydantic Request/Response Schemas
=====================================================

One module per resource. Schemas are separate from the SQLAlchemy models:
the API exposes derived fields (tenant names, counts, flags) the tables
don't store, and validation rules differ from database constraints.
"""
