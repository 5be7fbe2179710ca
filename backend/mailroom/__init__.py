"""
Mailroom Backend
================

REST API for a package room: mailbox and tenant directory, package intake,
pickup recording with signature capture, and reporting.

Architecture:
    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │         Services (Business Logic)   │  ← Directory, intake, pickups, reports
    ├─────────────────────────────────────┤
    │   Pickup Stores (event / legacy)    │  ← Chosen once at startup
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy tables + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async engine, timeouts, errors
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
