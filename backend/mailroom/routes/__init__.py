"""
Mailroom Backend: API Routes Package
======================================

Route Inventory:
    - health.py:      GET /health, GET /api/health
    - mailboxes.py:   /api/mailboxes        directory: mailboxes
    - tenants.py:     /api/tenants          directory: tenants, default tenant
    - packages.py:    /api/packages         intake, lookups, status edits
    - pickups.py:     /api/pickups          pickup workflow, history, bulk status
    - signatures.py:  /api/signatures       metadata, images, deletion
    - reports.py:     /api/reports          statistics, pickups, audit, summaries

Routes are thin: they parse the request, call one service method and return
its schema. Errors propagate as exceptions to the handlers in main.py.
"""
