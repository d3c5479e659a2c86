"""Business-logic layer for meta alerts (MongoDB-backed).

Entry point is metaalert_service.MetaAlertService; the operations it composes live in:
- store.py (document reads/writes, backlink updates)
- membership.py, status.py, patch_guard.py, propagation.py (meta alert mutations)
- search.py (meta alert aware search and grouping)
- reconciler.py, locks.py (read-after-write polling, per-guid serialization)
"""

# Import side-effects are intentionally avoided here; modules are imported by routers/services as needed.
