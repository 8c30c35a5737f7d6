"""
Workshop Ledger - Routers Package

FastAPI route handlers.

Routers:
- jobs: Job records, payments and soft delete
- customers: Customer records
- audit: Audit trail browsing, review and undo
- recovery: Point-in-time restore and rebuild
- shadow_audit: Out-of-band write detections
- reconciliation: Baseline linkage analysis
- preferences: Workshop preferences
"""

from app.routers import (
    jobs,
    customers,
    audit,
    recovery,
    shadow_audit,
    reconciliation,
    preferences,
)

__all__ = [
    "jobs",
    "customers",
    "audit",
    "recovery",
    "shadow_audit",
    "reconciliation",
    "preferences",
]
