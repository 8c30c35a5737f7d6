"""
Workshop Ledger - Services Package

Business logic services.
"""

from app.services.audit_service import AuditService
from app.services.record_store import VersionedRecordStore, UpdateResult
from app.services.review_service import ReviewService, ReviewOutcome
from app.services.restore_service import RestoreService, RestorePreview
from app.services.shadow_audit_service import ShadowAuditService
from app.services.reconciliation_service import ReconciliationService
from app.services.preference_service import PreferenceService
from app.services.recalculation import calculate_job_totals, JobTotals

__all__ = [
    "AuditService",
    "VersionedRecordStore",
    "UpdateResult",
    "ReviewService",
    "ReviewOutcome",
    "RestoreService",
    "RestorePreview",
    "ShadowAuditService",
    "ReconciliationService",
    "PreferenceService",
    "calculate_job_totals",
    "JobTotals",
]
