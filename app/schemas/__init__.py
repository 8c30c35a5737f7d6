"""
Workshop Ledger - Schemas Package

Pydantic schemas for request/response validation.
"""

from app.schemas.job import (
    LineItemInput,
    JobCreateRequest,
    JobPatch,
    JobUpdateRequest,
    PaymentRequest,
    LineItemResponse,
    PaymentResponse,
    JobResponse,
    UpdateResultResponse,
)
from app.schemas.customer import (
    CustomerCreateRequest,
    CustomerPatch,
    CustomerUpdateRequest,
    CustomerResponse,
    CustomerUpdateResultResponse,
)
from app.schemas.audit import (
    AuditEntryResponse,
    AuditEntryListResponse,
    ReviewRequest,
    ReviewResultResponse,
)
from app.schemas.recovery import (
    RestorePreviewRequest,
    RestorePreviewResponse,
    RestoreCommitRequest,
    RebuildLineInput,
    RebuildRequest,
    RecoveryResultResponse,
)
from app.schemas.shadow_audit import (
    ShadowAuditEntryResponse,
    ShadowAuditSummary,
    ShadowAuditListResponse,
    ShadowScanResponse,
)
from app.schemas.reconciliation import (
    MismatchKind,
    BaselineCustomer,
    BaselineEntry,
    ReconciliationMismatch,
    ReconciliationReport,
)
from app.schemas.preferences import (
    PreferenceCategory,
    LabelPrintPreferences,
    QuickDescriptionPreferences,
    TransportPreferences,
    PREFERENCE_MODELS,
)

__all__ = [
    # Jobs
    "LineItemInput",
    "JobCreateRequest",
    "JobPatch",
    "JobUpdateRequest",
    "PaymentRequest",
    "LineItemResponse",
    "PaymentResponse",
    "JobResponse",
    "UpdateResultResponse",
    # Customers
    "CustomerCreateRequest",
    "CustomerPatch",
    "CustomerUpdateRequest",
    "CustomerResponse",
    "CustomerUpdateResultResponse",
    # Audit
    "AuditEntryResponse",
    "AuditEntryListResponse",
    "ReviewRequest",
    "ReviewResultResponse",
    # Recovery
    "RestorePreviewRequest",
    "RestorePreviewResponse",
    "RestoreCommitRequest",
    "RebuildLineInput",
    "RebuildRequest",
    "RecoveryResultResponse",
    # Shadow audit
    "ShadowAuditEntryResponse",
    "ShadowAuditSummary",
    "ShadowAuditListResponse",
    "ShadowScanResponse",
    # Reconciliation
    "MismatchKind",
    "BaselineCustomer",
    "BaselineEntry",
    "ReconciliationMismatch",
    "ReconciliationReport",
    # Preferences
    "PreferenceCategory",
    "LabelPrintPreferences",
    "QuickDescriptionPreferences",
    "TransportPreferences",
    "PREFERENCE_MODELS",
]
