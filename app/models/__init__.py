"""
Workshop Ledger - SQLAlchemy Models Package

This package contains all database models for the application.
"""

from app.models.base import BaseModel, TimestampMixin, VersionedMixin
from app.models.customer import Customer
from app.models.job import (
    Job,
    JobLineItem,
    JobPayment,
    JobNumberSequence,
    JobStatus,
    DiscountType,
)
from app.models.audit import AuditLog, AuditOperation, ReviewStatus
from app.models.shadow_audit import ShadowAuditEntry, ShadowAuditType, ShadowSeverity
from app.models.preferences import PreferenceRecord

__all__ = [
    "BaseModel",
    "TimestampMixin",
    "VersionedMixin",
    "Customer",
    "Job",
    "JobLineItem",
    "JobPayment",
    "JobNumberSequence",
    "JobStatus",
    "DiscountType",
    "AuditLog",
    "AuditOperation",
    "ReviewStatus",
    "ShadowAuditEntry",
    "ShadowAuditType",
    "ShadowSeverity",
    "PreferenceRecord",
]
