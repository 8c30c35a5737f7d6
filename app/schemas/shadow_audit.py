"""
Workshop Ledger - Shadow Audit Schemas
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from app.models.shadow_audit import ShadowAuditType, ShadowSeverity


class ShadowAuditEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    audit_type: ShadowAuditType
    severity: ShadowSeverity
    table_name: str
    record_id: str
    details: Dict[str, Any]
    detected_at: datetime
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None


class ShadowAuditSummary(BaseModel):
    """Counts shown at the top of the monitor."""
    unresolved: int
    critical: int
    warning: int


class ShadowAuditListResponse(BaseModel):
    entries: List[ShadowAuditEntryResponse]
    summary: ShadowAuditSummary


class ShadowScanResponse(BaseModel):
    detected: int
    entries: List[ShadowAuditEntryResponse]
