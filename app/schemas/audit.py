"""
Workshop Ledger - Audit Schemas

Pydantic schemas for the audit log listing and the review workflow.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.audit import AuditOperation, ReviewStatus


class AuditEntryResponse(BaseModel):
    """One audit entry with its full snapshots."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    table_name: str
    record_id: str
    record_label: Optional[str] = None
    operation: AuditOperation
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    changed_fields: List[str] = []
    changed_by: Optional[str] = None
    source: str
    changed_at: datetime

    review_status: ReviewStatus
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_note: Optional[str] = None


class AuditEntryListResponse(BaseModel):
    entries: List[AuditEntryResponse]
    total: int


class ReviewRequest(BaseModel):
    """Optional note attached to an accept/reject decision."""
    note: Optional[str] = Field(None, max_length=1000)


class ReviewResultResponse(BaseModel):
    """Reviewed entry plus, for a rejection, the corrective entry it produced."""
    entry: AuditEntryResponse
    revert_entry_id: Optional[int] = None
    new_version: Optional[int] = None
