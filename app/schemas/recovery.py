"""
Workshop Ledger - Recovery Schemas

Point-in-time restore (preview then commit) and manual rebuild.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.models.job import DiscountType


class RestorePreviewRequest(BaseModel):
    job_number: str = Field(..., min_length=1, max_length=20)
    timestamp: datetime


class RestorePreviewResponse(BaseModel):
    """Current state beside the candidate it would be restored to."""
    job_id: UUID
    job_number: str
    current_version: int
    audit_entry_id: int
    audit_entry_changed_at: datetime
    current: Dict[str, Any]
    restored_candidate: Dict[str, Any]
    differing_fields: List[str]


class RestoreCommitRequest(BaseModel):
    """
    Commit a previewed restore.

    Either the previewed `restored_values` or the `timestamp` used for the
    preview must be supplied. `expected_version` is the version shown in the
    preview; when omitted the record's current version is used.
    """
    model_config = ConfigDict(extra="forbid")

    job_id: UUID
    reason: str = Field(..., min_length=1, max_length=400)
    restored_values: Optional[Dict[str, Any]] = None
    timestamp: Optional[datetime] = None
    expected_version: Optional[int] = Field(None, ge=1)

    @model_validator(mode="after")
    def _needs_values_or_timestamp(self):
        if self.restored_values is None and self.timestamp is None:
            raise ValueError("restored_values or timestamp is required")
        if not self.reason.strip():
            raise ValueError("reason cannot be blank")
        return self


class RebuildLineInput(BaseModel):
    """Re-entered line; stored as a custom line item."""
    model_config = ConfigDict(extra="forbid")

    description: str = Field(..., min_length=1, max_length=500)
    quantity: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    unit_price: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    category: Optional[str] = Field(None, max_length=100)


class RebuildRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    job_number: str = Field(..., min_length=1, max_length=20)
    reason: str = Field(..., min_length=1, max_length=400)
    line_items: List[RebuildLineInput] = Field(..., min_length=1)

    # Optional replacement of the other totals-affecting fields
    labour_hours: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    labour_rate: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    service_deposit: Optional[Decimal] = Field(None, ge=0, decimal_places=2)

    expected_version: Optional[int] = Field(None, ge=1)

    @model_validator(mode="after")
    def _reason_not_blank(self):
        if not self.reason.strip():
            raise ValueError("reason cannot be blank")
        return self


class RecoveryResultResponse(BaseModel):
    job_id: UUID
    job_number: str
    new_version: int
    audit_entry_id: int
