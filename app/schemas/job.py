"""
Workshop Ledger - Job Schemas

Pydantic schemas for job creation, patches, payments and responses.

Patches are an explicit set of allowed fields: unknown keys, `version` and
derived totals are rejected before the record store is touched.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.models.job import DiscountType, JobStatus


# Fields a patch may set to null without breaking a column constraint
NULLABLE_JOB_FIELDS = {
    "machine_brand",
    "machine_model",
    "machine_serial",
    "notes",
    "service_performed",
    "recommendations",
    "additional_notes",
}


# ===========================================
# REQUEST SCHEMAS
# ===========================================

class LineItemInput(BaseModel):
    """A part or custom charge as entered by the operator. total_price is derived."""
    model_config = ConfigDict(extra="forbid")

    part_id: Optional[str] = Field(None, max_length=64, description="Catalogue part reference")
    description: str = Field(..., min_length=1, max_length=500)
    category: Optional[str] = Field(None, max_length=100)
    is_custom: bool = False
    quantity: Decimal = Field(Decimal("1"), ge=0, max_digits=10, decimal_places=2)
    unit_price: Decimal = Field(Decimal("0"), ge=0, max_digits=12, decimal_places=2)


class _DiscountBounds(BaseModel):
    @model_validator(mode="after")
    def _percent_within_bounds(self):
        if self.discount_type == DiscountType.PERCENT and self.discount_value is not None:
            if self.discount_value > 100:
                raise ValueError("percent discount must be between 0 and 100")
        return self


class JobCreateRequest(_DiscountBounds):
    """Schema for booking in a new job."""
    model_config = ConfigDict(extra="forbid")

    customer_id: UUID

    # Machine
    machine_category: str = Field(..., min_length=1, max_length=100)
    machine_brand: Optional[str] = Field(None, max_length=100)
    machine_model: Optional[str] = Field(None, max_length=100)
    machine_serial: Optional[str] = Field(None, max_length=100)

    problem_description: str = ""
    notes: Optional[str] = None

    line_items: List[LineItemInput] = Field(default_factory=list)

    labour_hours: Decimal = Field(Decimal("0"), ge=0, max_digits=8, decimal_places=2)
    labour_rate: Decimal = Field(Decimal("0"), ge=0, max_digits=12, decimal_places=2)

    transport_total_charge: Decimal = Field(Decimal("0"), ge=0, decimal_places=2)
    sharpen_total_charge: Decimal = Field(Decimal("0"), ge=0, decimal_places=2)
    small_repair_total: Decimal = Field(Decimal("0"), ge=0, decimal_places=2)

    discount_type: DiscountType = DiscountType.NONE
    discount_value: Decimal = Field(Decimal("0"), ge=0, decimal_places=2)
    service_deposit: Decimal = Field(Decimal("0"), ge=0, decimal_places=2)

    status: JobStatus = JobStatus.PENDING


class JobPatch(_DiscountBounds):
    """
    Partial update of a job.

    Only fields explicitly set are applied (see `to_changes`). A patch that
    sets `line_items` replaces the whole list.
    """
    model_config = ConfigDict(extra="forbid")

    customer_id: Optional[UUID] = None

    machine_category: Optional[str] = Field(None, min_length=1, max_length=100)
    machine_brand: Optional[str] = Field(None, max_length=100)
    machine_model: Optional[str] = Field(None, max_length=100)
    machine_serial: Optional[str] = Field(None, max_length=100)

    problem_description: Optional[str] = None
    notes: Optional[str] = None
    service_performed: Optional[str] = None
    recommendations: Optional[str] = None
    additional_notes: Optional[str] = None

    line_items: Optional[List[LineItemInput]] = None

    labour_hours: Optional[Decimal] = Field(None, ge=0, max_digits=8, decimal_places=2)
    labour_rate: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)

    transport_total_charge: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    sharpen_total_charge: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    small_repair_total: Optional[Decimal] = Field(None, ge=0, decimal_places=2)

    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    service_deposit: Optional[Decimal] = Field(None, ge=0, decimal_places=2)

    status: Optional[JobStatus] = None

    @model_validator(mode="after")
    def _no_null_for_required(self):
        for name in self.model_fields_set:
            if getattr(self, name) is None and name not in NULLABLE_JOB_FIELDS:
                raise ValueError(f"{name} cannot be null")
        return self

    def to_changes(self) -> Dict[str, Any]:
        """Explicitly set fields as a plain dict; line items stay as dicts."""
        return self.model_dump(exclude_unset=True)


class JobUpdateRequest(BaseModel):
    """Versioned update: the caller presents the version it last read."""
    expected_version: int = Field(..., ge=1)
    patch: JobPatch


class PaymentRequest(BaseModel):
    """Record a payment against a job's balance."""
    model_config = ConfigDict(extra="forbid")

    expected_version: int = Field(..., ge=1)
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    method: str = Field("cash", min_length=1, max_length=30)
    reference: Optional[str] = Field(None, max_length=100)


# ===========================================
# RESPONSE SCHEMAS
# ===========================================

class LineItemResponse(BaseModel):
    """Line item as stored."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    position: int
    part_id: Optional[str] = None
    description: str
    category: Optional[str] = None
    is_custom: bool
    quantity: Decimal
    unit_price: Decimal
    total_price: Decimal


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    amount: Decimal
    method: str
    reference: Optional[str] = None
    paid_at: datetime
    recorded_by: Optional[str] = None


class JobResponse(BaseModel):
    """Schema for job response."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    job_number: str
    version: int
    customer_id: UUID

    machine_category: str
    machine_brand: Optional[str] = None
    machine_model: Optional[str] = None
    machine_serial: Optional[str] = None

    problem_description: str
    notes: Optional[str] = None
    service_performed: Optional[str] = None
    recommendations: Optional[str] = None
    additional_notes: Optional[str] = None

    line_items: List[LineItemResponse] = []
    payments: List[PaymentResponse] = []

    labour_hours: Decimal
    labour_rate: Decimal
    transport_total_charge: Decimal
    sharpen_total_charge: Decimal
    small_repair_total: Decimal
    discount_type: DiscountType
    discount_value: Decimal
    service_deposit: Decimal

    # Derived
    parts_subtotal: Decimal
    labour_total: Decimal
    subtotal: Decimal
    discount_amount: Decimal
    gst: Decimal
    grand_total: Decimal
    amount_paid: Decimal
    balance_due: Decimal

    status: JobStatus
    completed_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class UpdateResultResponse(BaseModel):
    """Outcome of an accepted versioned mutation."""
    updated: bool
    new_version: int
    audit_entry_id: int
    job: Optional[JobResponse] = None
