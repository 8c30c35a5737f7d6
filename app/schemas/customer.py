"""
Workshop Ledger - Customer Schemas

Pydantic schemas for customer management.
"""

from datetime import datetime
from typing import Any, Dict, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator


CustomerType = Literal["domestic", "commercial"]


# ===========================================
# REQUEST SCHEMAS
# ===========================================

class CustomerCreateRequest(BaseModel):
    """Schema for creating a customer."""
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=255)
    company_name: Optional[str] = Field(None, max_length=255)
    customer_type: CustomerType = "domestic"

    # Contact Information
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=30)
    address: Optional[str] = Field(None, max_length=500)

    # Account customers are invoiced on terms
    is_account: bool = False

    notes: Optional[str] = None


class CustomerPatch(BaseModel):
    """Partial update of a customer. Only explicitly set fields are applied."""
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    company_name: Optional[str] = Field(None, max_length=255)
    customer_type: Optional[CustomerType] = None

    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=30)
    address: Optional[str] = Field(None, max_length=500)

    is_account: Optional[bool] = None

    notes: Optional[str] = None

    @model_validator(mode="after")
    def _no_null_for_required(self):
        for name in ("name", "customer_type", "is_account"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def to_changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class CustomerUpdateRequest(BaseModel):
    """Versioned customer update."""
    expected_version: int = Field(..., ge=1)
    patch: CustomerPatch


# ===========================================
# RESPONSE SCHEMAS
# ===========================================

class CustomerResponse(BaseModel):
    """Schema for customer response."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    version: int
    name: str
    company_name: Optional[str] = None
    customer_type: str

    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None

    is_account: bool
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class CustomerUpdateResultResponse(BaseModel):
    updated: bool
    new_version: int
    audit_entry_id: int
    customer: Optional[CustomerResponse] = None
