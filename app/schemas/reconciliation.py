"""
Workshop Ledger - Reconciliation Schemas

Baseline file entries and the per-run mismatch report.

A baseline file is a flat JSON array exported earlier by this system:

    [{"jobNumber": "JB2025-0030", "customer": {"id": "...", "name": "..."}}]
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class MismatchKind(str, Enum):
    MISSING = "MISSING"
    MISMATCH = "MISMATCH"
    EXTRA = "EXTRA"


class BaselineCustomer(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str = Field(..., min_length=1)
    name: Optional[str] = None
    phone: Optional[str] = None


class BaselineEntry(BaseModel):
    """One job to customer linkage in a baseline file."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    job_number: str = Field(..., alias="jobNumber", min_length=1)
    customer: BaselineCustomer


class ReconciliationMismatch(BaseModel):
    """Transient result row; never persisted."""
    model_config = ConfigDict(frozen=True)

    job_number: str
    kind: MismatchKind
    baseline_customer_id: Optional[str] = None
    baseline_customer_name: Optional[str] = None
    actual_customer_id: Optional[str] = None
    actual_customer_name: Optional[str] = None


class ReconciliationReport(BaseModel):
    baseline_count: int
    live_count: int
    matched: int
    missing: int
    mismatched: int
    extra: int
    mismatches: List[ReconciliationMismatch]
