"""
Workshop Ledger - Job Models

Job records (the versioned business entity), their line items and payments,
and the per-year job number counter.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    Enum as SQLEnum,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.base import BaseModel, VersionedMixin

if TYPE_CHECKING:
    from app.models.customer import Customer


class JobStatus(str, Enum):
    """Job status workflow."""
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    AWAITING_PARTS = "awaiting_parts"
    AWAITING_QUOTE = "awaiting_quote"
    COMPLETED = "completed"
    DELIVERED = "delivered"
    WRITE_OFF = "write_off"


class DiscountType(str, Enum):
    """How discount_value is applied to the subtotal."""
    NONE = "none"
    PERCENT = "percent"
    FIXED = "fixed"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


def _money_column(**kwargs):
    return mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        **kwargs,
    )


class Job(BaseModel, VersionedMixin):
    """
    Workshop job record.

    Derived money fields (parts_subtotal .. balance_due) are written only by
    the record store from the recalculation engine, never from caller input.
    """

    __tablename__ = "jobs"

    job_number: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        unique=True,
        index=True,
        comment="JB<year>-<4-digit sequence>",
    )

    # Customer
    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("customers.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # Machine details
    machine_category: Mapped[str] = mapped_column(String(100), nullable=False)
    machine_brand: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    machine_model: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    machine_serial: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Free text
    problem_description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    service_performed: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    recommendations: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    additional_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Labour
    labour_hours: Mapped[Decimal] = mapped_column(
        Numeric(precision=8, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )
    labour_rate: Mapped[Decimal] = _money_column()

    # Ancillary charges
    transport_total_charge: Mapped[Decimal] = _money_column()
    sharpen_total_charge: Mapped[Decimal] = _money_column()
    small_repair_total: Mapped[Decimal] = _money_column()

    # Discount and deposit
    discount_type: Mapped[DiscountType] = mapped_column(
        SQLEnum(DiscountType, name="discounttype", values_callable=_enum_values),
        default=DiscountType.NONE,
        nullable=False,
    )
    discount_value: Mapped[Decimal] = _money_column()
    service_deposit: Mapped[Decimal] = _money_column()

    # Derived totals
    parts_subtotal: Mapped[Decimal] = _money_column()
    labour_total: Mapped[Decimal] = _money_column()
    subtotal: Mapped[Decimal] = _money_column()
    discount_amount: Mapped[Decimal] = _money_column()
    gst: Mapped[Decimal] = _money_column()
    grand_total: Mapped[Decimal] = _money_column()
    amount_paid: Mapped[Decimal] = _money_column()
    balance_due: Mapped[Decimal] = _money_column()

    # Status
    status: Mapped[JobStatus] = mapped_column(
        SQLEnum(JobStatus, name="jobstatus", values_callable=_enum_values),
        default=JobStatus.PENDING,
        nullable=False,
        index=True,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    delivered_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Relationships
    customer: Mapped["Customer"] = relationship(
        "Customer",
        back_populates="jobs",
    )
    line_items: Mapped[List["JobLineItem"]] = relationship(
        "JobLineItem",
        back_populates="job",
        order_by="JobLineItem.position",
        cascade="all, delete-orphan",
    )
    payments: Mapped[List["JobPayment"]] = relationship(
        "JobPayment",
        back_populates="job",
        order_by="JobPayment.paid_at",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Job(job_number={self.job_number}, version={self.version})>"


class JobLineItem(BaseModel):
    """
    A part or custom charge on a job.

    total_price is always quantity x unit_price, recomputed on every save.
    """

    __tablename__ = "job_line_items"

    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Catalogue reference; null for free-text entries
    part_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    is_custom: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    quantity: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("1.00"),
    )
    unit_price: Mapped[Decimal] = _money_column()
    total_price: Mapped[Decimal] = _money_column()

    job: Mapped["Job"] = relationship("Job", back_populates="line_items")


class JobPayment(BaseModel):
    """Payment applied against a job's balance."""

    __tablename__ = "job_payments"

    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    amount: Mapped[Decimal] = _money_column()
    method: Mapped[str] = mapped_column(String(30), nullable=False, default="cash")
    reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    paid_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    recorded_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    # Audit entry that recorded this payment
    audit_entry_id: Mapped[Optional[int]] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        nullable=True,
        index=True,
    )

    job: Mapped["Job"] = relationship("Job", back_populates="payments")


class JobNumberSequence(Base):
    """Last issued job number sequence per calendar year."""

    __tablename__ = "job_number_sequences"

    year: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
