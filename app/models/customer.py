"""
Workshop Ledger - Customer Model

Customer model for the people and companies that book jobs.
"""

from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel, VersionedMixin

if TYPE_CHECKING:
    from app.models.job import Job


class Customer(BaseModel, VersionedMixin):
    """
    Customer model for tracking workshop customers.

    Versioned like jobs: every accepted change goes through the record
    store and is audited against table `customers`.
    """

    __tablename__ = "customers"

    # Basic Info
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    company_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_type: Mapped[str] = mapped_column(
        String(20),
        default="domestic",
        nullable=False,
        comment="domestic or commercial",
    )

    # Contact
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True, index=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Account customers are billed on 30-day terms
    is_account: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    # Notes
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    jobs: Mapped[List["Job"]] = relationship(
        "Job",
        back_populates="customer",
    )
