"""
Workshop Ledger - Audit Log Model

Append-only audit log for every accepted mutation of a versioned record.

- Full before/after snapshots (old_values / new_values) so a prior state can
  be replayed without walking forward through intervening entries
- changed_fields derived once at write time
- Sequence id (`id`) is the authoritative ordering; changed_at is for display
- Only the review columns may change after insert
"""

import enum
from datetime import datetime
from typing import List, Optional

from sqlalchemy import BigInteger, DateTime, Integer, JSON, String, Text, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class AuditOperation(str, enum.Enum):
    """Audit operation kinds."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    # Operator-initiated corrective actions
    RECOVERY = "RECOVERY"
    REBUILD = "REBUILD"


class ReviewStatus(str, enum.Enum):
    """Review state of an audit entry."""
    UNREVIEWED = "unreviewed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class AuditLog(Base):
    """
    Immutable audit entry documenting one mutation.

    This table should have no DELETE permission and UPDATE only on the
    review columns.
    """

    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )

    # Target
    table_name: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    record_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    record_label: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        index=True,
        comment="Human readable key of the target (job number)",
    )

    operation: Mapped[AuditOperation] = mapped_column(
        SQLEnum(AuditOperation, name="auditoperation"),
        nullable=False,
        index=True,
    )

    # ===========================================
    # BEFORE/AFTER SNAPSHOTS
    # ===========================================

    old_values: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
        comment="Full record state before the mutation (null for INSERT)",
    )
    new_values: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
        comment="Full record state after the mutation",
    )
    changed_fields: Mapped[List[str]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )

    # Provenance
    changed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    source: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        comment="Write path tag, e.g. jobs_api or manual_restore: <reason>",
    )
    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    # ===========================================
    # REVIEW STATE (the only mutable columns)
    # ===========================================

    review_status: Mapped[ReviewStatus] = mapped_column(
        SQLEnum(ReviewStatus, name="reviewstatus", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=ReviewStatus.UNREVIEWED,
        index=True,
    )
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    review_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, operation={self.operation.value}, table={self.table_name})>"
