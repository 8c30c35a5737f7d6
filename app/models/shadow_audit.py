"""
Workshop Ledger - Shadow Audit Model

Anomaly records raised by the shadow audit monitor. Independent of the
regular audit log: an entry describes something that happened outside the
sanctioned write path.
"""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, JSON, String, Uuid, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class ShadowAuditType(str, enum.Enum):
    """Kinds of anomaly the monitor detects."""
    CUSTOMER_RELINK = "customer_relink"
    TOTAL_DRIFT = "total_drift"
    UNAUTHORIZED_WRITE = "unauthorized_write"
    SILENT_DELETION = "silent_deletion"


class ShadowSeverity(str, enum.Enum):
    """Severity assigned at detection time."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


def _values(enum_cls):
    return [member.value for member in enum_cls]


class ShadowAuditEntry(Base):
    """
    One detected anomaly.

    severity and details are fixed at detection; resolution only sets
    resolved_at / resolved_by.
    """

    __tablename__ = "shadow_audit_log"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    audit_type: Mapped[ShadowAuditType] = mapped_column(
        SQLEnum(ShadowAuditType, name="shadowaudittype", values_callable=_values),
        nullable=False,
        index=True,
    )
    severity: Mapped[ShadowSeverity] = mapped_column(
        SQLEnum(ShadowSeverity, name="shadowseverity", values_callable=_values),
        nullable=False,
        index=True,
    )

    table_name: Mapped[str] = mapped_column(String(50), nullable=False)
    record_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # Identifies the observation so one anomaly is raised only once
    fingerprint: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    detected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    resolved_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<ShadowAuditEntry(type={self.audit_type.value}, severity={self.severity.value})>"
