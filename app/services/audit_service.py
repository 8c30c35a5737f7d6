"""
Workshop Ledger - Audit Trail Service

Change capture for the versioned record store, plus the history queries and
CSV export used by the review screen.

Capture never commits: the entry is flushed inside the caller's transaction
so a mutation and the entry documenting it are committed (or rolled back)
together.

changed_fields lists every snapshot key whose value differs between before
and after, except the bookkeeping keys `version` and `updated_at`. Those move
on every write; the version is still recorded in both snapshots.
"""

import csv
import io
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit import AuditLog, AuditOperation, ReviewStatus


logger = logging.getLogger(__name__)

# Keys present in every snapshot that do not describe a user-visible change
BOOKKEEPING_FIELDS = frozenset({"version", "updated_at"})

AUDIT_CSV_COLUMNS = [
    "When",
    "Operation",
    "What Changed",
    "Old Value",
    "New Value",
    "Who",
    "Why",
    "Job #",
    "Status",
]


def json_value(value: Any) -> Any:
    """Convert a column value to the form stored in a snapshot."""
    if isinstance(value, Decimal):
        return str(value.quantize(Decimal("0.01")))
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, datetime):
        # Naive values come back from backends without tz support; they are UTC
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, list):
        return [json_value(v) for v in value]
    if isinstance(value, dict):
        return {k: json_value(v) for k, v in value.items()}
    return value


def compute_changed_fields(
    old_values: Optional[Dict[str, Any]],
    new_values: Optional[Dict[str, Any]],
) -> List[str]:
    """Sorted names of fields whose snapshot value differs."""
    old_values = old_values or {}
    new_values = new_values or {}
    keys = set(old_values) | set(new_values)
    return sorted(
        key for key in keys
        if key not in BOOKKEEPING_FIELDS and old_values.get(key) != new_values.get(key)
    )


class AuditService:
    """Service for capturing and querying the audit trail."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def capture(
        self,
        table_name: str,
        record_id: Any,
        operation: AuditOperation,
        old_values: Optional[Dict[str, Any]],
        new_values: Optional[Dict[str, Any]],
        changed_by: Optional[str],
        source: str,
        record_label: Optional[str] = None,
    ) -> AuditLog:
        """
        Append one audit entry inside the current transaction.

        Args:
            table_name: Target table (jobs, customers)
            record_id: Target record identifier
            operation: INSERT, UPDATE, DELETE, RECOVERY or REBUILD
            old_values: Full snapshot before the mutation (None for INSERT)
            new_values: Full snapshot after the mutation
            changed_by: Acting operator
            source: Write path tag (checked by the shadow audit monitor)
            record_label: Job number, for listing and search

        Returns:
            The flushed AuditLog row, with its sequence id assigned
        """
        entry = AuditLog(
            table_name=table_name,
            record_id=str(record_id),
            record_label=record_label,
            operation=operation,
            old_values=old_values,
            new_values=new_values,
            changed_fields=compute_changed_fields(old_values, new_values),
            changed_by=changed_by,
            source=source,
            changed_at=datetime.now(timezone.utc),
            review_status=ReviewStatus.UNREVIEWED,
        )

        self.db.add(entry)
        await self.db.flush()

        return entry

    async def get_entry(self, entry_id: int) -> Optional[AuditLog]:
        result = await self.db.execute(select(AuditLog).where(AuditLog.id == entry_id))
        return result.scalar_one_or_none()

    def _filtered_query(
        self,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        operation: Optional[AuditOperation] = None,
        job_number: Optional[str] = None,
        review_status: Optional[ReviewStatus] = ReviewStatus.UNREVIEWED,
        table_name: Optional[str] = None,
        record_id: Optional[str] = None,
    ):
        query = select(AuditLog)

        if date_from:
            query = query.where(AuditLog.changed_at >= date_from)

        if date_to:
            query = query.where(AuditLog.changed_at <= date_to)

        if operation:
            query = query.where(AuditLog.operation == operation)

        if job_number:
            query = query.where(AuditLog.record_label.ilike(f"%{job_number.strip()}%"))

        if review_status:
            query = query.where(AuditLog.review_status == review_status)

        if table_name:
            query = query.where(AuditLog.table_name == table_name)

        if record_id:
            query = query.where(AuditLog.record_id == str(record_id))

        return query

    async def list_entries(
        self,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        operation: Optional[AuditOperation] = None,
        job_number: Optional[str] = None,
        review_status: Optional[ReviewStatus] = ReviewStatus.UNREVIEWED,
        table_name: Optional[str] = None,
        record_id: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[List[AuditLog], int]:
        """
        List audit entries, newest first.

        The default view is unreviewed entries only; pass review_status=None
        for every state. Ordering is by sequence id, not wall clock.
        """
        query = self._filtered_query(
            date_from=date_from,
            date_to=date_to,
            operation=operation,
            job_number=job_number,
            review_status=review_status,
            table_name=table_name,
            record_id=record_id,
        )

        total_result = await self.db.execute(
            select(func.count()).select_from(query.subquery())
        )
        total = total_result.scalar() or 0

        result = await self.db.execute(
            query.order_by(AuditLog.id.desc()).offset(skip).limit(limit)
        )
        return list(result.scalars().all()), total

    async def get_record_history(self, table_name: str, record_id: Any) -> List[AuditLog]:
        """Every entry for one record, oldest first."""
        result = await self.db.execute(
            select(AuditLog)
            .where(AuditLog.table_name == table_name)
            .where(AuditLog.record_id == str(record_id))
            .order_by(AuditLog.id)
        )
        return list(result.scalars().all())

    async def export_csv(self, **filters) -> str:
        """Render the filtered listing as CSV."""
        entries, _ = await self.list_entries(limit=100000, **filters)
        return entries_to_csv(entries)


def _describe(values: Optional[Dict[str, Any]], fields: Iterable[str]) -> str:
    if not values:
        return ""
    return "; ".join(f"{name}: {_short(values.get(name))}" for name in fields)


def _short(value: Any) -> str:
    if isinstance(value, list):
        return f"[{len(value)} items]"
    return "" if value is None else str(value)


def entries_to_csv(entries: Iterable[AuditLog]) -> str:
    """One row per entry; old/new columns list only the changed fields."""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(AUDIT_CSV_COLUMNS)

    for entry in entries:
        fields = entry.changed_fields or []
        writer.writerow([
            entry.changed_at.isoformat() if entry.changed_at else "",
            entry.operation.value,
            ", ".join(fields),
            _describe(entry.old_values, fields),
            _describe(entry.new_values, fields),
            entry.changed_by or "",
            entry.source,
            entry.record_label or "",
            entry.review_status.value,
        ])

    return output.getvalue()
