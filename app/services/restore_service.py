"""
Workshop Ledger - Point-in-Time Restore and Rebuild

Restore is two steps. `preview` shows the live job beside the state it would
return to; `commit` writes that state back as an ordinary versioned write
tagged RECOVERY. Rebuild re-enters lost line items when no usable history
exists and is tagged REBUILD.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit import AuditLog, AuditOperation
from app.services.audit_service import compute_changed_fields
from app.services.record_store import JOBS_TABLE, UpdateResult, VersionedRecordStore
from app.utils.error_handling import RestoreUnavailableException, ValidationException


logger = logging.getLogger(__name__)


def restore_source(reason: str) -> str:
    return f"manual_restore: {reason}"


def rebuild_source(reason: str) -> str:
    return f"manual_rebuild: {reason}"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _require_reason(reason: Optional[str]) -> str:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationException("A reason is required", field="reason")
    return reason


@dataclass
class RestorePreview:
    job_id: uuid.UUID
    job_number: str
    current_version: int
    audit_entry_id: int
    audit_entry_changed_at: datetime
    current: Dict[str, Any]
    restored_candidate: Dict[str, Any]
    differing_fields: List[str]


class RestoreService:
    """Point-in-time restore and manual rebuild of jobs."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.store = VersionedRecordStore(db)

    async def _entry_at(self, job_id: uuid.UUID, timestamp: datetime) -> Optional[AuditLog]:
        """Most recent entry at or before `timestamp`, by sequence id."""
        result = await self.db.execute(
            select(AuditLog)
            .where(AuditLog.table_name == JOBS_TABLE)
            .where(AuditLog.record_id == str(job_id))
            .where(AuditLog.changed_at <= _as_utc(timestamp))
            .order_by(AuditLog.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def preview(self, job_number: str, timestamp: datetime) -> RestorePreview:
        """
        Show what restoring `job_number` to `timestamp` would produce.

        The candidate is the old_values of the latest entry at or before the
        timestamp. Nothing is written.

        Raises:
            RecordNotFoundException: no live job with that number
            RestoreUnavailableException: no history at or before the timestamp
        """
        job = await self.store.get_job_by_number(job_number)
        entry = await self._entry_at(job.id, timestamp)

        if entry is None:
            raise RestoreUnavailableException(job.job_number, timestamp)
        if entry.old_values is None:
            raise RestoreUnavailableException(
                job.job_number,
                timestamp,
                reason=f"{job.job_number} did not exist before {timestamp.isoformat()}",
            )

        current = await self.store.job_snapshot(job)
        return RestorePreview(
            job_id=job.id,
            job_number=job.job_number,
            current_version=job.version,
            audit_entry_id=entry.id,
            audit_entry_changed_at=entry.changed_at,
            current=current,
            restored_candidate=entry.old_values,
            differing_fields=compute_changed_fields(current, entry.old_values),
        )

    async def commit(
        self,
        job_id: Any,
        reason: str,
        restored_values: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
        expected_version: Optional[int] = None,
        actor: Optional[str] = None,
    ) -> UpdateResult:
        """
        Write a previewed state back onto the job.

        Pass the previewed `restored_values`, or the `timestamp` to recompute
        them. With `expected_version` the write fails if the job changed since
        the preview; without it the current version is used.
        """
        reason = _require_reason(reason)
        job = await self.store.get_job(job_id)

        if restored_values is None:
            if timestamp is None:
                raise ValidationException("restored_values or timestamp is required")
            restored_values = (await self.preview(job.job_number, timestamp)).restored_candidate

        result = await self.store.apply_job_snapshot(
            job.id,
            expected_version or job.version,
            restored_values,
            actor=actor,
            source=restore_source(reason),
            operation=AuditOperation.RECOVERY,
        )
        logger.info(f"Restored {job.job_number} to v{result.new_version}: {reason}")
        return result

    async def rebuild(
        self,
        job_number: str,
        reason: str,
        line_items: List[Any],
        labour_hours: Optional[Decimal] = None,
        labour_rate: Optional[Decimal] = None,
        discount_type: Optional[Any] = None,
        discount_value: Optional[Decimal] = None,
        service_deposit: Optional[Decimal] = None,
        expected_version: Optional[int] = None,
        actor: Optional[str] = None,
    ) -> UpdateResult:
        """Add re-entered line items as custom items and recalculate totals."""
        reason = _require_reason(reason)
        if not line_items:
            raise ValidationException("At least one line item is required", field="line_items")

        job = await self.store.get_job_by_number(job_number)
        items = [
            {
                "part_id": None,
                "description": item.get("description") if isinstance(item, dict) else item.description,
                "category": item.get("category") if isinstance(item, dict) else item.category,
                "is_custom": True,
                "quantity": item.get("quantity") if isinstance(item, dict) else item.quantity,
                "unit_price": item.get("unit_price") if isinstance(item, dict) else item.unit_price,
            }
            for item in line_items
        ]

        result = await self.store.append_line_items(
            job.id,
            expected_version or job.version,
            items,
            actor=actor,
            source=rebuild_source(reason),
            operation=AuditOperation.REBUILD,
            overrides={
                "labour_hours": labour_hours,
                "labour_rate": labour_rate,
                "discount_type": discount_type,
                "discount_value": discount_value,
                "service_deposit": service_deposit,
            },
        )
        logger.info(f"Rebuilt {job.job_number} with {len(items)} line items: {reason}")
        return result
