"""
Workshop Ledger - Shadow Audit Monitor

Detects writes that did not go through the versioned record store. The
monitor only reports: it never repairs a record.

Checks per scan:
- unauthorized_write: an audit entry with an unknown source tag, or a live
  job whose state differs from the state its latest audit entry recorded
- customer_relink: a live job linked to a different customer than its
  latest audit entry recorded
- total_drift: stored totals differ from a fresh recalculation
- silent_deletion: an audited job that no longer exists, or a job marked
  deleted without a DELETE entry

Every detection carries a fingerprint of what was observed, so repeated
scans raise each anomaly once.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.audit import AuditLog, AuditOperation
from app.models.job import Job
from app.models.shadow_audit import ShadowAuditEntry, ShadowAuditType, ShadowSeverity
from app.services.audit_service import compute_changed_fields, json_value
from app.services.recalculation import DERIVED_FIELDS, MONEY_INPUT_FIELDS, totals_for_job
from app.services.record_store import JOBS_TABLE, VersionedRecordStore
from app.utils.error_handling import NotFoundException


logger = logging.getLogger(__name__)

# A change to any of these is critical
SENSITIVE_FIELDS = frozenset(MONEY_INPUT_FIELDS | set(DERIVED_FIELDS) | {"customer_id", "job_number", "id"})


@dataclass
class Detection:
    audit_type: ShadowAuditType
    severity: ShadowSeverity
    table_name: str
    record_id: str
    fingerprint: str
    details: Dict[str, Any] = field(default_factory=dict)


def _digest(payload: Any) -> str:
    raw = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()[:16]


def classify_fields(fields) -> ShadowSeverity:
    """Critical when money or identity is touched, info when nothing is, else warning."""
    fields = set(fields)
    if fields & SENSITIVE_FIELDS:
        return ShadowSeverity.CRITICAL
    if not fields:
        return ShadowSeverity.INFO
    return ShadowSeverity.WARNING


def is_known_source(source: Optional[str], known: Optional[List[str]] = None) -> bool:
    known = settings.shadow_audit_known_sources_list if known is None else known
    return bool(source) and any(source.startswith(prefix) for prefix in known)


class ShadowAuditService:
    """Anomaly detection, listing and acknowledgment."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.store = VersionedRecordStore(db)

    # ===========================================
    # SCAN
    # ===========================================

    async def scan(self) -> List[ShadowAuditEntry]:
        """Run every check and store new detections. Returns only new entries."""
        batch = settings.shadow_audit_batch_size

        detections: List[Detection] = []
        detections.extend(await self._check_audit_sources(batch))
        detections.extend(await self._check_live_jobs(batch))
        detections.extend(await self._check_deletions())

        try:
            stored = await self._store(detections)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        for entry in stored:
            log = logger.error if entry.severity == ShadowSeverity.CRITICAL else logger.warning
            log(
                f"Shadow audit: {entry.audit_type.value} ({entry.severity.value}) "
                f"on {entry.table_name} {entry.record_id}"
            )
        logger.info(f"Shadow audit scan complete: {len(stored)} new of {len(detections)} observed")
        return stored

    async def _check_audit_sources(self, batch: int) -> List[Detection]:
        result = await self.db.execute(
            select(AuditLog).order_by(AuditLog.id.desc()).limit(batch)
        )
        detections = []
        for entry in result.scalars():
            if is_known_source(entry.source):
                continue
            detections.append(
                Detection(
                    audit_type=ShadowAuditType.UNAUTHORIZED_WRITE,
                    severity=classify_fields(entry.changed_fields or []),
                    table_name=entry.table_name,
                    record_id=entry.record_id,
                    fingerprint=f"unauthorized_write:audit:{entry.id}",
                    details={
                        "reason": "unknown_source",
                        "audit_entry_id": entry.id,
                        "source": entry.source,
                        "operation": entry.operation.value,
                        "changed_fields": entry.changed_fields or [],
                        "changed_by": entry.changed_by,
                        "job_number": entry.record_label,
                    },
                )
            )
        return detections

    async def _latest_entries(self, record_ids: List[str]) -> Dict[str, AuditLog]:
        if not record_ids:
            return {}
        latest_ids = (
            select(func.max(AuditLog.id))
            .where(AuditLog.table_name == JOBS_TABLE)
            .where(AuditLog.record_id.in_(record_ids))
            .group_by(AuditLog.record_id)
        )
        result = await self.db.execute(select(AuditLog).where(AuditLog.id.in_(latest_ids)))
        return {entry.record_id: entry for entry in result.scalars()}

    async def _check_live_jobs(self, batch: int) -> List[Detection]:
        result = await self.db.execute(
            select(Job)
            .where(Job.deleted_at.is_(None))
            .order_by(Job.updated_at.desc())
            .limit(batch)
            .execution_options(populate_existing=True)
        )
        jobs = list(result.scalars())
        latest = await self._latest_entries([str(job.id) for job in jobs])

        detections = []
        for job in jobs:
            live = await self.store.job_snapshot(job)
            detections.extend(self._compare_with_audit(job, live, latest.get(str(job.id))))
            detections.extend(await self._check_drift(job, live))
        return detections

    def _compare_with_audit(
        self,
        job: Job,
        live: Dict[str, Any],
        entry: Optional[AuditLog],
    ) -> List[Detection]:
        record_id = str(job.id)

        if entry is None:
            return [
                Detection(
                    audit_type=ShadowAuditType.UNAUTHORIZED_WRITE,
                    severity=ShadowSeverity.CRITICAL,
                    table_name=JOBS_TABLE,
                    record_id=record_id,
                    fingerprint=f"unauthorized_write:unaudited:{record_id}",
                    details={"reason": "no_audit_history", "job_number": job.job_number, "version": job.version},
                )
            ]

        audited = entry.new_values or {}
        differing = compute_changed_fields(audited, live)
        detections = []

        if "customer_id" in differing:
            detections.append(
                Detection(
                    audit_type=ShadowAuditType.CUSTOMER_RELINK,
                    severity=ShadowSeverity.CRITICAL,
                    table_name=JOBS_TABLE,
                    record_id=record_id,
                    fingerprint=f"customer_relink:{record_id}:{audited.get('customer_id')}:{live['customer_id']}",
                    details={
                        "job_number": job.job_number,
                        "audited_customer_id": audited.get("customer_id"),
                        "live_customer_id": live["customer_id"],
                        "last_audit_entry_id": entry.id,
                    },
                )
            )

        other_fields = [name for name in differing if name != "customer_id"]
        audited_version = audited.get("version") or 0
        if other_fields or job.version > audited_version:
            changed = {name: live.get(name) for name in other_fields}
            detections.append(
                Detection(
                    audit_type=ShadowAuditType.UNAUTHORIZED_WRITE,
                    severity=classify_fields(other_fields) if other_fields else ShadowSeverity.WARNING,
                    table_name=JOBS_TABLE,
                    record_id=record_id,
                    fingerprint=f"unauthorized_write:{record_id}:v{job.version}:{_digest(changed)}",
                    details={
                        "reason": "state_differs_from_audit",
                        "job_number": job.job_number,
                        "fields": other_fields,
                        "audited_version": audited_version,
                        "live_version": job.version,
                        "last_audit_entry_id": entry.id,
                    },
                )
            )

        return detections

    async def _check_drift(self, job: Job, live: Dict[str, Any]) -> List[Detection]:
        payments = await self.store.payments_total(job.id)
        expected = totals_for_job(job, line_items=live["line_items"], payments_total=payments)

        drifted = {
            name: {"stored": live[name], "expected": json_value(getattr(expected, name))}
            for name in DERIVED_FIELDS
            if live[name] != json_value(getattr(expected, name))
        }
        if "grand_total" not in drifted and "balance_due" not in drifted:
            return []

        record_id = str(job.id)
        return [
            Detection(
                audit_type=ShadowAuditType.TOTAL_DRIFT,
                severity=ShadowSeverity.CRITICAL,
                table_name=JOBS_TABLE,
                record_id=record_id,
                fingerprint=f"total_drift:{record_id}:{_digest(drifted)}",
                details={"job_number": job.job_number, "version": job.version, "fields": drifted},
            )
        ]

    async def _check_deletions(self) -> List[Detection]:
        detections = []

        # Audited jobs with no row at all
        audited_ids = select(AuditLog.record_id).where(AuditLog.table_name == JOBS_TABLE).distinct()
        live_ids = {str(job_id) for job_id in (await self.db.execute(select(Job.id))).scalars()}
        for record_id in (await self.db.execute(audited_ids)).scalars():
            if record_id in live_ids:
                continue
            label = (
                await self.db.execute(
                    select(AuditLog.record_label)
                    .where(AuditLog.record_id == record_id)
                    .order_by(AuditLog.id.desc())
                    .limit(1)
                )
            ).scalar_one_or_none()
            detections.append(
                Detection(
                    audit_type=ShadowAuditType.SILENT_DELETION,
                    severity=ShadowSeverity.CRITICAL,
                    table_name=JOBS_TABLE,
                    record_id=record_id,
                    fingerprint=f"silent_deletion:removed:{record_id}",
                    details={"reason": "row_missing", "job_number": label},
                )
            )

        # Soft-deleted jobs whose latest entry is not a DELETE
        result = await self.db.execute(select(Job).where(Job.deleted_at.is_not(None)))
        deleted = list(result.scalars())
        latest = await self._latest_entries([str(job.id) for job in deleted])
        for job in deleted:
            entry = latest.get(str(job.id))
            if entry is not None and entry.operation == AuditOperation.DELETE:
                continue
            deleted_at = json_value(job.deleted_at)
            detections.append(
                Detection(
                    audit_type=ShadowAuditType.SILENT_DELETION,
                    severity=ShadowSeverity.WARNING,
                    table_name=JOBS_TABLE,
                    record_id=str(job.id),
                    fingerprint=f"silent_deletion:unaudited:{job.id}:{deleted_at}",
                    details={"reason": "deleted_without_audit", "job_number": job.job_number, "deleted_at": deleted_at},
                )
            )

        return detections

    async def _store(self, detections: List[Detection]) -> List[ShadowAuditEntry]:
        unique: Dict[str, Detection] = {}
        for detection in detections:
            unique.setdefault(detection.fingerprint, detection)
        if not unique:
            return []

        result = await self.db.execute(
            select(ShadowAuditEntry.fingerprint).where(ShadowAuditEntry.fingerprint.in_(list(unique)))
        )
        seen: Set[str] = set(result.scalars())

        now = datetime.now(timezone.utc)
        stored = []
        for fingerprint, detection in unique.items():
            if fingerprint in seen:
                continue
            entry = ShadowAuditEntry(
                audit_type=detection.audit_type,
                severity=detection.severity,
                table_name=detection.table_name,
                record_id=detection.record_id,
                fingerprint=fingerprint,
                details=detection.details,
                detected_at=now,
            )
            self.db.add(entry)
            stored.append(entry)

        await self.db.flush()
        return stored

    # ===========================================
    # LISTING AND RESOLUTION
    # ===========================================

    async def list_entries(
        self,
        audit_type: Optional[ShadowAuditType] = None,
        severity: Optional[ShadowSeverity] = None,
        unresolved_only: bool = False,
        skip: int = 0,
        limit: int = 100,
    ) -> List[ShadowAuditEntry]:
        """Detections, newest first."""
        query = select(ShadowAuditEntry)

        if audit_type:
            query = query.where(ShadowAuditEntry.audit_type == audit_type)

        if severity:
            query = query.where(ShadowAuditEntry.severity == severity)

        if unresolved_only:
            query = query.where(ShadowAuditEntry.resolved_at.is_(None))

        query = query.order_by(ShadowAuditEntry.detected_at.desc()).offset(skip).limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def summary(self) -> Dict[str, int]:
        """Unresolved counts, overall and by severity."""
        result = await self.db.execute(
            select(ShadowAuditEntry.severity, func.count())
            .where(ShadowAuditEntry.resolved_at.is_(None))
            .group_by(ShadowAuditEntry.severity)
        )
        counts = {severity: count for severity, count in result.all()}
        return {
            "unresolved": sum(counts.values()),
            "critical": counts.get(ShadowSeverity.CRITICAL, 0),
            "warning": counts.get(ShadowSeverity.WARNING, 0),
        }

    async def resolve(self, entry_id: Any, resolved_by: Optional[str] = None) -> ShadowAuditEntry:
        """Acknowledge a detection. Resolving twice leaves the first resolution in place."""
        result = await self.db.execute(
            select(ShadowAuditEntry).where(ShadowAuditEntry.id == entry_id)
        )
        entry = result.scalar_one_or_none()
        if entry is None:
            raise NotFoundException("ShadowAuditEntry", entry_id)

        if entry.resolved_at is None:
            entry.resolved_at = datetime.now(timezone.utc)
            entry.resolved_by = resolved_by
            await self.db.commit()
            logger.info(f"Shadow audit entry {entry_id} resolved by {resolved_by}")

        return entry
