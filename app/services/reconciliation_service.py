"""
Workshop Ledger - Reconciliation Engine

Compares a baseline file of job to customer linkages, exported at a
known-good time, against the live linkages.

- MISSING: baseline job number has no live, non-deleted job
- MISMATCH: live job is linked to a different customer
- EXTRA: live job absent from the baseline

Results list baseline order first, then extras sorted by job number, so the
same inputs always give the same output. Analysis only reads; re-linking a
job afterwards is a normal versioned write.
"""

import csv
import io
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.customer import Customer
from app.models.job import Job
from app.schemas.reconciliation import (
    BaselineEntry,
    MismatchKind,
    ReconciliationMismatch,
    ReconciliationReport,
)
from app.services.record_store import SOURCE_RELINK, UpdateResult, VersionedRecordStore
from app.utils.error_handling import ReconciliationInputException


logger = logging.getLogger(__name__)

RECONCILIATION_CSV_COLUMNS = [
    "Job Number",
    "Type",
    "Baseline Customer",
    "Baseline Customer ID",
    "Actual Customer",
    "Actual Customer ID",
]


@dataclass(frozen=True)
class LiveLinkage:
    job_number: str
    customer_id: str
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None


def _job_key(job_number: str) -> str:
    return job_number.strip().upper()


def _customer_key(customer_id: Optional[str]) -> str:
    return (customer_id or "").strip().lower()


def parse_baseline(payload: Any) -> List[BaselineEntry]:
    """
    Validate a baseline file.

    Accepts the exported format (`{"jobNumber", "customer": {"id", "name"}}`)
    and the flat form (`{"jobNumber", "customerId", "customerName"}`).

    Raises:
        ReconciliationInputException: not JSON, empty, malformed entries or
            a job number listed twice
    """
    if isinstance(payload, (bytes, str)):
        try:
            payload = json.loads(payload)
        except ValueError as exc:
            raise ReconciliationInputException(f"Baseline is not valid JSON: {exc}")

    if not isinstance(payload, list):
        raise ReconciliationInputException("Baseline must be a JSON array")
    if not payload:
        raise ReconciliationInputException("Baseline is empty")

    entries = []
    seen = set()
    for index, raw in enumerate(payload):
        if not isinstance(raw, dict):
            raise ReconciliationInputException(
                f"Baseline entry {index} is not an object",
                details={"index": index},
            )
        if "customer" not in raw and "customerId" in raw:
            raw = {
                "jobNumber": raw.get("jobNumber"),
                "customer": {"id": raw.get("customerId"), "name": raw.get("customerName")},
            }
        try:
            entry = BaselineEntry.model_validate(raw)
        except PydanticValidationError as exc:
            raise ReconciliationInputException(
                f"Baseline entry {index} is invalid",
                details={
                    "index": index,
                    "errors": [
                        {"field": ".".join(str(loc) for loc in err["loc"]), "message": err["msg"]}
                        for err in exc.errors()
                    ],
                },
            )

        key = _job_key(entry.job_number)
        if key in seen:
            raise ReconciliationInputException(
                f"Job {entry.job_number} appears more than once in the baseline",
                details={"index": index, "job_number": entry.job_number},
            )
        seen.add(key)
        entries.append(entry)

    return entries


def compare_linkages(
    baseline: Sequence[BaselineEntry],
    live: Sequence[LiveLinkage],
) -> List[ReconciliationMismatch]:
    """Pure comparison of a parsed baseline against live linkages."""
    live_by_number = {_job_key(link.job_number): link for link in live}
    baseline_numbers = set()
    mismatches = []

    for entry in baseline:
        key = _job_key(entry.job_number)
        baseline_numbers.add(key)
        link = live_by_number.get(key)

        if link is None:
            mismatches.append(
                ReconciliationMismatch(
                    job_number=entry.job_number,
                    kind=MismatchKind.MISSING,
                    baseline_customer_id=entry.customer.id,
                    baseline_customer_name=entry.customer.name,
                )
            )
        elif _customer_key(link.customer_id) != _customer_key(entry.customer.id):
            mismatches.append(
                ReconciliationMismatch(
                    job_number=entry.job_number,
                    kind=MismatchKind.MISMATCH,
                    baseline_customer_id=entry.customer.id,
                    baseline_customer_name=entry.customer.name,
                    actual_customer_id=link.customer_id,
                    actual_customer_name=link.customer_name,
                )
            )

    extras = sorted(
        (link for link in live if _job_key(link.job_number) not in baseline_numbers),
        key=lambda link: _job_key(link.job_number),
    )
    for link in extras:
        mismatches.append(
            ReconciliationMismatch(
                job_number=link.job_number,
                kind=MismatchKind.EXTRA,
                actual_customer_id=link.customer_id,
                actual_customer_name=link.customer_name,
            )
        )

    return mismatches


def mismatches_to_csv(mismatches: Sequence[ReconciliationMismatch]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(RECONCILIATION_CSV_COLUMNS)
    for mismatch in mismatches:
        writer.writerow([
            mismatch.job_number,
            mismatch.kind.value,
            mismatch.baseline_customer_name or "",
            mismatch.baseline_customer_id or "",
            mismatch.actual_customer_name or "",
            mismatch.actual_customer_id or "",
        ])
    return output.getvalue()


class ReconciliationService:
    """Baseline analysis, baseline export and re-linking."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def load_live_linkages(self) -> List[LiveLinkage]:
        """Every non-deleted job with its customer, ordered by job number."""
        result = await self.db.execute(
            select(Job.job_number, Job.customer_id, Customer.name, Customer.phone)
            .join(Customer, Customer.id == Job.customer_id)
            .where(Job.deleted_at.is_(None))
            .order_by(Job.job_number)
        )
        return [
            LiveLinkage(
                job_number=row.job_number,
                customer_id=str(row.customer_id),
                customer_name=row.name,
                customer_phone=row.phone,
            )
            for row in result
        ]

    async def analyze(self, payload: Any) -> ReconciliationReport:
        baseline = parse_baseline(payload)
        live = await self.load_live_linkages()
        mismatches = compare_linkages(baseline, live)

        counts = {kind: 0 for kind in MismatchKind}
        for mismatch in mismatches:
            counts[mismatch.kind] += 1

        report = ReconciliationReport(
            baseline_count=len(baseline),
            live_count=len(live),
            matched=len(baseline) - counts[MismatchKind.MISSING] - counts[MismatchKind.MISMATCH],
            missing=counts[MismatchKind.MISSING],
            mismatched=counts[MismatchKind.MISMATCH],
            extra=counts[MismatchKind.EXTRA],
            mismatches=mismatches,
        )
        logger.info(
            f"Reconciliation: {report.matched} matched, {report.missing} missing, "
            f"{report.mismatched} mismatched, {report.extra} extra"
        )
        return report

    async def export_baseline(self) -> List[Dict[str, Any]]:
        """Current linkages in the baseline file format."""
        return [
            {
                "jobNumber": link.job_number,
                "customer": {
                    "id": link.customer_id,
                    "name": link.customer_name,
                    "phone": link.customer_phone,
                },
            }
            for link in await self.load_live_linkages()
        ]

    async def relink(
        self,
        job_number: str,
        customer_id: Any,
        expected_version: int,
        actor: Optional[str] = None,
    ) -> UpdateResult:
        """Correct a job's customer after review, through the record store."""
        store = VersionedRecordStore(self.db)
        job = await store.get_job_by_number(job_number)
        return await store.update_job(
            job.id,
            expected_version,
            {"customer_id": customer_id},
            actor=actor,
            source=SOURCE_RELINK,
        )
