"""
Workshop Ledger - Review & Undo Service

Accept or reject audit entries.

An entry can be reviewed once. The review columns are claimed with a
conditional UPDATE (WHERE review_status = 'unreviewed'), so two operators
racing on the same entry cannot both succeed. A rejection writes the entry's
old_values back through the record store in the same transaction as the
claim: either both happen or neither does. Rejecting a payment also deletes
the payment it recorded, so the balance is recalculated without it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit import AuditLog, AuditOperation, ReviewStatus
from app.services.record_store import (
    CUSTOMERS_TABLE,
    JOBS_TABLE,
    SOURCE_PAYMENTS_API,
    UpdateResult,
    VersionedRecordStore,
)
from app.utils.error_handling import (
    AlreadyReviewedException,
    BusinessRuleException,
    NotFoundException,
)


logger = logging.getLogger(__name__)


def rejection_source(entry_id: int) -> str:
    return f"rejection of audit entry {entry_id}"


@dataclass
class ReviewOutcome:
    entry: AuditLog
    revert: Optional[UpdateResult] = None


class ReviewService:
    """Accept/reject workflow over the audit log."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.store = VersionedRecordStore(db)

    async def _get_entry(self, entry_id: int) -> AuditLog:
        result = await self.db.execute(
            select(AuditLog)
            .where(AuditLog.id == entry_id)
            .execution_options(populate_existing=True)
        )
        entry = result.scalar_one_or_none()
        if entry is None:
            raise NotFoundException("AuditEntry", entry_id)
        return entry

    async def _claim(
        self,
        entry_id: int,
        status: ReviewStatus,
        reviewer: Optional[str],
        note: Optional[str],
    ) -> None:
        result = await self.db.execute(
            update(AuditLog)
            .where(AuditLog.id == entry_id)
            .where(AuditLog.review_status == ReviewStatus.UNREVIEWED)
            .values(
                review_status=status,
                reviewed_by=reviewer,
                reviewed_at=datetime.now(timezone.utc),
                review_note=note,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            entry = await self._get_entry(entry_id)
            raise AlreadyReviewedException(entry_id, entry.review_status.value)

    async def accept(
        self,
        entry_id: int,
        reviewer: Optional[str] = None,
        note: Optional[str] = None,
    ) -> ReviewOutcome:
        """Mark an entry accepted. No other effect."""
        try:
            await self._claim(entry_id, ReviewStatus.ACCEPTED, reviewer, note)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Audit entry {entry_id} accepted by {reviewer}")
        return ReviewOutcome(entry=await self._get_entry(entry_id))

    async def reject(
        self,
        entry_id: int,
        reviewer: Optional[str] = None,
        note: Optional[str] = None,
    ) -> ReviewOutcome:
        """
        Revert the change an entry documents, then mark it rejected.

        UPDATE, RECOVERY and REBUILD entries are reverted by writing their
        full old_values back. An INSERT is reverted by a soft delete and a
        DELETE by clearing the deletion marker.
        """
        entry = await self._get_entry(entry_id)
        if entry.review_status != ReviewStatus.UNREVIEWED:
            raise AlreadyReviewedException(entry_id, entry.review_status.value)

        source = rejection_source(entry.id)
        try:
            await self._claim(entry_id, ReviewStatus.REJECTED, reviewer, note)

            if entry.table_name == JOBS_TABLE:
                revert = await self._revert_job(entry, reviewer, source)
            elif entry.table_name == CUSTOMERS_TABLE:
                revert = await self._revert_customer(entry, reviewer, source)
            else:
                raise BusinessRuleException(
                    f"Entries for table {entry.table_name} cannot be rejected",
                    rule="reject_supported_tables",
                )

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            f"Audit entry {entry_id} rejected by {reviewer}; reverted as audit #{revert.audit_entry_id}"
        )
        return ReviewOutcome(entry=await self._get_entry(entry_id), revert=revert)

    async def _revert_job(self, entry: AuditLog, reviewer: Optional[str], source: str) -> UpdateResult:
        job = await self.store.get_job(entry.record_id, include_deleted=True)

        if entry.operation == AuditOperation.INSERT:
            return await self.store.delete_job(
                job.id, job.version, actor=reviewer, source=source, commit=False
            )

        if entry.operation == AuditOperation.DELETE:
            return await self.store.undelete_job(
                job.id, job.version, actor=reviewer, source=source, commit=False
            )

        # amount_paid and balance_due are derived from payment rows, not the snapshot
        if entry.source == SOURCE_PAYMENTS_API:
            payment = await self.store.remove_payment(entry.id)
            if payment is None:
                raise BusinessRuleException(
                    f"The payment recorded by audit entry {entry.id} no longer exists",
                    rule="reject_payment_requires_payment",
                )

        return await self.store.apply_job_snapshot(
            job.id,
            job.version,
            entry.old_values or {},
            actor=reviewer,
            source=source,
            operation=AuditOperation.UPDATE,
            commit=False,
        )

    async def _revert_customer(self, entry: AuditLog, reviewer: Optional[str], source: str) -> UpdateResult:
        if entry.operation != AuditOperation.UPDATE:
            raise BusinessRuleException(
                f"Customer {entry.operation.value} entries cannot be rejected",
                rule="reject_customer_updates_only",
            )
        customer = await self.store.get_customer(entry.record_id)
        return await self.store.apply_customer_snapshot(
            customer.id,
            customer.version,
            entry.old_values or {},
            actor=reviewer,
            source=source,
            commit=False,
        )
