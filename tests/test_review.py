"""
Workshop Ledger - Review & Undo Tests
"""

from decimal import Decimal

import pytest
from sqlalchemy import update

from app.models.audit import AuditOperation, ReviewStatus
from app.models.job import JobPayment
from app.services.review_service import ReviewService
from app.utils.error_handling import (
    AlreadyReviewedException,
    BusinessRuleException,
    NotFoundException,
    RecordNotFoundException,
)


@pytest.fixture
def review(db_session) -> ReviewService:
    return ReviewService(db_session)


class TestAccept:

    @pytest.mark.asyncio
    async def test_accept_marks_entry(self, review, store, test_job):
        result = await store.update_job(test_job.id, 1, {"notes": "checked"})

        outcome = await review.accept(result.audit_entry_id, reviewer="manager", note="fine")

        assert outcome.entry.review_status == ReviewStatus.ACCEPTED
        assert outcome.entry.reviewed_by == "manager"
        assert outcome.entry.reviewed_at is not None
        assert outcome.entry.review_note == "fine"
        assert outcome.revert is None

        job = await store.get_job(test_job.id)
        assert job.version == 2

    @pytest.mark.asyncio
    async def test_accept_twice_fails(self, review, store, test_job):
        result = await store.update_job(test_job.id, 1, {"notes": "checked"})
        await review.accept(result.audit_entry_id, reviewer="manager")

        with pytest.raises(AlreadyReviewedException):
            await review.accept(result.audit_entry_id, reviewer="owner")

    @pytest.mark.asyncio
    async def test_unknown_entry(self, review):
        with pytest.raises(NotFoundException):
            await review.accept(999999)


class TestReject:

    @pytest.mark.asyncio
    async def test_reject_customer_relink_restores_customer(
        self, review, store, test_job, test_customer, second_customer
    ):
        """An UPDATE moving the job from X to Y is reverted by a new UPDATE from Y to X."""
        relink = await store.update_job(test_job.id, 1, {"customer_id": second_customer.id})

        outcome = await review.reject(relink.audit_entry_id, reviewer="manager")

        assert outcome.entry.review_status == ReviewStatus.REJECTED
        assert outcome.entry.reviewed_by == "manager"

        revert = await store.audit.get_entry(outcome.revert.audit_entry_id)
        assert revert.operation == AuditOperation.UPDATE
        assert revert.old_values["customer_id"] == str(second_customer.id)
        assert revert.new_values["customer_id"] == str(test_customer.id)
        assert "customer_id" in revert.changed_fields
        assert revert.source == f"rejection of audit entry {relink.audit_entry_id}"
        assert revert.review_status == ReviewStatus.UNREVIEWED

        job = await store.get_job(test_job.id)
        assert job.customer_id == test_customer.id
        assert job.version == 3

    @pytest.mark.asyncio
    async def test_reject_restores_full_snapshot(self, review, store, test_job):
        """Every field goes back to its old value, including later edits to other fields."""
        change = await store.update_job(
            test_job.id,
            1,
            {"labour_hours": Decimal("3"), "line_items": []},
        )
        assert change.record.grand_total == Decimal("293.70")

        outcome = await review.reject(change.audit_entry_id)

        job = await store.get_job(test_job.id)
        assert job.labour_hours == Decimal("1.00")
        assert len(job.line_items) == 1
        assert job.grand_total == Decimal("152.90")
        assert outcome.revert.new_version == 3

    @pytest.mark.asyncio
    async def test_reject_insert_soft_deletes(self, review, store, test_job):
        history = await store.audit.get_record_history("jobs", test_job.id)

        outcome = await review.reject(history[0].id)

        with pytest.raises(RecordNotFoundException):
            await store.get_job(test_job.id)
        revert = await store.audit.get_entry(outcome.revert.audit_entry_id)
        assert revert.operation == AuditOperation.DELETE

    @pytest.mark.asyncio
    async def test_reject_delete_restores_job(self, review, store, test_job):
        deletion = await store.delete_job(test_job.id, 1)

        await review.reject(deletion.audit_entry_id)

        job = await store.get_job(test_job.id)
        assert job.deleted_at is None
        assert job.version == 3

    @pytest.mark.asyncio
    async def test_reject_after_accept_fails(self, review, store, test_job):
        result = await store.update_job(test_job.id, 1, {"notes": "checked"})
        await review.accept(result.audit_entry_id)

        with pytest.raises(AlreadyReviewedException):
            await review.reject(result.audit_entry_id)

        job = await store.get_job(test_job.id)
        assert job.notes == "checked"

    @pytest.mark.asyncio
    async def test_reject_twice_fails(self, review, store, test_job):
        result = await store.update_job(test_job.id, 1, {"notes": "checked"})
        await review.reject(result.audit_entry_id)

        with pytest.raises(AlreadyReviewedException):
            await review.reject(result.audit_entry_id)

        # One revert only
        assert (await store.get_job(test_job.id)).version == 3

    @pytest.mark.asyncio
    async def test_failed_revert_leaves_entry_unreviewed(self, review, store, test_job, monkeypatch):
        result = await store.update_job(test_job.id, 1, {"notes": "checked"})

        async def failing_revert(*args, **kwargs):
            raise RuntimeError("database went away")

        monkeypatch.setattr(review.store, "apply_job_snapshot", failing_revert)

        with pytest.raises(RuntimeError):
            await review.reject(result.audit_entry_id)

        entry = await review._get_entry(result.audit_entry_id)
        assert entry.review_status == ReviewStatus.UNREVIEWED
        assert entry.reviewed_by is None

    @pytest.mark.asyncio
    async def test_reject_customer_update(self, review, store, test_customer):
        change = await store.update_customer(test_customer.id, 1, {"phone": "0400 111 222"})

        await review.reject(change.audit_entry_id)

        customer = await store.get_customer(test_customer.id)
        assert customer.phone == "0412 555 101"
        assert customer.version == 3

    @pytest.mark.asyncio
    async def test_customer_insert_cannot_be_rejected(self, review, store, test_customer):
        history = await store.audit.get_record_history("customers", test_customer.id)

        with pytest.raises(BusinessRuleException):
            await review.reject(history[0].id)

        entry = await review._get_entry(history[0].id)
        assert entry.review_status == ReviewStatus.UNREVIEWED


class TestRejectPayment:
    """Payments are derived into the balance, so rejecting one removes the payment row."""

    @pytest.mark.asyncio
    async def test_reject_payment_restores_balance(self, review, store, test_job):
        paid = await store.record_payment(test_job.id, 1, Decimal("50.00"), actor="front-desk")
        assert paid.record.balance_due == Decimal("102.90")

        outcome = await review.reject(paid.audit_entry_id, reviewer="manager")

        assert outcome.entry.review_status == ReviewStatus.REJECTED
        job = await store.get_job(test_job.id)
        assert job.amount_paid == Decimal("0.00")
        assert job.balance_due == Decimal("152.90")
        assert job.payments == []
        assert job.version == 3

        revert = await store.audit.get_entry(outcome.revert.audit_entry_id)
        assert set(revert.changed_fields) == {"amount_paid", "balance_due"}
        assert revert.new_values["balance_due"] == "152.90"

    @pytest.mark.asyncio
    async def test_reject_keeps_later_payments(self, review, store, test_job):
        first = await store.record_payment(test_job.id, 1, Decimal("50.00"))
        await store.record_payment(test_job.id, 2, Decimal("30.00"), method="card")

        await review.reject(first.audit_entry_id)

        job = await store.get_job(test_job.id)
        assert job.amount_paid == Decimal("30.00")
        assert job.balance_due == Decimal("122.90")
        assert [payment.method for payment in job.payments] == ["card"]

    @pytest.mark.asyncio
    async def test_reject_without_payment_row_fails(self, db_session, review, store, test_job):
        paid = await store.record_payment(test_job.id, 1, Decimal("50.00"))
        await db_session.execute(
            update(JobPayment)
            .where(JobPayment.job_id == test_job.id)
            .values(audit_entry_id=None)
            .execution_options(synchronize_session=False)
        )
        await db_session.commit()

        with pytest.raises(BusinessRuleException):
            await review.reject(paid.audit_entry_id)

        entry = await review._get_entry(paid.audit_entry_id)
        assert entry.review_status == ReviewStatus.UNREVIEWED
        job = await store.get_job(test_job.id)
        assert job.balance_due == Decimal("102.90")
        assert job.version == 2
