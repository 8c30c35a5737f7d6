"""
Workshop Ledger - Versioned Record Store Tests

Optimistic concurrency, derived totals on write, and the one-audit-entry
per accepted mutation rule.
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.config import settings
from app.models.audit import AuditLog, AuditOperation
from app.models.job import Job, JobStatus
from app.services.record_store import JOBS_TABLE
from app.utils.error_handling import (
    ErrorCode,
    InvalidAmountException,
    RecordNotFoundException,
    StoreTimeoutException,
    ValidationException,
    VersionConflictException,
)


async def _audit_count(db_session, record_id=None) -> int:
    query = select(func.count(AuditLog.id))
    if record_id is not None:
        query = query.where(AuditLog.record_id == str(record_id))
    return (await db_session.execute(query)).scalar()


class TestCreateJob:
    """Job creation."""

    @pytest.mark.asyncio
    async def test_create_assigns_version_one_and_job_number(self, test_job):
        year = datetime.now(timezone.utc).year

        assert test_job.version == 1
        assert test_job.job_number == f"JB{year}-0001"

    @pytest.mark.asyncio
    async def test_job_numbers_are_sequential(self, store, test_customer, test_job):
        second = await store.create_job(
            {"customer_id": test_customer.id, "machine_category": "Chainsaw"}
        )

        year = datetime.now(timezone.utc).year
        assert second.job_number == f"JB{year}-0002"

    @pytest.mark.asyncio
    async def test_lowercase_prefix_is_normalised(self, store, test_customer, monkeypatch):
        monkeypatch.setattr(settings, "job_number_prefix", "ws")

        job = await store.create_job({"customer_id": test_customer.id, "machine_category": "Edger"})

        year = datetime.now(timezone.utc).year
        assert job.job_number == f"WS{year}-0001"
        found = await store.get_job_by_number(job.job_number.lower())
        assert found.id == job.id

    @pytest.mark.asyncio
    async def test_create_derives_totals(self, test_job):
        assert test_job.parts_subtotal == Decimal("50.00")
        assert test_job.labour_total == Decimal("89.00")
        assert test_job.subtotal == Decimal("139.00")
        assert test_job.gst == Decimal("13.90")
        assert test_job.grand_total == Decimal("152.90")
        assert test_job.balance_due == Decimal("152.90")
        assert test_job.line_items[0].total_price == Decimal("50.00")

    @pytest.mark.asyncio
    async def test_create_writes_insert_entry(self, db_session, store, test_job):
        history = await store.audit.get_record_history(JOBS_TABLE, test_job.id)

        assert len(history) == 1
        entry = history[0]
        assert entry.operation == AuditOperation.INSERT
        assert entry.old_values is None
        assert entry.new_values["job_number"] == test_job.job_number
        assert entry.new_values["grand_total"] == "152.90"
        assert entry.new_values["line_items"][0]["description"] == "Spark plug"
        assert entry.changed_by == "front-desk"
        assert entry.source == "jobs_api"
        assert entry.record_label == test_job.job_number

    @pytest.mark.asyncio
    async def test_create_rejects_unknown_customer(self, store):
        with pytest.raises(ValidationException) as exc_info:
            await store.create_job(
                {
                    "customer_id": "7b0c1f4e-3a55-4d1c-9a51-0c8c6c7b9f10",
                    "machine_category": "Lawn Mower",
                }
            )

        assert exc_info.value.field == "customer_id"

    @pytest.mark.asyncio
    async def test_create_rejects_derived_fields(self, store, test_customer):
        with pytest.raises(ValidationException):
            await store.create_job(
                {
                    "customer_id": test_customer.id,
                    "machine_category": "Lawn Mower",
                    "grand_total": "10.00",
                }
            )


class TestOptimisticConcurrency:
    """Stale writers lose; nothing is overwritten silently."""

    @pytest.mark.asyncio
    async def test_second_writer_with_stale_version_conflicts(self, db_session, store, test_job):
        """Two operators read v1; the first write wins, the second conflicts."""
        read_version = test_job.version

        result = await store.update_job(
            test_job.id, read_version, {"labour_hours": Decimal("2")}, actor="operator-a"
        )
        assert result.updated is True
        assert result.new_version == 2

        with pytest.raises(VersionConflictException) as exc_info:
            await store.update_job(
                test_job.id, read_version, {"notes": "Customer called"}, actor="operator-b"
            )

        assert exc_info.value.code == ErrorCode.VERSION_CONFLICT
        assert exc_info.value.expected_version == 1
        assert exc_info.value.actual_version == 2

        job = await store.get_job(test_job.id)
        assert job.version == 2
        assert job.notes is None
        assert job.labour_hours == Decimal("2.00")
        # INSERT plus operator A's UPDATE only
        assert await _audit_count(db_session, test_job.id) == 2

    @pytest.mark.asyncio
    async def test_conditional_write_guards_without_early_check(self, store, test_job):
        await store.update_job(test_job.id, 1, {"notes": "first"})

        with pytest.raises(VersionConflictException):
            await store._compare_and_swap(Job, test_job.id, 1, {"notes": "second"})

    @pytest.mark.asyncio
    async def test_versions_increase_by_one(self, store, test_job):
        versions = []
        version = test_job.version
        for note in ("one", "two", "three"):
            result = await store.update_job(test_job.id, version, {"notes": note})
            version = result.new_version
            versions.append(version)

        assert versions == [2, 3, 4]

    @pytest.mark.asyncio
    async def test_update_missing_job(self, store):
        with pytest.raises(RecordNotFoundException):
            await store.update_job("2f0d3c59-5f43-4a8b-8c43-1f6c7d0f2a11", 1, {"notes": "x"})

    @pytest.mark.asyncio
    async def test_malformed_id_is_not_found(self, store):
        with pytest.raises(RecordNotFoundException):
            await store.get_job("not-a-uuid")


class TestUpdateJob:
    """Partial updates, recalculation and audit content."""

    @pytest.mark.asyncio
    async def test_money_change_recalculates(self, store, test_job):
        result = await store.update_job(test_job.id, 1, {"labour_hours": Decimal("2")})

        job = result.record
        assert job.labour_total == Decimal("178.00")
        assert job.subtotal == Decimal("228.00")
        assert job.gst == Decimal("22.80")
        assert job.grand_total == Decimal("250.80")

    @pytest.mark.asyncio
    async def test_audit_entry_records_before_and_after(self, store, test_job):
        result = await store.update_job(
            test_job.id, 1, {"labour_hours": Decimal("2")}, actor="operator-a"
        )

        entry = await store.audit.get_entry(result.audit_entry_id)
        assert entry.operation == AuditOperation.UPDATE
        assert entry.old_values["labour_hours"] == "1.00"
        assert entry.new_values["labour_hours"] == "2.00"
        assert entry.old_values["version"] == 1
        assert entry.new_values["version"] == 2
        assert "labour_hours" in entry.changed_fields
        assert "grand_total" in entry.changed_fields
        assert "version" not in entry.changed_fields
        assert entry.changed_by == "operator-a"

    @pytest.mark.asyncio
    async def test_text_change_does_not_touch_totals(self, store, test_job):
        result = await store.update_job(test_job.id, 1, {"notes": "Leave at side gate"})

        entry = await store.audit.get_entry(result.audit_entry_id)
        assert entry.changed_fields == ["notes"]
        assert result.record.grand_total == Decimal("152.90")

    @pytest.mark.asyncio
    async def test_line_items_replace_whole_list(self, store, test_job):
        result = await store.update_job(
            test_job.id,
            1,
            {
                "line_items": [
                    {"description": "Air filter", "quantity": "1", "unit_price": "18.50"},
                    {"description": "Fuel line", "quantity": "2", "unit_price": "6.25", "is_custom": True},
                ]
            },
        )

        job = result.record
        assert [item.description for item in job.line_items] == ["Air filter", "Fuel line"]
        assert job.parts_subtotal == Decimal("31.00")
        assert job.subtotal == Decimal("120.00")

        entry = await store.audit.get_entry(result.audit_entry_id)
        assert len(entry.old_values["line_items"]) == 1
        assert len(entry.new_values["line_items"]) == 2
        assert "line_items" in entry.changed_fields

    @pytest.mark.asyncio
    async def test_completed_at_set_on_first_completion(self, store, test_job):
        result = await store.update_job(test_job.id, 1, {"status": "completed"})
        first_completed = result.record.completed_at
        assert first_completed is not None

        result = await store.update_job(test_job.id, 2, {"status": "in-progress"})
        result = await store.update_job(test_job.id, 3, {"status": "completed"})
        assert result.record.completed_at == first_completed

    @pytest.mark.asyncio
    async def test_written_off_job_cannot_change_status(self, store, test_job):
        await store.update_job(test_job.id, 1, {"status": "write_off"})

        with pytest.raises(ValidationException) as exc_info:
            await store.update_job(test_job.id, 2, {"status": "pending"})
        assert exc_info.value.field == "status"

        result = await store.update_job(test_job.id, 2, {"notes": "Customer abandoned machine"})
        assert result.record.status == JobStatus.WRITE_OFF

    @pytest.mark.parametrize(
        "patch",
        [
            {},
            {"version": 5},
            {"grand_total": "0.00"},
            {"unknown_field": "x"},
            {"machine_category": None},
            {"labour_hours": "-1"},
            {"discount_type": "percent", "discount_value": "150"},
        ],
    )
    @pytest.mark.asyncio
    async def test_invalid_patches_rejected_before_write(self, db_session, store, test_job, patch):
        with pytest.raises(ValidationException):
            await store.update_job(test_job.id, 1, patch)

        job = await store.get_job(test_job.id)
        assert job.version == 1
        assert await _audit_count(db_session, test_job.id) == 1

    @pytest.mark.asyncio
    async def test_percent_value_checked_against_stored_type(self, store, test_job):
        await store.update_job(test_job.id, 1, {"discount_type": "percent", "discount_value": "10"})

        with pytest.raises(ValidationException):
            await store.update_job(test_job.id, 2, {"discount_value": "120"})

    @pytest.mark.asyncio
    async def test_failed_audit_write_rolls_back_record(self, db_session, store, test_job, monkeypatch):
        async def broken_capture(*args, **kwargs):
            raise RuntimeError("audit table unavailable")

        monkeypatch.setattr(store.audit, "capture", broken_capture)

        with pytest.raises(RuntimeError):
            await store.update_job(test_job.id, 1, {"notes": "lost?"})

        job = await store.get_job(test_job.id)
        assert job.version == 1
        assert job.notes is None

    @pytest.mark.asyncio
    async def test_timeout_reports_unknown_outcome(self, store, test_customer, monkeypatch):
        async def slow_check(customer_id):
            await asyncio.sleep(1)

        monkeypatch.setattr(settings, "store_call_timeout_seconds", 0.05)
        monkeypatch.setattr(store, "_require_customer", slow_check)

        with pytest.raises(StoreTimeoutException) as exc_info:
            await store.create_job({"customer_id": test_customer.id, "machine_category": "Edger"})

        assert exc_info.value.code == ErrorCode.OUTCOME_UNKNOWN
        assert exc_info.value.status_code == 504


class TestSoftDelete:
    """Deletion marks the job and keeps its history."""

    @pytest.mark.asyncio
    async def test_delete_hides_job(self, store, test_job):
        result = await store.delete_job(test_job.id, 1, actor="manager")

        assert result.new_version == 2
        with pytest.raises(RecordNotFoundException):
            await store.get_job(test_job.id)

        job = await store.get_job(test_job.id, include_deleted=True)
        assert job.deleted_at is not None

        entry = await store.audit.get_entry(result.audit_entry_id)
        assert entry.operation == AuditOperation.DELETE
        assert entry.changed_fields == ["deleted_at"]

    @pytest.mark.asyncio
    async def test_deleted_job_cannot_be_updated(self, store, test_job):
        await store.delete_job(test_job.id, 1)

        with pytest.raises(RecordNotFoundException):
            await store.update_job(test_job.id, 2, {"notes": "x"})

    @pytest.mark.asyncio
    async def test_undelete(self, store, test_job):
        await store.delete_job(test_job.id, 1)
        result = await store.undelete_job(test_job.id, 2)

        assert result.new_version == 3
        assert (await store.get_job(test_job.id)).deleted_at is None


class TestPayments:
    """Payments reduce the balance through an audited write."""

    @pytest.mark.asyncio
    async def test_payment_updates_balance(self, store, test_job):
        result = await store.record_payment(test_job.id, 1, Decimal("100.00"), method="card")

        job = result.record
        assert result.new_version == 2
        assert job.amount_paid == Decimal("100.00")
        assert job.balance_due == Decimal("52.90")
        assert len(job.payments) == 1
        assert job.payments[0].method == "card"

        entry = await store.audit.get_entry(result.audit_entry_id)
        assert entry.source == "payments_api"
        assert set(entry.changed_fields) == {"amount_paid", "balance_due"}

    @pytest.mark.asyncio
    async def test_overpayment_rejected(self, store, test_job):
        with pytest.raises(InvalidAmountException):
            await store.record_payment(test_job.id, 1, Decimal("200.00"))

    @pytest.mark.asyncio
    async def test_zero_payment_rejected(self, store, test_job):
        with pytest.raises(InvalidAmountException):
            await store.record_payment(test_job.id, 1, Decimal("0"))

    @pytest.mark.asyncio
    async def test_payment_with_stale_version(self, store, test_job):
        await store.update_job(test_job.id, 1, {"notes": "x"})

        with pytest.raises(VersionConflictException):
            await store.record_payment(test_job.id, 1, Decimal("10.00"))


class TestCustomers:
    """Customers share the versioned write path."""

    @pytest.mark.asyncio
    async def test_update_customer(self, store, test_customer):
        result = await store.update_customer(test_customer.id, 1, {"phone": "0400 000 000"})

        assert result.new_version == 2
        assert result.record.phone == "0400 000 000"

        entry = await store.audit.get_entry(result.audit_entry_id)
        assert entry.table_name == "customers"
        assert entry.changed_fields == ["phone"]

    @pytest.mark.asyncio
    async def test_customer_conflict(self, store, test_customer):
        await store.update_customer(test_customer.id, 1, {"notes": "VIP"})

        with pytest.raises(VersionConflictException):
            await store.update_customer(test_customer.id, 1, {"notes": "Slow payer"})

    @pytest.mark.asyncio
    async def test_relink_job_to_other_customer(self, store, test_job, second_customer):
        result = await store.update_job(test_job.id, 1, {"customer_id": second_customer.id})

        assert result.record.customer_id == second_customer.id
        entry = await store.audit.get_entry(result.audit_entry_id)
        assert entry.new_values["customer_id"] == str(second_customer.id)

