"""
Workshop Ledger - Shadow Audit Monitor Tests

Writes made through the record store are expected; anything written around
it must show up as a detection.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import delete, update

from app.models.audit import AuditOperation
from app.models.job import Job, JobLineItem
from app.models.shadow_audit import ShadowAuditType, ShadowSeverity
from app.services.shadow_audit_service import ShadowAuditService, classify_fields, is_known_source
from app.tasks.scheduled_tasks import TaskRunner, run_shadow_audit_scan
from app.utils.error_handling import NotFoundException


@pytest.fixture
def monitor(db_session) -> ShadowAuditService:
    return ShadowAuditService(db_session)


async def _direct_update(db_session, job_id, **values):
    """Write to a job the way a rogue script would: no version, no audit."""
    await db_session.execute(
        update(Job).where(Job.id == job_id).values(**values).execution_options(synchronize_session=False)
    )
    await db_session.commit()


def _types(entries):
    return sorted(entry.audit_type for entry in entries)


class TestClassification:

    @pytest.mark.parametrize(
        "fields,expected",
        [
            (["grand_total"], ShadowSeverity.CRITICAL),
            (["customer_id", "notes"], ShadowSeverity.CRITICAL),
            (["line_items"], ShadowSeverity.CRITICAL),
            (["notes"], ShadowSeverity.WARNING),
            (["machine_serial", "status"], ShadowSeverity.WARNING),
            ([], ShadowSeverity.INFO),
        ],
    )
    def test_classify_fields(self, fields, expected):
        assert classify_fields(fields) == expected

    @pytest.mark.parametrize(
        "source,known",
        [
            ("jobs_api", True),
            ("manual_restore: wrong labour", True),
            ("manual_rebuild: lost parts", True),
            ("rejection of audit entry 12", True),
            ("reconciliation_relink", True),
            ("spreadsheet_import", False),
            ("", False),
            (None, False),
        ],
    )
    def test_known_sources(self, source, known):
        assert is_known_source(source) is known


class TestScan:

    @pytest.mark.asyncio
    async def test_store_writes_raise_nothing(self, monitor, store, test_job, second_customer):
        await store.update_job(test_job.id, 1, {"labour_hours": Decimal("2"), "notes": "Checked"})
        await store.record_payment(test_job.id, 2, Decimal("50.00"))
        await store.update_job(test_job.id, 3, {"customer_id": second_customer.id})
        await store.update_job(test_job.id, 4, {"status": "completed"})
        other = await store.create_job({"customer_id": second_customer.id, "machine_category": "Blower"})
        await store.delete_job(other.id, 1)

        assert await monitor.scan() == []

    @pytest.mark.asyncio
    async def test_direct_customer_relink(self, db_session, monitor, test_job, test_customer, second_customer):
        await _direct_update(db_session, test_job.id, customer_id=second_customer.id)

        entries = await monitor.scan()

        assert _types(entries) == [ShadowAuditType.CUSTOMER_RELINK]
        entry = entries[0]
        assert entry.severity == ShadowSeverity.CRITICAL
        assert entry.record_id == str(test_job.id)
        assert entry.details["audited_customer_id"] == str(test_customer.id)
        assert entry.details["live_customer_id"] == str(second_customer.id)
        assert entry.details["job_number"] == test_job.job_number

    @pytest.mark.asyncio
    async def test_direct_total_edit_is_drift(self, db_session, monitor, test_job):
        await _direct_update(db_session, test_job.id, grand_total=Decimal("999.00"))

        entries = await monitor.scan()

        assert _types(entries) == [ShadowAuditType.TOTAL_DRIFT, ShadowAuditType.UNAUTHORIZED_WRITE]
        assert all(entry.severity == ShadowSeverity.CRITICAL for entry in entries)
        drift = next(e for e in entries if e.audit_type == ShadowAuditType.TOTAL_DRIFT)
        assert drift.details["fields"]["grand_total"] == {"stored": "999.00", "expected": "152.90"}

    @pytest.mark.asyncio
    async def test_direct_text_edit_is_warning(self, db_session, monitor, test_job):
        await _direct_update(db_session, test_job.id, notes="edited in the database")

        entries = await monitor.scan()

        assert _types(entries) == [ShadowAuditType.UNAUTHORIZED_WRITE]
        assert entries[0].severity == ShadowSeverity.WARNING
        assert entries[0].details["fields"] == ["notes"]

    @pytest.mark.asyncio
    async def test_unknown_audit_source(self, db_session, monitor, store, test_customer):
        await store.audit.capture(
            "customers",
            test_customer.id,
            AuditOperation.UPDATE,
            {"phone": "1"},
            {"phone": "2"},
            "script",
            "spreadsheet_import",
        )
        await db_session.commit()

        entries = await monitor.scan()

        assert _types(entries) == [ShadowAuditType.UNAUTHORIZED_WRITE]
        assert entries[0].severity == ShadowSeverity.WARNING
        assert entries[0].details["source"] == "spreadsheet_import"

    @pytest.mark.asyncio
    async def test_job_created_outside_store(self, db_session, monitor, test_customer):
        db_session.add(
            Job(job_number="JB2025-0999", customer_id=test_customer.id, machine_category="Trimmer")
        )
        await db_session.commit()

        entries = await monitor.scan()

        assert _types(entries) == [ShadowAuditType.UNAUTHORIZED_WRITE]
        assert entries[0].severity == ShadowSeverity.CRITICAL
        assert entries[0].details["reason"] == "no_audit_history"

    @pytest.mark.asyncio
    async def test_hard_delete_is_silent_deletion(self, db_session, monitor, test_job):
        await db_session.execute(delete(JobLineItem).where(JobLineItem.job_id == test_job.id))
        await db_session.execute(delete(Job).where(Job.id == test_job.id))
        await db_session.commit()

        entries = await monitor.scan()

        assert _types(entries) == [ShadowAuditType.SILENT_DELETION]
        assert entries[0].severity == ShadowSeverity.CRITICAL
        assert entries[0].details == {"reason": "row_missing", "job_number": test_job.job_number}

    @pytest.mark.asyncio
    async def test_unaudited_soft_delete(self, db_session, monitor, test_job):
        await _direct_update(db_session, test_job.id, deleted_at=datetime.now(timezone.utc))

        entries = await monitor.scan()

        assert _types(entries) == [ShadowAuditType.SILENT_DELETION]
        assert entries[0].severity == ShadowSeverity.WARNING

    @pytest.mark.asyncio
    async def test_repeat_scan_does_not_duplicate(self, db_session, monitor, test_job, second_customer):
        await _direct_update(db_session, test_job.id, customer_id=second_customer.id)

        first = await monitor.scan()
        second = await monitor.scan()

        assert len(first) == 1
        assert second == []
        assert len(await monitor.list_entries()) == 1

    @pytest.mark.asyncio
    async def test_scan_never_repairs(self, db_session, monitor, store, test_job, second_customer):
        await _direct_update(db_session, test_job.id, customer_id=second_customer.id)

        await monitor.scan()

        job = await store.get_job(test_job.id)
        assert job.customer_id == second_customer.id

    @pytest.mark.asyncio
    async def test_scheduled_task_summary(self, db_session, test_job):
        await _direct_update(db_session, test_job.id, grand_total=Decimal("1.00"))

        result = await run_shadow_audit_scan(db_session)

        assert result == {"new_detections": 2, "new_critical": 2, "unresolved": 2}

    @pytest.mark.asyncio
    async def test_task_runner_on_clean_database(self, session_factory):
        results = await TaskRunner(session_factory).run_scheduled_tasks()

        assert results["run_shadow_audit_scan"] == {
            "status": "success",
            "result": {"new_detections": 0, "new_critical": 0, "unresolved": 0},
        }


class TestResolve:

    @pytest.mark.asyncio
    async def test_resolve_keeps_detection(self, db_session, monitor, test_job):
        await _direct_update(db_session, test_job.id, notes="edited")
        entry = (await monitor.scan())[0]
        details = dict(entry.details)

        resolved = await monitor.resolve(entry.id, resolved_by="manager")

        assert resolved.resolved_at is not None
        assert resolved.resolved_by == "manager"
        assert resolved.severity == ShadowSeverity.WARNING
        assert resolved.details == details
        assert await monitor.summary() == {"unresolved": 0, "critical": 0, "warning": 0}
        assert await monitor.list_entries(unresolved_only=True) == []

    @pytest.mark.asyncio
    async def test_resolve_twice_keeps_first(self, db_session, monitor, test_job):
        await _direct_update(db_session, test_job.id, notes="edited")
        entry = (await monitor.scan())[0]

        first = await monitor.resolve(entry.id, resolved_by="manager")
        resolved_at = first.resolved_at
        second = await monitor.resolve(entry.id, resolved_by="owner")

        assert second.resolved_by == "manager"
        assert second.resolved_at == resolved_at

    @pytest.mark.asyncio
    async def test_resolve_unknown(self, monitor):
        with pytest.raises(NotFoundException):
            await monitor.resolve(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_filters(self, db_session, monitor, test_job, second_customer):
        await _direct_update(db_session, test_job.id, customer_id=second_customer.id, notes="edited")
        await monitor.scan()

        relinks = await monitor.list_entries(audit_type=ShadowAuditType.CUSTOMER_RELINK)
        warnings = await monitor.list_entries(severity=ShadowSeverity.WARNING)

        assert [e.audit_type for e in relinks] == [ShadowAuditType.CUSTOMER_RELINK]
        assert [e.audit_type for e in warnings] == [ShadowAuditType.UNAUTHORIZED_WRITE]
        assert await monitor.summary() == {"unresolved": 2, "critical": 1, "warning": 1}
