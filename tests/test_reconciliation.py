"""
Workshop Ledger - Reconciliation Engine Tests
"""

import csv
import io
import json

import pytest

from app.models.audit import AuditOperation
from app.schemas.reconciliation import MismatchKind
from app.services.reconciliation_service import (
    RECONCILIATION_CSV_COLUMNS,
    LiveLinkage,
    ReconciliationService,
    compare_linkages,
    mismatches_to_csv,
    parse_baseline,
)
from app.services.record_store import SOURCE_RELINK
from app.utils.error_handling import ErrorCode, ReconciliationInputException


@pytest.fixture
def reconciliation(db_session) -> ReconciliationService:
    return ReconciliationService(db_session)


def _baseline(job_number, customer_id, name=None):
    return {"jobNumber": job_number, "customer": {"id": str(customer_id), "name": name}}


class TestParseBaseline:

    def test_nested_and_flat_forms(self):
        entries = parse_baseline([
            {"jobNumber": "JB2025-0001", "customer": {"id": "c-1", "name": "Margaret Hill"}},
            {"jobNumber": "JB2025-0002", "customerId": "c-2", "customerName": "Greenway"},
        ])

        assert [e.job_number for e in entries] == ["JB2025-0001", "JB2025-0002"]
        assert entries[1].customer.id == "c-2"
        assert entries[1].customer.name == "Greenway"

    def test_accepts_raw_json_text(self):
        text = json.dumps([{"jobNumber": "JB2025-0001", "customer": {"id": "c-1"}}])
        assert len(parse_baseline(text)) == 1

    @pytest.mark.parametrize(
        "payload",
        [
            "not json at all",
            b"{broken",
            [],
            {"jobNumber": "JB2025-0001"},
            ["JB2025-0001"],
            [{"jobNumber": "JB2025-0001"}],
            [{"jobNumber": "", "customer": {"id": "c-1"}}],
            [
                {"jobNumber": "JB2025-0001", "customer": {"id": "c-1"}},
                {"jobNumber": "jb2025-0001", "customer": {"id": "c-2"}},
            ],
        ],
    )
    def test_invalid_baseline_rejected(self, payload):
        with pytest.raises(ReconciliationInputException) as exc_info:
            parse_baseline(payload)

        assert exc_info.value.code == ErrorCode.RECONCILIATION_INPUT_INVALID


class TestCompareLinkages:

    def test_kinds_and_order(self):
        baseline = parse_baseline([
            {"jobNumber": "JB2025-0030", "customer": {"id": "C1", "name": "X"}},
            {"jobNumber": "JB2025-0031", "customer": {"id": "c2", "name": "Y"}},
            {"jobNumber": "JB2025-0032", "customer": {"id": "c3", "name": "Z"}},
        ])
        live = [
            LiveLinkage("JB2025-0050", "c9", "Late"),
            LiveLinkage("JB2025-0030", "c1", "X"),
            LiveLinkage("JB2025-0031", "c5", "Other"),
            LiveLinkage("JB2025-0040", "c8", "Walk-in"),
        ]

        mismatches = compare_linkages(baseline, live)

        assert [(m.job_number, m.kind) for m in mismatches] == [
            ("JB2025-0031", MismatchKind.MISMATCH),
            ("JB2025-0032", MismatchKind.MISSING),
            ("JB2025-0040", MismatchKind.EXTRA),
            ("JB2025-0050", MismatchKind.EXTRA),
        ]
        mismatch = mismatches[0]
        assert mismatch.baseline_customer_name == "Y"
        assert mismatch.actual_customer_name == "Other"
        assert mismatches[1].actual_customer_id is None

    def test_same_inputs_same_output(self):
        baseline = parse_baseline([_baseline("JB2025-0001", "c1")])
        live = [LiveLinkage("JB2025-0003", "c3"), LiveLinkage("JB2025-0002", "c2")]

        assert compare_linkages(baseline, live) == compare_linkages(baseline, list(reversed(live)))

    def test_csv_export(self):
        baseline = parse_baseline([_baseline("JB2025-0001", "c1", "Margaret Hill")])
        mismatches = compare_linkages(baseline, [LiveLinkage("JB2025-0001", "c2", "Greenway")])

        rows = list(csv.reader(io.StringIO(mismatches_to_csv(mismatches))))

        assert rows[0] == RECONCILIATION_CSV_COLUMNS
        assert rows[1] == ["JB2025-0001", "MISMATCH", "Margaret Hill", "c1", "Greenway", "c2"]


class TestAnalyze:

    @pytest.mark.asyncio
    async def test_relinked_job_is_mismatch(
        self, reconciliation, store, test_job, test_customer, second_customer
    ):
        baseline = [_baseline(test_job.job_number, test_customer.id, test_customer.name)]
        await store.update_job(test_job.id, 1, {"customer_id": second_customer.id})

        report = await reconciliation.analyze(baseline)

        assert report.mismatched == 1
        assert report.matched == 0
        mismatch = report.mismatches[0]
        assert mismatch.kind == MismatchKind.MISMATCH
        assert mismatch.baseline_customer_name == "Margaret Hill"
        assert mismatch.actual_customer_name == "Greenway Landscaping"
        assert mismatch.actual_customer_id == str(second_customer.id)

    @pytest.mark.asyncio
    async def test_deleted_job_is_missing(self, reconciliation, store, test_job, test_customer):
        baseline = [_baseline(test_job.job_number, test_customer.id)]
        await store.delete_job(test_job.id, 1)

        report = await reconciliation.analyze(baseline)

        assert report.missing == 1
        assert report.live_count == 0
        assert report.mismatches[0].kind == MismatchKind.MISSING

    @pytest.mark.asyncio
    async def test_new_job_is_extra(self, reconciliation, store, test_job, test_customer, second_customer):
        baseline = [_baseline(test_job.job_number, test_customer.id)]
        other = await store.create_job({"customer_id": second_customer.id, "machine_category": "Chainsaw"})

        report = await reconciliation.analyze(baseline)

        assert report.matched == 1
        assert [(m.job_number, m.kind) for m in report.mismatches] == [
            (other.job_number, MismatchKind.EXTRA),
        ]

    @pytest.mark.asyncio
    async def test_exported_baseline_matches_everything(self, reconciliation, store, test_job, second_customer):
        await store.create_job({"customer_id": second_customer.id, "machine_category": "Chainsaw"})

        baseline = await reconciliation.export_baseline()
        report = await reconciliation.analyze(baseline)

        assert report.baseline_count == 2
        assert report.matched == 2
        assert report.mismatches == []

    @pytest.mark.asyncio
    async def test_analysis_writes_nothing(self, reconciliation, store, test_job, second_customer):
        await reconciliation.analyze([_baseline(test_job.job_number, second_customer.id)])

        job = await store.get_job(test_job.id)
        assert job.version == 1
        assert len(await store.audit.get_record_history("jobs", test_job.id)) == 1


class TestRelink:

    @pytest.mark.asyncio
    async def test_relink_is_versioned_and_audited(
        self, reconciliation, store, test_job, test_customer, second_customer
    ):
        await store.update_job(test_job.id, 1, {"customer_id": second_customer.id})

        result = await reconciliation.relink(
            test_job.job_number, test_customer.id, expected_version=2, actor="manager"
        )

        assert result.new_version == 3
        assert result.record.customer_id == test_customer.id
        entry = await store.audit.get_entry(result.audit_entry_id)
        assert entry.operation == AuditOperation.UPDATE
        assert entry.source == SOURCE_RELINK
        assert entry.changed_fields == ["customer_id"]
