"""
Unit tests for core models.

These tests verify the data models without external dependencies.
"""

import pytest
from datetime import timezone

from erpsync.core.models import (
    EntityType, EstimateResult, JobStatus, PHASE_ORDER, ProcessingStatus,
    RemoteConnection, StagingRecord, SyncJob, SyncResult,
)


class TestEnums:
    """Tests for entity and job status enums."""

    def test_phase_order(self):
        assert PHASE_ORDER == [EntityType.PARTNER, EntityType.INVOICE, EntityType.INVOICE_LINE]

    def test_only_lines_are_children(self):
        assert EntityType.INVOICE_LINE.is_child
        assert not EntityType.INVOICE.is_child
        assert not EntityType.PARTNER.is_child

    @pytest.mark.parametrize("status,terminal", [
        (JobStatus.RUNNING, False),
        (JobStatus.COMPLETED, True),
        (JobStatus.FAILED, True),
        (JobStatus.CANCELLED, True),
    ])
    def test_terminal_statuses(self, status, terminal):
        assert status.is_terminal is terminal

    def test_values_are_strings(self):
        assert EntityType("invoice_line") == EntityType.INVOICE_LINE
        assert JobStatus.COMPLETED == "completed"


class TestRemoteConnection:
    """Tests for RemoteConnection."""

    def test_endpoints_ignore_trailing_slash(self):
        connection = RemoteConnection("main", "https://erp.example.com/", "db", "u", "k", "t")

        assert connection.common_endpoint == "https://erp.example.com/xmlrpc/2/common"
        assert connection.object_endpoint == "https://erp.example.com/xmlrpc/2/object"

    def test_immutable(self):
        connection = RemoteConnection("main", "https://erp", "db", "u", "k", "t")

        with pytest.raises(AttributeError):
            connection.api_key = "other"


class TestStagingRecord:
    """Tests for StagingRecord."""

    def test_defaults(self):
        record = StagingRecord(EntityType.INVOICE, 500, "holding-1", {"id": 500}, "batch_1")

        assert record.processing_status == ProcessingStatus.PENDING
        assert record.parent_local_id is None
        assert record.local_id
        assert record.created_at.tzinfo == timezone.utc

    def test_unique_local_ids(self):
        first = StagingRecord(EntityType.INVOICE, 500, "t", {}, "b")
        second = StagingRecord(EntityType.INVOICE, 500, "t", {}, "b")

        assert first.local_id != second.local_id
        assert first.get_key() == second.get_key() == "invoice:t:500"

    def test_key_differs_per_tenant(self):
        first = StagingRecord(EntityType.PARTNER, 1, "holding-1", {}, "b")
        second = StagingRecord(EntityType.PARTNER, 1, "holding-2", {}, "b")

        assert first.get_key() != second.get_key()


class TestSyncJob:
    """Tests for SyncJob."""

    def test_new_job_is_running(self):
        job = SyncJob(EntityType.PARTNER, "main", "holding-1")

        assert job.status == JobStatus.RUNNING
        assert (job.records_processed, job.records_success, job.records_failed) == (0, 0, 0)
        assert job.completed_at is None
        assert job.error_details is None


class TestResults:
    """Tests for the summary objects."""

    def test_sync_result_dict(self):
        result = SyncResult(
            success=True, message="done", batch_id="batch_1",
            invoices_synced=3, lines_synced=7, partners_synced=2, errors=1, total_processed=8,
        )

        payload = result.to_dict()
        assert payload["totalProcessed"] == 8
        assert payload["stats"]["errors"] == 1
        assert payload["stats"]["saved_lines"] == 7

    def test_lines_per_invoice_rounds(self):
        result = EstimateResult(total_lines=2, total_invoices=3, total_partners=1,
                                total_invoices_without_product_lines=0)

        assert result.lines_per_invoice == 0.67

    def test_lines_per_invoice_without_invoices(self):
        result = EstimateResult(total_lines=0, total_invoices=0, total_partners=0,
                                total_invoices_without_product_lines=0)

        assert result.lines_per_invoice == 0
