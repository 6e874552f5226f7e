"""
Unit tests for JobTracker.
"""

import pytest

from erpsync.core.exceptions import JobStateError
from erpsync.core.models import EntityType, JobStatus


@pytest.fixture
def job_id(tracker):
    return tracker.create(EntityType.INVOICE, "main", "holding-1", run_id="run-1")


class TestLifecycle:
    """Tests for job creation and terminal transitions."""

    def test_created_running_with_zero_counters(self, tracker, job_id):
        job = tracker.get(job_id)

        assert job.status == JobStatus.RUNNING
        assert (job.records_processed, job.records_success, job.records_failed) == (0, 0, 0)
        assert job.run_id == "run-1"

    def test_unknown_job(self, tracker):
        with pytest.raises(JobStateError, match="Unknown job"):
            tracker.get("nope")

    def test_complete(self, tracker, job_id):
        tracker.complete(job_id)

        job = tracker.get(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.completed_at is not None

    def test_fail_records_error_detail(self, tracker, job_id):
        tracker.fail(job_id, {"type": "TransportError", "message": "down"})

        job = tracker.get(job_id)
        assert job.status == JobStatus.FAILED
        assert job.error_details == {"type": "TransportError", "message": "down"}

    def test_cancel(self, tracker, job_id):
        tracker.cancel(job_id, "stopped by operator")

        job = tracker.get(job_id)
        assert job.status == JobStatus.CANCELLED
        assert job.error_details["message"] == "stopped by operator"

    @pytest.mark.parametrize("finish", ["complete", "fail", "cancel"])
    def test_terminal_is_final(self, tracker, job_id, finish):
        """Test a terminal job rejects further transitions and progress."""
        tracker.complete(job_id)

        with pytest.raises(JobStateError):
            if finish == "fail":
                tracker.fail(job_id, {"type": "X", "message": "late"})
            else:
                getattr(tracker, finish)(job_id)
        with pytest.raises(JobStateError):
            tracker.record_progress(job_id, 1, 1, 0)

        assert tracker.get(job_id).status == JobStatus.COMPLETED


class TestProgress:
    """Tests for progress snapshots and percentages."""

    def test_record_progress(self, tracker, job_id):
        tracker.record_progress(job_id, 5, 4, 1)

        job = tracker.get(job_id)
        assert (job.records_processed, job.records_success, job.records_failed) == (5, 4, 1)

    def test_processed_never_decreases(self, tracker, job_id):
        """Test a lower snapshot is rejected and the stored value kept."""
        tracker.record_progress(job_id, 5, 5, 0)

        with pytest.raises(JobStateError, match="cannot decrease"):
            tracker.record_progress(job_id, 3, 3, 0)
        assert tracker.get(job_id).records_processed == 5

    def test_same_snapshot_is_allowed(self, tracker, job_id):
        tracker.record_progress(job_id, 5, 5, 0)
        tracker.record_progress(job_id, 5, 5, 0)

        assert tracker.get(job_id).records_processed == 5

    def test_percentage_without_total(self, tracker, job_id):
        """Test an unknown total reports 0 while running."""
        tracker.record_progress(job_id, 10, 10, 0)

        assert tracker.progress_percentage(job_id) == 0

    def test_percentage_partial(self, tracker, job_id):
        tracker.set_progress_total(job_id, 4)
        tracker.record_progress(job_id, 1, 1, 0)

        assert tracker.progress_percentage(job_id) == 25

    @pytest.mark.parametrize("total,processed,expected", [
        (8, 1, 13),
        (200, 5, 3),
        (200, 50, 25),
        (3, 1, 33),
        (3, 2, 67),
    ])
    def test_percentage_rounds_half_up(self, tracker, job_id, total, processed, expected):
        """Test exact halves round up."""
        tracker.set_progress_total(job_id, total)
        tracker.record_progress(job_id, processed, processed, 0)

        assert tracker.progress_percentage(job_id) == expected

    def test_percentage_capped(self, tracker, job_id):
        tracker.set_progress_total(job_id, 2)
        tracker.record_progress(job_id, 3, 3, 0)

        assert tracker.progress_percentage(job_id) == 100

    def test_completed_is_100(self, tracker, job_id):
        """Test a completed job reports 100 even with no records."""
        tracker.complete(job_id)

        assert tracker.progress_percentage(job_id) == 100

    def test_negative_total(self, tracker, job_id):
        with pytest.raises(ValueError):
            tracker.set_progress_total(job_id, -1)


class TestStatusReport:
    """Tests for status_report."""

    def test_running_report(self, tracker, job_id):
        report = tracker.status_report(job_id)

        assert report["job_id"] == job_id
        assert report["entity_type"] == "invoice"
        assert report["status"] == "running"
        assert report["progress_percentage"] == 0
        assert "completed_at" not in report
        assert "error_details" not in report

    def test_failed_report(self, tracker, job_id):
        tracker.record_progress(job_id, 2, 1, 1)
        tracker.fail(job_id, {"type": "ProtocolFault", "message": "RPC fault 2: nope"})

        report = tracker.status_report(job_id)
        assert report["status"] == "failed"
        assert report["records_failed"] == 1
        assert report["error_details"]["type"] == "ProtocolFault"
        assert report["execution_time_ms"] >= 0
