"""
Job tracker: lifecycle and progress counters for sync jobs.
"""

import logging
import threading
from typing import Any, Dict, Optional

from ..core.exceptions import JobStateError
from ..core.models import EntityType, JobStatus, SyncJob, utcnow
from ..core.stores import JobStore


logger = logging.getLogger(__name__)


class JobTracker:
    """
    Creates jobs and applies progress snapshots and status transitions.

    Transitions: running -> completed | failed | cancelled. Terminal jobs
    accept no further changes, and ``records_processed`` never decreases.
    """

    def __init__(self, store: JobStore):
        self.store = store
        self._lock = threading.Lock()

    def create(
        self,
        entity_type: EntityType,
        connection_id: str,
        tenant_id: str,
        run_id: Optional[str] = None,
    ) -> str:
        """Create a running job with zeroed counters and return its id."""
        job = SyncJob(
            entity_type=entity_type,
            connection_id=connection_id,
            tenant_id=tenant_id,
            run_id=run_id,
        )
        self.store.create_job(job)
        logger.debug(f"Created {entity_type.value} job {job.job_id}")
        return job.job_id

    def get(self, job_id: str) -> SyncJob:
        job = self.store.get_job(job_id)
        if job is None:
            raise JobStateError(f"Unknown job: {job_id}")
        return job

    def set_progress_total(self, job_id: str, total: int) -> None:
        if total < 0:
            raise ValueError("progress total cannot be negative")
        with self._lock:
            job = self._running_job(job_id)
            job.progress_total = total
            self.store.save_job(job)

    def record_progress(self, job_id: str, processed: int, succeeded: int, failed: int) -> None:
        """
        Apply an absolute progress snapshot.

        Raises:
            JobStateError: The job is terminal or ``processed`` would decrease
        """
        with self._lock:
            job = self._running_job(job_id)
            if processed < job.records_processed:
                raise JobStateError(
                    f"Job {job_id}: records_processed cannot decrease "
                    f"({job.records_processed} -> {processed})"
                )
            job.records_processed = processed
            job.records_success = succeeded
            job.records_failed = failed
            self.store.save_job(job)

    def complete(self, job_id: str) -> None:
        self._finish(job_id, JobStatus.COMPLETED)

    def fail(self, job_id: str, error_detail: Dict[str, Any]) -> None:
        self._finish(job_id, JobStatus.FAILED, error_detail)

    def cancel(self, job_id: str, reason: str = "Sync cancelled") -> None:
        self._finish(job_id, JobStatus.CANCELLED, {"type": "Cancelled", "message": reason})

    def progress_percentage(self, job_id: str) -> int:
        return self._percentage(self.get(job_id))

    def status_report(self, job_id: str) -> Dict[str, Any]:
        """Status view of one job as exposed to callers."""
        job = self.get(job_id)
        report: Dict[str, Any] = {
            "job_id": job.job_id,
            "entity_type": job.entity_type.value,
            "status": job.status.value,
            "records_processed": job.records_processed,
            "records_success": job.records_success,
            "records_failed": job.records_failed,
            "progress_percentage": self._percentage(job),
            "started_at": job.started_at.isoformat(),
        }
        if job.completed_at is not None:
            report["completed_at"] = job.completed_at.isoformat()
            report["execution_time_ms"] = int(
                (job.completed_at - job.started_at).total_seconds() * 1000
            )
        if job.error_details:
            report["error_details"] = job.error_details
        return report

    def _finish(self, job_id: str, status: JobStatus, error_detail: Optional[Dict[str, Any]] = None) -> None:
        with self._lock:
            job = self._running_job(job_id)
            job.status = status
            job.completed_at = utcnow()
            if error_detail is not None:
                job.error_details = error_detail
            self.store.save_job(job)
        logger.info(
            f"Job {job_id} ({job.entity_type.value}) {status.value}: "
            f"{job.records_success} ok, {job.records_failed} failed"
        )

    def _running_job(self, job_id: str) -> SyncJob:
        job = self.get(job_id)
        if job.status.is_terminal:
            raise JobStateError(f"Job {job_id} is already {job.status.value}")
        return job

    @staticmethod
    def _percentage(job: SyncJob) -> int:
        if job.status is JobStatus.COMPLETED:
            return 100
        if job.progress_total <= 0:
            return 0
        # half up, not round()'s half to even
        total = job.progress_total
        return min(100, (200 * job.records_processed + total) // (2 * total))
