"""
Three-phase sync orchestrator.

Pulls partners, then invoices, then invoice lines from the remote
system into staging storage. Each phase has its own job; a phase that
fails is recorded on its job and the next phase is still attempted.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from ..core.exceptions import (
    MissingParentError, PersistenceError, SyncCancelled, SyncError,
)
from ..core.logging import CorrelationContext
from ..core.models import (
    EntityType, JobStatus, PhaseOutcome, PHASE_ORDER, new_batch_id,
)
from ..fetch.entity_fetcher import EntityFetcher
from ..fetch.remote_models import (
    INVOICE_FIELDS, INVOICE_MODEL, INVOICE_ORDER, LINE_FIELDS, LINE_MODEL,
    LINE_ORDER, PARENT_REFERENCE_FIELD, PARTNER_FIELDS, PARTNER_MODEL,
    PARTNER_REFERENCE_FIELDS, invoice_domain, lines_of_invoices_domain,
    many2one_id, partner_ids_of, product_line_domain,
)
from ..jobs.tracker import JobTracker
from ..staging.writer import StagingWriter
from .background import PhaseLocks


logger = logging.getLogger(__name__)

JOB_KEYS: Dict[EntityType, str] = {
    EntityType.PARTNER: "partners",
    EntityType.INVOICE: "invoices",
    EntityType.INVOICE_LINE: "invoice_lines",
}


@dataclass
class OrchestratorConfig:
    """
    Configuration for the sync orchestrator.

    Attributes:
        page_size: Records per page (search limit and read batch)
        phase_delay_seconds: Extra settle delay after each phase's barrier
        lock_timeout: Seconds to wait for a busy phase lock (None = wait forever)
    """
    page_size: int = 100
    phase_delay_seconds: float = 0.0
    lock_timeout: Optional[float] = None


@dataclass
class SyncRequest:
    """Parameters of one full sync run."""
    connection_id: str
    tenant_id: str
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    sync_session_id: Optional[str] = None


class _PhaseCounters:
    """Per-phase counters flushed to the job tracker after each page."""

    def __init__(self, tracker: JobTracker, job_id: str):
        self.tracker = tracker
        self.job_id = job_id
        self.processed = 0
        self.succeeded = 0
        self.failed = 0

    def success(self) -> None:
        self.processed += 1
        self.succeeded += 1

    def failure(self) -> None:
        self.processed += 1
        self.failed += 1

    def flush(self) -> None:
        self.tracker.record_progress(self.job_id, self.processed, self.succeeded, self.failed)


class SyncOrchestrator:
    """
    Coordinates the three sync phases for one connection.

    Manages the workflow:
    1. Create the three jobs (running)
    2. Authenticate; failure fails all three jobs
    3. Partners -> barrier -> invoices -> barrier -> invoice lines
    4. Complete, fail or cancel each job independently
    """

    def __init__(
        self,
        fetcher: EntityFetcher,
        writer: StagingWriter,
        tracker: JobTracker,
        config: Optional[OrchestratorConfig] = None,
        locks: Optional[PhaseLocks] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the orchestrator.

        Args:
            fetcher: Entity fetcher bound to the connection's session
            writer: Staging writer
            tracker: Job tracker
            config: Orchestrator configuration (uses defaults if not provided)
            locks: Shared phase locks (private registry if not provided)
            sleep: Sleep function for the inter-phase delay
        """
        self.fetcher = fetcher
        self.writer = writer
        self.tracker = tracker
        self.config = config or OrchestratorConfig()
        self.locks = locks or PhaseLocks()
        self._sleep = sleep

    def create_jobs(self, request: SyncRequest, run_id: Optional[str] = None) -> Dict[str, str]:
        """Create the three running jobs of a run, keyed partners/invoices/invoice_lines."""
        run_id = run_id or str(uuid.uuid4())
        return {
            JOB_KEYS[entity_type]: self.tracker.create(
                entity_type, request.connection_id, request.tenant_id, run_id=run_id,
            )
            for entity_type in PHASE_ORDER
        }

    def run(
        self,
        request: SyncRequest,
        job_ids: Dict[str, str],
        run_id: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Dict[EntityType, PhaseOutcome]:
        """
        Execute the three phases in order.

        Args:
            request: Sync parameters
            job_ids: Jobs created by ``create_jobs``
            run_id: Run identifier for log correlation
            cancel_event: Cancellation token checked at page boundaries

        Returns:
            Outcome of each phase
        """
        cancel_event = cancel_event or threading.Event()
        batch_id = new_batch_id()

        with CorrelationContext(
            run_id=run_id,
            connection_id=request.connection_id,
            tenant_id=request.tenant_id,
            batch_id=batch_id,
        ):
            logger.info(
                f"Starting sync for connection {request.connection_id} "
                f"({request.start_date or '-'} .. {request.end_date or '-'})"
            )

            try:
                self.fetcher.session.authenticate()
            except Exception as e:
                logger.error(
                    f"Authentication failed, failing all jobs: {e}",
                    exc_info=not isinstance(e, SyncError),
                )
                return self.fail_all(job_ids, e)

            outcomes: Dict[EntityType, PhaseOutcome] = {}
            outcomes[EntityType.PARTNER] = self._run_phase(
                EntityType.PARTNER, request, job_ids, cancel_event,
                lambda outcome, counters: self._sync_partners(request, batch_id, outcome, counters, cancel_event),
            )
            self._barrier(request, outcomes[EntityType.PARTNER])

            outcomes[EntityType.INVOICE] = self._run_phase(
                EntityType.INVOICE, request, job_ids, cancel_event,
                lambda outcome, counters: self._sync_invoices(request, batch_id, outcome, counters, cancel_event),
            )
            self._barrier(request, outcomes[EntityType.INVOICE])

            invoice_outcome = outcomes[EntityType.INVOICE]
            outcomes[EntityType.INVOICE_LINE] = self._run_phase(
                EntityType.INVOICE_LINE, request, job_ids, cancel_event,
                lambda outcome, counters: self._sync_lines(
                    request, batch_id, invoice_outcome, outcome, counters, cancel_event,
                ),
            )

            summary = ", ".join(
                f"{entity_type.value}={outcome.status.value}"
                for entity_type, outcome in outcomes.items()
            )
            logger.info(f"Sync finished: {summary}")
            return outcomes

    def fail_all(self, job_ids: Dict[str, str], error: BaseException) -> Dict[EntityType, PhaseOutcome]:
        """Mark every job of a run failed with the same error detail."""
        detail = {"type": type(error).__name__, "message": str(error)}
        failed = {}
        for entity_type in PHASE_ORDER:
            self.tracker.fail(job_ids[JOB_KEYS[entity_type]], detail)
            failed[entity_type] = PhaseOutcome(entity_type, JobStatus.FAILED, error=str(error))
        return failed

    # ------------------------------------------------------------------
    # Phase plumbing
    # ------------------------------------------------------------------

    def _run_phase(
        self,
        entity_type: EntityType,
        request: SyncRequest,
        job_ids: Dict[str, str],
        cancel_event: threading.Event,
        body: Callable[[PhaseOutcome, _PhaseCounters], None],
    ) -> PhaseOutcome:
        job_id = job_ids[JOB_KEYS[entity_type]]
        outcome = PhaseOutcome(entity_type, JobStatus.RUNNING)

        with CorrelationContext(job_id=job_id, entity_type=entity_type.value):
            if cancel_event.is_set():
                self.tracker.cancel(job_id)
                outcome.status = JobStatus.CANCELLED
                return outcome

            counters = _PhaseCounters(self.tracker, job_id)
            try:
                with self.locks.hold(request.connection_id, entity_type, self.config.lock_timeout):
                    logger.info(f"Phase {entity_type.value} started")
                    body(outcome, counters)
                self.tracker.complete(job_id)
                outcome.status = JobStatus.COMPLETED

            except SyncCancelled:
                logger.warning(f"Phase {entity_type.value} cancelled")
                self.tracker.cancel(job_id)
                outcome.status = JobStatus.CANCELLED

            except Exception as e:
                logger.error(f"Phase {entity_type.value} failed: {e}", exc_info=True)
                self.tracker.fail(job_id, {"type": type(e).__name__, "message": str(e)})
                outcome.status = JobStatus.FAILED
                outcome.error = str(e)

        return outcome

    def _check_cancelled(self, cancel_event: threading.Event) -> None:
        if cancel_event.is_set():
            raise SyncCancelled("Sync cancelled")

    def _barrier(self, request: SyncRequest, outcome: PhaseOutcome) -> None:
        """Confirm the phase's writes are readable before the next phase starts."""
        if outcome.written_ids:
            try:
                missing = self.writer.confirm_written(
                    outcome.entity_type, request.tenant_id, outcome.written_ids,
                )
            except PersistenceError as e:
                logger.error(f"Could not confirm {outcome.entity_type.value} writes: {e}")
            else:
                if missing:
                    logger.warning(
                        f"{len(missing)} {outcome.entity_type.value} records not yet "
                        f"readable after phase: {missing[:10]}"
                    )
        if self.config.phase_delay_seconds > 0:
            self._sleep(self.config.phase_delay_seconds)

    def _stage_page(
        self,
        entity_type: EntityType,
        records: List[Dict[str, Any]],
        request: SyncRequest,
        batch_id: str,
        outcome: PhaseOutcome,
        counters: _PhaseCounters,
    ) -> None:
        """Upsert one page of records; per-record failures are counted, not raised."""
        for record in records:
            remote_id = record.get("id")
            try:
                parent_local_id = None
                parent_remote_id = None
                if entity_type.is_child:
                    parent_remote_id = many2one_id(record.get(PARENT_REFERENCE_FIELD))
                    parent_local_id = self.writer.resolve_parent(parent_remote_id, request.tenant_id)

                self.writer.upsert(
                    entity_type,
                    remote_id,
                    request.tenant_id,
                    record,
                    batch_id,
                    sync_session_id=request.sync_session_id,
                    parent_local_id=parent_local_id,
                    parent_remote_id=parent_remote_id,
                )
                counters.success()
                outcome.written_ids.append(remote_id)

            except (MissingParentError, PersistenceError) as e:
                logger.warning(f"Failed to stage {entity_type.value} {remote_id}: {e}")
                counters.failure()

        counters.flush()

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _sync_partners(
        self,
        request: SyncRequest,
        batch_id: str,
        outcome: PhaseOutcome,
        counters: _PhaseCounters,
        cancel_event: threading.Event,
    ) -> None:
        page_size = self.config.page_size
        domain = invoice_domain(request.start_date, request.end_date)

        # Only the partner ids are kept across invoice pages
        seen: Dict[int, None] = {}
        invoice_count = 0
        for page in self.fetcher.iter_id_pages(INVOICE_MODEL, domain, page_size, order=INVOICE_ORDER):
            self._check_cancelled(cancel_event)
            invoice_count += len(page)
            references = self.fetcher.read(INVOICE_MODEL, page, list(PARTNER_REFERENCE_FIELDS))
            for partner_id in partner_ids_of(references):
                seen.setdefault(partner_id, None)

        partner_ids = list(seen)
        outcome.remote_ids = partner_ids
        self.tracker.set_progress_total(counters.job_id, len(partner_ids))
        logger.info(f"{len(partner_ids)} partners referenced by {invoice_count} invoices")

        for start in range(0, len(partner_ids), page_size):
            self._check_cancelled(cancel_event)
            records = self.fetcher.read(PARTNER_MODEL, partner_ids[start:start + page_size], PARTNER_FIELDS)
            self._stage_page(EntityType.PARTNER, records, request, batch_id, outcome, counters)

    def _sync_invoices(
        self,
        request: SyncRequest,
        batch_id: str,
        outcome: PhaseOutcome,
        counters: _PhaseCounters,
        cancel_event: threading.Event,
    ) -> None:
        domain = invoice_domain(request.start_date, request.end_date)
        total = self.fetcher.count(INVOICE_MODEL, domain)
        self.tracker.set_progress_total(counters.job_id, total)
        logger.info(f"{total} invoices to sync")

        self._check_cancelled(cancel_event)
        for page in self.fetcher.iter_id_pages(INVOICE_MODEL, domain, self.config.page_size, order=INVOICE_ORDER):
            self._check_cancelled(cancel_event)
            outcome.remote_ids.extend(page)
            records = self.fetcher.read(INVOICE_MODEL, page, INVOICE_FIELDS)
            self._stage_page(EntityType.INVOICE, records, request, batch_id, outcome, counters)

    def _sync_lines(
        self,
        request: SyncRequest,
        batch_id: str,
        invoice_outcome: PhaseOutcome,
        outcome: PhaseOutcome,
        counters: _PhaseCounters,
        cancel_event: threading.Event,
    ) -> None:
        if invoice_outcome.remote_ids:
            domain = lines_of_invoices_domain(invoice_outcome.remote_ids)
        elif invoice_outcome.status is JobStatus.COMPLETED:
            logger.info("No invoices in window, no lines to sync")
            self.tracker.set_progress_total(counters.job_id, 0)
            return
        else:
            # Invoice ids were never collected; filter through the relation instead
            domain = product_line_domain(request.start_date, request.end_date)

        total = self.fetcher.count(LINE_MODEL, domain)
        self.tracker.set_progress_total(counters.job_id, total)
        logger.info(f"{total} invoice lines to sync")

        self._check_cancelled(cancel_event)
        for page in self.fetcher.iter_id_pages(LINE_MODEL, domain, self.config.page_size, order=LINE_ORDER):
            self._check_cancelled(cancel_event)
            outcome.remote_ids.extend(page)
            records = self.fetcher.read(LINE_MODEL, page, LINE_FIELDS)
            self._stage_page(EntityType.INVOICE_LINE, records, request, batch_id, outcome, counters)
