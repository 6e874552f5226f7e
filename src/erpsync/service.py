"""
Service facade: the operations callers use to start, watch and size syncs.

Wires configuration, the connection registry, the sync store, transports
and the background executor together.
"""

import logging
import threading
import uuid
from concurrent import futures
from typing import Any, Callable, Dict, List, Optional

from .config.config_loader import ConnectionRegistry, SyncConfig
from .core.exceptions import MalformedResponseError
from .core.models import RemoteConnection
from .core.stores import SyncStore
from .fetch.entity_fetcher import EntityFetcher
from .jobs.tracker import JobTracker
from .rpc.session import RemoteSession
from .rpc.transport import RpcTransport, XmlRpcTransport
from .runner.background import BackgroundExecutor, PhaseLocks, SyncHandle
from .runner.estimate import estimate
from .runner.manual_sync import DEFAULT_LIMIT, ManualSync
from .runner.orchestrator import OrchestratorConfig, SyncOrchestrator, SyncRequest
from .staging.field_filter import FieldFilter
from .staging.writer import StagingWriter
from .state import create_sync_store
from .utils.retry import RetryConfig


logger = logging.getLogger(__name__)

TransportFactory = Callable[[RemoteConnection], RpcTransport]


class SyncService:
    """
    Entry point for sync operations.

    - ``start_sync`` creates the three jobs and returns immediately; the
      run continues on the background executor
    - ``get_job_status`` reports one job
    - ``count_records`` sizes a window without writing anything
    - ``sync_invoices`` stages a single page synchronously
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        store: SyncStore,
        transport_factory: Optional[TransportFactory] = None,
        orchestrator_config: Optional[OrchestratorConfig] = None,
        retry_config: Optional[RetryConfig] = None,
        read_batch_size: int = 80,
        field_filter: Optional[FieldFilter] = None,
        executor: Optional[BackgroundExecutor] = None,
        locks: Optional[PhaseLocks] = None,
    ):
        """
        Initialize the service.

        Args:
            registry: Connection registry
            store: Staging and job store
            transport_factory: Builds a transport per connection (HTTP by default)
            orchestrator_config: Page size, phase delay and lock timeout
            retry_config: Retry policy for remote calls
            read_batch_size: Maximum ids per read call
            field_filter: Payload noise filter
            executor: Background executor for full syncs
            locks: Phase locks shared by all runs of this service
        """
        self.registry = registry
        self.store = store
        self.transport_factory = transport_factory or (lambda connection: XmlRpcTransport())
        self.orchestrator_config = orchestrator_config or OrchestratorConfig()
        self.retry_config = retry_config
        self.read_batch_size = read_batch_size
        self.writer = StagingWriter(store, field_filter)
        self.tracker = JobTracker(store)
        self.executor = executor or BackgroundExecutor()
        self.locks = locks or PhaseLocks()

        self._handles: Dict[str, SyncHandle] = {}
        self._handles_lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config: SyncConfig,
        store: Optional[SyncStore] = None,
        transport_factory: Optional[TransportFactory] = None,
    ) -> "SyncService":
        """Build a service from a loaded configuration."""
        runner = config.get_runner_config()
        transport = config.get_transport_config()

        if store is None:
            state = config.get_state_config()
            backend = state.get("type", "sqlite")
            if backend == "sqlserver":
                sqlserver = state.get("sqlserver", {})
                store = create_sync_store(
                    backend="sqlserver",
                    host=sqlserver.get("host", "localhost"),
                    port=int(sqlserver.get("port", 1433)),
                    database=sqlserver.get("database", "ErpSync"),
                    username=sqlserver.get("user", "sa"),
                    schema=sqlserver.get("schema", "staging"),
                )
            else:
                store = create_sync_store(backend=backend, db_path=state.get("sqlite", {}).get("path"))

        if transport_factory is None:
            def transport_factory(connection: RemoteConnection) -> RpcTransport:
                return XmlRpcTransport(
                    timeout=float(transport.get("timeout", 60.0)),
                    rate_limit_delay=float(transport.get("rate_limit_delay", 0.0)),
                    user_agent=transport.get("user_agent"),
                )

        return cls(
            registry=ConnectionRegistry.from_config(config),
            store=store,
            transport_factory=transport_factory,
            orchestrator_config=OrchestratorConfig(
                page_size=int(runner.get("page_size", 100)),
                phase_delay_seconds=float(runner.get("phase_delay_seconds", 0.0)),
                lock_timeout=runner.get("lock_timeout"),
            ),
            retry_config=RetryConfig(
                max_attempts=int(runner.get("max_attempts", 3)),
                attempt_limits={MalformedResponseError: 2},
            ),
            read_batch_size=int(runner.get("read_batch_size", 80)),
            field_filter=FieldFilter(config.get_staging_config().get("exclude_field_prefixes")),
            executor=BackgroundExecutor(max_workers=int(runner.get("max_workers", 2))),
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def start_sync(
        self,
        connection_id: str,
        tenant_id: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        sync_session_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create the three jobs and run the sync in the background.

        Returns immediately with the job ids. Failures after this point are
        reported through the jobs, never raised here; if the run cannot be
        submitted its jobs are failed and ``success`` is False.

        Raises:
            ConfigError: Unknown connection id
        """
        connection = self.registry.get(connection_id)
        request = SyncRequest(
            connection_id=connection_id,
            tenant_id=tenant_id or connection.tenant_id,
            start_date=start_date,
            end_date=end_date,
            sync_session_id=sync_session_id,
        )

        session = self._open_session(connection)
        orchestrator = SyncOrchestrator(
            fetcher=self._fetcher(session),
            writer=self.writer,
            tracker=self.tracker,
            config=self.orchestrator_config,
            locks=self.locks,
        )

        run_id = str(uuid.uuid4())
        job_ids = orchestrator.create_jobs(request, run_id=run_id)
        cancel_event = threading.Event()

        def _run():
            try:
                return orchestrator.run(request, job_ids, run_id=run_id, cancel_event=cancel_event)
            finally:
                session.close()
                with self._handles_lock:
                    self._handles.pop(run_id, None)

        # Held across submit so the task cannot unregister before it is registered
        with self._handles_lock:
            try:
                future = self.executor.submit(_run, name=f"sync-{run_id}")
            except Exception as e:
                logger.error(f"Could not start sync {run_id}: {e}")
                session.close()
                orchestrator.fail_all(job_ids, e)
                return {
                    "success": False,
                    "message": f"Sync could not be started: {e}",
                    "run_id": run_id,
                    "job_ids": dict(job_ids),
                }
            self._handles[run_id] = SyncHandle(
                run_id=run_id, job_ids=job_ids, future=future, cancel_event=cancel_event,
            )

        logger.info(f"Sync {run_id} started for connection {connection_id}: {job_ids}")
        return {
            "success": True,
            "message": "Sync started; track progress with the job ids",
            "run_id": run_id,
            "job_ids": dict(job_ids),
        }

    def get_handle(self, run_id: str) -> Optional[SyncHandle]:
        """Handle of an active run; None once the run has finished."""
        with self._handles_lock:
            return self._handles.get(run_id)

    def active_runs(self) -> List[str]:
        with self._handles_lock:
            return list(self._handles)

    def wait_for(self, run_id: str, timeout: Optional[float] = None) -> bool:
        """
        Block until a run is no longer active.

        Returns:
            False if the run was still active when ``timeout`` expired
        """
        handle = self.get_handle(run_id)
        if handle is None:
            return True
        futures.wait([handle.future], timeout=timeout)
        return handle.done()

    def cancel_sync(self, run_id: str) -> bool:
        """Request cancellation of a running sync. False if the run is unknown or finished."""
        handle = self.get_handle(run_id)
        if handle is None:
            return False
        handle.cancel()
        logger.info(f"Cancellation requested for sync {run_id}")
        return True

    def get_job_status(self, job_id: str) -> Dict[str, Any]:
        """
        Status view of one job.

        Raises:
            JobStateError: Unknown job id
        """
        return self.tracker.status_report(job_id)

    def count_records(
        self,
        connection_id: str,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Size a sync window. Never writes staging state; remote errors are raised."""
        session = self._open_session(self.registry.get(connection_id))
        try:
            return estimate(self._fetcher(session), date_from, date_to).to_dict()
        finally:
            session.close()

    def sync_invoices(
        self,
        connection_id: str,
        tenant_id: Optional[str] = None,
        limit: int = DEFAULT_LIMIT,
        offset: int = 0,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
        sync_session_id: Optional[str] = None,
        estimate_only: bool = False,
    ) -> Dict[str, Any]:
        """Stage one page of lines with their invoices and partners, synchronously."""
        if estimate_only:
            return self.count_records(connection_id, date_from, date_to)

        connection = self.registry.get(connection_id)
        session = self._open_session(connection)
        try:
            result = ManualSync(self._fetcher(session), self.writer).sync_page(
                tenant_id or connection.tenant_id,
                limit=limit,
                offset=offset,
                date_from=date_from,
                date_to=date_to,
                sync_session_id=sync_session_id,
            )
            return result.to_dict()
        finally:
            session.close()

    def close(self, wait: bool = True) -> None:
        """Stop the executor. The store is left open for its owner to close."""
        self.executor.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _open_session(self, connection: RemoteConnection) -> RemoteSession:
        return RemoteSession(connection, self.transport_factory(connection))

    def _fetcher(self, session: RemoteSession) -> EntityFetcher:
        return EntityFetcher(
            session,
            read_batch_size=self.read_batch_size,
            retry_config=self.retry_config,
        )
