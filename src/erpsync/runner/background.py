"""
Background execution of sync runs.

A ThreadPoolExecutor-based executor that:
- Runs each orchestration as one task, off the caller's thread
- Hands back a SyncHandle (job ids, future, cancellation token)
- Logs task crashes so they are never lost
- Serializes phases per (connection, entity type) through PhaseLocks
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, Optional, Tuple

from ..core.exceptions import JobStateError
from ..core.models import EntityType


logger = logging.getLogger(__name__)


@dataclass
class SyncHandle:
    """
    Handle on a submitted sync run.

    Attributes:
        run_id: Identifier shared by the run's jobs
        job_ids: Job ids keyed "partners", "invoices", "invoice_lines"
        future: Future of the background task
        cancel_event: Cancellation token checked at page boundaries
    """
    run_id: str
    job_ids: Dict[str, str]
    future: Future
    cancel_event: threading.Event = field(default_factory=threading.Event)

    def cancel(self) -> None:
        """Request cancellation; the run stops at its next page boundary."""
        self.cancel_event.set()

    def done(self) -> bool:
        return self.future.done()

    def wait(self, timeout: Optional[float] = None) -> Any:
        """Block until the run finishes and return its result (re-raises task crashes)."""
        return self.future.result(timeout=timeout)


class BackgroundExecutor:
    """Thread pool running sync tasks in the background."""

    def __init__(self, max_workers: int = 2, thread_name_prefix: str = "erpsync"):
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix=thread_name_prefix,
        )
        self._shutdown = False

    def submit(self, task: Callable[..., Any], *args: Any, name: str = "sync", **kwargs: Any) -> Future:
        """
        Submit a task.

        Args:
            task: Callable to run on a worker thread
            name: Label used in crash logs

        Returns:
            Future of the task
        """
        if self._shutdown:
            raise RuntimeError("BackgroundExecutor has been shut down")

        future = self._executor.submit(task, *args, **kwargs)

        def _log_crash(done: Future) -> None:
            if done.cancelled():
                logger.warning(f"Background task {name} was cancelled before it started")
                return
            error = done.exception()
            if error is not None:
                logger.error(
                    f"Background task {name} crashed: {error}",
                    exc_info=(type(error), error, error.__traceback__),
                )

        future.add_done_callback(_log_crash)
        return future

    def shutdown(self, wait: bool = True) -> None:
        self._shutdown = True
        self._executor.shutdown(wait=wait)
        logger.debug("Background executor shut down")


class PhaseLocks:
    """
    In-process advisory locks keyed by (connection id, entity type).

    Two runs against the same connection never execute the same phase
    concurrently; the second waits (or gives up after ``timeout``).
    """

    def __init__(self):
        self._locks: Dict[Tuple[str, EntityType], threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, connection_id: str, entity_type: EntityType) -> threading.Lock:
        key = (connection_id, entity_type)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def is_held(self, connection_id: str, entity_type: EntityType) -> bool:
        return self._lock_for(connection_id, entity_type).locked()

    @contextmanager
    def hold(
        self,
        connection_id: str,
        entity_type: EntityType,
        timeout: Optional[float] = None,
    ) -> Iterator[None]:
        """
        Hold the lock for one phase.

        Raises:
            JobStateError: The lock could not be acquired within ``timeout``
        """
        lock = self._lock_for(connection_id, entity_type)
        acquired = lock.acquire(timeout=timeout) if timeout is not None else lock.acquire()
        if not acquired:
            raise JobStateError(
                f"{entity_type.value} phase for connection {connection_id} "
                f"is already running"
            )
        try:
            yield
        finally:
            lock.release()
