"""
Storage ports for staging records and sync jobs.

The orchestrator only talks to storage through these interfaces; the
concrete engines live in ``erpsync.state``.
"""

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from .models import EntityType, StagingRecord, SyncJob


class StagingStore(ABC):
    """
    Abstract base class for staging storage.

    Implementations must keep at most one record per
    (entity_type, tenant_id, remote_id).
    """

    @abstractmethod
    def find(
        self,
        entity_type: EntityType,
        remote_id: int,
        tenant_id: str,
    ) -> Optional[StagingRecord]:
        """
        Look up a staging record by its uniqueness key.

        Returns:
            The record if found, None otherwise
        """
        pass

    @abstractmethod
    def insert(self, record: StagingRecord) -> None:
        """
        Insert a new staging record.

        Raises:
            PersistenceError if the write fails
        """
        pass

    @abstractmethod
    def update(self, record: StagingRecord) -> None:
        """
        Replace payload, batch id, session id, status and updated timestamp
        of an existing record in place.

        Raises:
            PersistenceError if the write fails or the record is unknown
        """
        pass

    @abstractmethod
    def find_existing_ids(
        self,
        entity_type: EntityType,
        tenant_id: str,
        remote_ids: Iterable[int],
    ) -> List[int]:
        """Return the subset of remote_ids that are staged for the tenant."""
        pass

    @abstractmethod
    def count(self, entity_type: EntityType, tenant_id: Optional[str] = None) -> int:
        """Count staging records of one entity type, optionally per tenant."""
        pass

    def close(self) -> None:
        """Close any open resources. Optional."""
        pass


class JobStore(ABC):
    """Abstract base class for sync job persistence."""

    @abstractmethod
    def create_job(self, job: SyncJob) -> None:
        """Persist a new job."""
        pass

    @abstractmethod
    def get_job(self, job_id: str) -> Optional[SyncJob]:
        """Load a job by id, None if unknown."""
        pass

    @abstractmethod
    def save_job(self, job: SyncJob) -> None:
        """Persist the current state of an existing job."""
        pass

    @abstractmethod
    def list_jobs(self, run_id: str) -> List[SyncJob]:
        """All jobs belonging to one run, in creation order."""
        pass

    def close(self) -> None:
        """Close any open resources. Optional."""
        pass


class SyncStore(StagingStore, JobStore):
    """A backend that stores both staging records and jobs."""

    def close(self) -> None:
        pass
