"""
Core abstractions and interfaces for the ERP synchronization engine.
"""

from .models import (
    EntityType, ProcessingStatus, JobStatus, RemoteConnection,
    StagingRecord, SyncJob, PhaseOutcome, SyncResult, EstimateResult,
    PHASE_ORDER, new_batch_id,
)
from .stores import StagingStore, JobStore, SyncStore
from .exceptions import (
    SyncError, TransportError, ProtocolFault, MalformedResponseError,
    AuthenticationError, MissingParentError, PersistenceError,
    JobStateError, ConfigError, SyncCancelled,
)

__all__ = [
    "EntityType",
    "ProcessingStatus",
    "JobStatus",
    "RemoteConnection",
    "StagingRecord",
    "SyncJob",
    "PhaseOutcome",
    "SyncResult",
    "EstimateResult",
    "PHASE_ORDER",
    "new_batch_id",
    "StagingStore",
    "JobStore",
    "SyncStore",
    "SyncError",
    "TransportError",
    "ProtocolFault",
    "MalformedResponseError",
    "AuthenticationError",
    "MissingParentError",
    "PersistenceError",
    "JobStateError",
    "ConfigError",
    "SyncCancelled",
]
