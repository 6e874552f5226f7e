"""
Sync runners: the three-phase orchestrator, manual page sync and estimate.
"""

from .background import BackgroundExecutor, PhaseLocks, SyncHandle
from .estimate import estimate
from .manual_sync import ManualSync
from .orchestrator import JOB_KEYS, OrchestratorConfig, SyncOrchestrator, SyncRequest

__all__ = [
    "BackgroundExecutor",
    "PhaseLocks",
    "SyncHandle",
    "estimate",
    "ManualSync",
    "JOB_KEYS",
    "OrchestratorConfig",
    "SyncOrchestrator",
    "SyncRequest",
]
