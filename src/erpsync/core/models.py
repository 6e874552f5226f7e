"""
Core data models for the synchronization engine.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
import time
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_batch_id(prefix: str = "batch") -> str:
    """Batch identifier of the form prefix_<epoch ms>_<random suffix>."""
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class EntityType(str, Enum):
    """
    Entity types synchronized from the remote system, in phase order.

    PARTNER records are independent, INVOICE records are parents and
    INVOICE_LINE records are children referencing an INVOICE.
    """
    PARTNER = "partner"
    INVOICE = "invoice"
    INVOICE_LINE = "invoice_line"

    @property
    def is_child(self) -> bool:
        return self is EntityType.INVOICE_LINE


PHASE_ORDER: List[EntityType] = [
    EntityType.PARTNER,
    EntityType.INVOICE,
    EntityType.INVOICE_LINE,
]


class ProcessingStatus(str, Enum):
    """Processing marker on a staging record."""
    PENDING = "pending"
    PROCESSED = "processed"
    ERROR = "error"


class JobStatus(str, Enum):
    """Lifecycle status of a sync job."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.RUNNING


@dataclass(frozen=True)
class RemoteConnection:
    """
    Immutable descriptor of a remote ERP endpoint.

    Attributes:
        connection_id: Identifier the connection is resolved by
        url: Base URL of the remote system (no trailing /xmlrpc path)
        database: Remote database name
        username: Login used for authentication
        api_key: API key used as password on every call
        tenant_id: Owning tenant (holding) identifier
    """
    connection_id: str
    url: str
    database: str
    username: str
    api_key: str
    tenant_id: str

    @property
    def common_endpoint(self) -> str:
        return f"{self.url.rstrip('/')}/xmlrpc/2/common"

    @property
    def object_endpoint(self) -> str:
        return f"{self.url.rstrip('/')}/xmlrpc/2/object"

    def __repr__(self) -> str:
        # Never leak the api key into logs
        return (
            f"RemoteConnection(connection_id={self.connection_id!r}, url={self.url!r}, "
            f"database={self.database!r}, username={self.username!r}, "
            f"tenant_id={self.tenant_id!r})"
        )


@dataclass
class StagingRecord:
    """
    Locally persisted, not-yet-business-processed copy of a remote entity.

    Attributes:
        entity_type: Which entity this record stages
        remote_id: Numeric id on the remote system
        tenant_id: Owning tenant
        payload: Decoded remote record as a plain attribute map
        batch_id: Sync batch that last wrote the record
        sync_session_id: Optional caller-supplied session identifier
        processing_status: pending / processed / error
        parent_local_id: For child records, local id of the parent record
        parent_remote_id: For child records, remote id of the parent record
        local_id: Local staging identifier
        created_at: First time the record was staged
        updated_at: Last time the record was written
    """
    entity_type: EntityType
    remote_id: int
    tenant_id: str
    payload: Dict[str, Any]
    batch_id: str
    sync_session_id: Optional[str] = None
    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    parent_local_id: Optional[str] = None
    parent_remote_id: Optional[int] = None
    local_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def get_key(self) -> str:
        """Stable uniqueness key: entity type, tenant and remote id."""
        return f"{self.entity_type.value}:{self.tenant_id}:{self.remote_id}"


@dataclass
class SyncJob:
    """
    Tracked lifecycle and progress counters for one phase of one sync run.

    Attributes:
        entity_type: Entity type the phase synchronizes
        connection_id: Connection the run uses
        tenant_id: Tenant the run writes for
        status: running / completed / failed / cancelled
        records_processed: Records attempted so far
        records_success: Records written successfully
        records_failed: Records that failed individually
        progress_total: Expected number of records (0 until known)
        run_id: Identifier shared by the three jobs of one run
        error_details: Structured error detail for failed jobs
        job_id: Job identifier
        started_at: When the job was created
        completed_at: When the job reached a terminal status
    """
    entity_type: EntityType
    connection_id: str
    tenant_id: str
    status: JobStatus = JobStatus.RUNNING
    records_processed: int = 0
    records_success: int = 0
    records_failed: int = 0
    progress_total: int = 0
    run_id: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None
    job_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None


@dataclass
class PhaseOutcome:
    """Result of running one phase inside the orchestrator."""
    entity_type: EntityType
    status: JobStatus
    remote_ids: List[int] = field(default_factory=list)
    written_ids: List[int] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class SyncResult:
    """Summary returned by the manual (single page) sync."""
    success: bool
    message: str
    batch_id: str
    invoices_synced: int = 0
    lines_synced: int = 0
    partners_synced: int = 0
    errors: int = 0
    total_processed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "invoicesSynced": self.invoices_synced,
            "linesSynced": self.lines_synced,
            "partnersSynced": self.partners_synced,
            "errors": self.errors,
            "batchId": self.batch_id,
            "totalProcessed": self.total_processed,
            "stats": {
                "saved_invoices": self.invoices_synced,
                "saved_lines": self.lines_synced,
                "saved_partners": self.partners_synced,
                "errors": self.errors,
            },
        }


@dataclass
class EstimateResult:
    """Pre-flight sizing of a sync window."""
    total_lines: int
    total_invoices: int
    total_partners: int
    total_invoices_without_product_lines: int
    invoices_without_product_lines_names: List[str] = field(default_factory=list)

    @property
    def lines_per_invoice(self) -> float:
        if self.total_invoices <= 0:
            return 0
        return round(self.total_lines / self.total_invoices, 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "total_lines": self.total_lines,
            "total_invoices": self.total_invoices,
            "total_partners": self.total_partners,
            "lines_per_invoice": self.lines_per_invoice,
            "total_invoices_without_product_lines": self.total_invoices_without_product_lines,
            "invoices_without_product_lines_names": list(self.invoices_without_product_lines_names),
            "message": (
                f"Counted {self.total_lines} lines across "
                f"{self.total_invoices} invoices"
            ),
        }
