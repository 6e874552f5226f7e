"""
SQLite-based sync store for staging records and sync jobs.

Suitable for local runs, dry runs and tests. One connection is shared
across threads and serialized with a lock.
"""

import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Union

from ..core.exceptions import PersistenceError
from ..core.models import (
    EntityType, JobStatus, ProcessingStatus, StagingRecord, SyncJob,
)
from ..core.stores import SyncStore


logger = logging.getLogger(__name__)

MEMORY_PATH = ":memory:"

# SQLite caps bound parameters per statement
_MAX_IN_PARAMS = 500


class SqliteSyncStore(SyncStore):
    """
    SQLite implementation of the staging and job stores.

    Staging records are unique per (entity_type, tenant_id, remote_id),
    enforced by a unique index.
    """

    def __init__(self, db_path: Union[str, Path] = MEMORY_PATH, auto_init: bool = True):
        """
        Initialize the SQLite sync store.

        Args:
            db_path: Path to the SQLite database file, or ":memory:"
            auto_init: Whether to create tables automatically
        """
        self.db_path = str(db_path)
        self.conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._connect()

        if auto_init:
            self._init_schema()

    def _connect(self) -> None:
        """Establish database connection."""
        if self.db_path != MEMORY_PATH:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        logger.debug(f"Connected to SQLite sync store: {self.db_path}")

    def _init_schema(self) -> None:
        """Initialize database schema."""
        with self._lock:
            cursor = self.conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS staging_records (
                    local_id TEXT PRIMARY KEY,
                    entity_type TEXT NOT NULL,
                    tenant_id TEXT NOT NULL,
                    remote_id INTEGER NOT NULL,
                    payload TEXT NOT NULL,
                    batch_id TEXT NOT NULL,
                    sync_session_id TEXT,
                    processing_status TEXT NOT NULL,
                    parent_local_id TEXT,
                    parent_remote_id INTEGER,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS ix_staging_records_key
                ON staging_records (entity_type, tenant_id, remote_id)
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS ix_staging_records_batch
                ON staging_records (batch_id)
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS sync_jobs (
                    job_id TEXT PRIMARY KEY,
                    run_id TEXT,
                    entity_type TEXT NOT NULL,
                    connection_id TEXT NOT NULL,
                    tenant_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    records_processed INTEGER NOT NULL DEFAULT 0,
                    records_success INTEGER NOT NULL DEFAULT 0,
                    records_failed INTEGER NOT NULL DEFAULT 0,
                    progress_total INTEGER NOT NULL DEFAULT 0,
                    error_details TEXT,
                    started_at TEXT NOT NULL,
                    completed_at TEXT,
                    seq INTEGER
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS ix_sync_jobs_run_id
                ON sync_jobs (run_id)
            """)

            self.conn.commit()
        logger.debug("Initialized sync store schema")

    # ------------------------------------------------------------------
    # Staging records
    # ------------------------------------------------------------------

    def find(
        self,
        entity_type: EntityType,
        remote_id: int,
        tenant_id: str,
    ) -> Optional[StagingRecord]:
        row = self._fetchone("""
            SELECT * FROM staging_records
            WHERE entity_type = ? AND tenant_id = ? AND remote_id = ?
        """, (entity_type.value, tenant_id, remote_id))
        return self._row_to_record(row) if row else None

    def insert(self, record: StagingRecord) -> None:
        self._execute("""
            INSERT INTO staging_records (
                local_id, entity_type, tenant_id, remote_id, payload, batch_id,
                sync_session_id, processing_status, parent_local_id,
                parent_remote_id, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            record.local_id,
            record.entity_type.value,
            record.tenant_id,
            record.remote_id,
            json.dumps(record.payload, default=str),
            record.batch_id,
            record.sync_session_id,
            record.processing_status.value,
            record.parent_local_id,
            record.parent_remote_id,
            record.created_at.isoformat(),
            record.updated_at.isoformat(),
        ), f"insert staging record {record.get_key()}")

    def update(self, record: StagingRecord) -> None:
        rowcount = self._execute("""
            UPDATE staging_records
            SET payload = ?, batch_id = ?, sync_session_id = ?,
                processing_status = ?, parent_local_id = ?,
                parent_remote_id = ?, updated_at = ?
            WHERE local_id = ?
        """, (
            json.dumps(record.payload, default=str),
            record.batch_id,
            record.sync_session_id,
            record.processing_status.value,
            record.parent_local_id,
            record.parent_remote_id,
            record.updated_at.isoformat(),
            record.local_id,
        ), f"update staging record {record.get_key()}")

        if rowcount == 0:
            raise PersistenceError(f"Staging record not found: {record.get_key()}")

    def find_existing_ids(
        self,
        entity_type: EntityType,
        tenant_id: str,
        remote_ids: Iterable[int],
    ) -> List[int]:
        ids = list(remote_ids)
        found: List[int] = []
        for start in range(0, len(ids), _MAX_IN_PARAMS):
            chunk = ids[start:start + _MAX_IN_PARAMS]
            placeholders = ", ".join("?" for _ in chunk)
            rows = self._fetchall(f"""
                SELECT remote_id FROM staging_records
                WHERE entity_type = ? AND tenant_id = ? AND remote_id IN ({placeholders})
            """, (entity_type.value, tenant_id, *chunk))
            found.extend(row["remote_id"] for row in rows)
        return found

    def count(self, entity_type: EntityType, tenant_id: Optional[str] = None) -> int:
        if tenant_id is None:
            row = self._fetchone(
                "SELECT COUNT(*) AS n FROM staging_records WHERE entity_type = ?",
                (entity_type.value,),
            )
        else:
            row = self._fetchone(
                "SELECT COUNT(*) AS n FROM staging_records WHERE entity_type = ? AND tenant_id = ?",
                (entity_type.value, tenant_id),
            )
        return row["n"] if row else 0

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def create_job(self, job: SyncJob) -> None:
        self._execute("""
            INSERT INTO sync_jobs (
                job_id, run_id, entity_type, connection_id, tenant_id, status,
                records_processed, records_success, records_failed,
                progress_total, error_details, started_at, completed_at, seq
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?,
                      (SELECT COALESCE(MAX(seq), 0) + 1 FROM sync_jobs))
        """, (
            job.job_id,
            job.run_id,
            job.entity_type.value,
            job.connection_id,
            job.tenant_id,
            job.status.value,
            job.records_processed,
            job.records_success,
            job.records_failed,
            job.progress_total,
            json.dumps(job.error_details) if job.error_details else None,
            job.started_at.isoformat(),
            job.completed_at.isoformat() if job.completed_at else None,
        ), f"create job {job.job_id}")

    def get_job(self, job_id: str) -> Optional[SyncJob]:
        row = self._fetchone("SELECT * FROM sync_jobs WHERE job_id = ?", (job_id,))
        return self._row_to_job(row) if row else None

    def save_job(self, job: SyncJob) -> None:
        rowcount = self._execute("""
            UPDATE sync_jobs
            SET status = ?, records_processed = ?, records_success = ?,
                records_failed = ?, progress_total = ?, error_details = ?,
                completed_at = ?
            WHERE job_id = ?
        """, (
            job.status.value,
            job.records_processed,
            job.records_success,
            job.records_failed,
            job.progress_total,
            json.dumps(job.error_details) if job.error_details else None,
            job.completed_at.isoformat() if job.completed_at else None,
            job.job_id,
        ), f"save job {job.job_id}")

        if rowcount == 0:
            raise PersistenceError(f"Job not found: {job.job_id}")

    def list_jobs(self, run_id: str) -> List[SyncJob]:
        rows = self._fetchall(
            "SELECT * FROM sync_jobs WHERE run_id = ? ORDER BY seq ASC",
            (run_id,),
        )
        return [self._row_to_job(row) for row in rows]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _execute(self, sql: str, params: tuple, action: str) -> int:
        with self._lock:
            try:
                cursor = self.conn.cursor()
                cursor.execute(sql, params)
                self.conn.commit()
                return cursor.rowcount
            except sqlite3.Error as e:
                logger.error(f"Failed to {action}: {e}")
                self.conn.rollback()
                raise PersistenceError(f"Failed to {action}: {e}") from e

    def _fetchone(self, sql: str, params: tuple) -> Optional[sqlite3.Row]:
        with self._lock:
            try:
                return self.conn.execute(sql, params).fetchone()
            except sqlite3.Error as e:
                logger.error(f"Query failed: {e}")
                raise PersistenceError(f"Query failed: {e}") from e

    def _fetchall(self, sql: str, params: tuple) -> List[sqlite3.Row]:
        with self._lock:
            try:
                return self.conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                logger.error(f"Query failed: {e}")
                raise PersistenceError(f"Query failed: {e}") from e

    def _row_to_record(self, row: sqlite3.Row) -> StagingRecord:
        """Convert a database row to a StagingRecord."""
        return StagingRecord(
            local_id=row["local_id"],
            entity_type=EntityType(row["entity_type"]),
            tenant_id=row["tenant_id"],
            remote_id=row["remote_id"],
            payload=json.loads(row["payload"]),
            batch_id=row["batch_id"],
            sync_session_id=row["sync_session_id"],
            processing_status=ProcessingStatus(row["processing_status"]),
            parent_local_id=row["parent_local_id"],
            parent_remote_id=row["parent_remote_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def _row_to_job(self, row: sqlite3.Row) -> SyncJob:
        """Convert a database row to a SyncJob."""
        return SyncJob(
            job_id=row["job_id"],
            run_id=row["run_id"],
            entity_type=EntityType(row["entity_type"]),
            connection_id=row["connection_id"],
            tenant_id=row["tenant_id"],
            status=JobStatus(row["status"]),
            records_processed=row["records_processed"],
            records_success=row["records_success"],
            records_failed=row["records_failed"],
            progress_total=row["progress_total"],
            error_details=json.loads(row["error_details"]) if row["error_details"] else None,
            started_at=datetime.fromisoformat(row["started_at"]),
            completed_at=datetime.fromisoformat(row["completed_at"]) if row["completed_at"] else None,
        )

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None
                logger.debug("Closed SQLite sync store connection")
