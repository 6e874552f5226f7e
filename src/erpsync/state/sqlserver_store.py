"""
SQL Server-based sync store for staging records and sync jobs.

Production backend. Each thread gets its own pyodbc connection.
"""

import json
import logging
import re
import threading
from datetime import datetime
from typing import Any, Iterable, List, Optional

try:
    import pyodbc
except ImportError:
    pyodbc = None

from ..core.exceptions import PersistenceError
from ..core.models import (
    EntityType, JobStatus, ProcessingStatus, StagingRecord, SyncJob,
)
from ..core.stores import SyncStore


logger = logging.getLogger(__name__)

# SQL Server allows 2100 parameters per statement
_MAX_IN_PARAMS = 1000


class SqlServerSyncStore(SyncStore):
    """
    SQL Server implementation of the staging and job stores.

    Features:
    - Unique constraint on (entity_type, tenant_id, remote_id)
    - MERGE-based writes so concurrent runners cannot duplicate records
    - Thread-local connections for the background executor
    """

    def __init__(
        self,
        connection_string: Optional[str] = None,
        host: str = "localhost",
        port: int = 1433,
        database: str = "ErpSync",
        username: str = "sa",
        password: Optional[str] = None,
        driver: str = "ODBC Driver 18 for SQL Server",
        schema: str = "staging",
        auto_init: bool = True,
        trust_server_certificate: bool = True,
    ):
        """
        Initialize the SQL Server sync store.

        Args:
            connection_string: Full ODBC connection string (if provided, other params ignored)
            host: SQL Server host
            port: SQL Server port
            database: Database name
            username: Database username
            password: Database password
            driver: ODBC driver name
            schema: Schema name for tables (default: 'staging')
            auto_init: Whether to create schema and tables automatically
            trust_server_certificate: Whether to trust self-signed certificates
        """
        if pyodbc is None:
            raise ImportError(
                "pyodbc is required for SqlServerSyncStore. "
                "Install with: pip install pyodbc"
            )

        if not re.match(r"^[a-zA-Z_][a-zA-Z0-9_]{0,127}$", schema):
            raise ValueError(f"Invalid schema name: {schema}")

        self.schema = schema

        if connection_string:
            self.connection_string = connection_string
        else:
            trust_cert = "yes" if trust_server_certificate else "no"
            self.connection_string = (
                f"Driver={{{driver}}};"
                f"Server={host},{port};"
                f"Database={database};"
                f"UID={username};"
                f"PWD={password};"
                f"TrustServerCertificate={trust_cert}"
            )

        self._thread_local = threading.local()
        self._connections = []
        self._connections_lock = threading.Lock()
        self._connect()

        if auto_init:
            self._init_schema()

    def _connect(self) -> None:
        """Establish database connection."""
        try:
            self._get_conn()
            logger.debug(f"Connected to SQL Server sync store (schema: {self.schema})")
        except pyodbc.Error as e:
            logger.error(f"Failed to connect to SQL Server: {e}")
            raise PersistenceError(f"Failed to connect to SQL Server: {e}") from e

    def _get_conn(self):
        """Get (or create) a thread-local connection."""
        conn = getattr(self._thread_local, "conn", None)
        if conn is None:
            conn = pyodbc.connect(self.connection_string)
            self._thread_local.conn = conn
            with self._connections_lock:
                self._connections.append(conn)
        return conn

    def _init_schema(self) -> None:
        """Create schema and tables if missing."""
        # Schema name is validated in __init__; CREATE SCHEMA cannot take parameters
        self._execute(f"""
            IF NOT EXISTS (SELECT * FROM sys.schemas WHERE name = ?)
            BEGIN
                EXEC('CREATE SCHEMA [{self.schema}]')
            END
        """, (self.schema,), "create schema")

        self._execute(f"""
            IF OBJECT_ID(N'[{self.schema}].[staging_records]', N'U') IS NULL
            BEGIN
                CREATE TABLE [{self.schema}].[staging_records] (
                    local_id NVARCHAR(36) PRIMARY KEY,
                    entity_type NVARCHAR(32) NOT NULL,
                    tenant_id NVARCHAR(100) NOT NULL,
                    remote_id BIGINT NOT NULL,
                    payload NVARCHAR(MAX) NOT NULL,
                    batch_id NVARCHAR(100) NOT NULL,
                    sync_session_id NVARCHAR(100),
                    processing_status NVARCHAR(20) NOT NULL,
                    parent_local_id NVARCHAR(36),
                    parent_remote_id BIGINT,
                    created_at DATETIME2 NOT NULL,
                    updated_at DATETIME2 NOT NULL,
                    CONSTRAINT UQ_staging_records_key UNIQUE (entity_type, tenant_id, remote_id)
                )
            END
        """, (), "create staging_records")

        self._execute(f"""
            IF OBJECT_ID(N'[{self.schema}].[sync_jobs]', N'U') IS NULL
            BEGIN
                CREATE TABLE [{self.schema}].[sync_jobs] (
                    seq BIGINT IDENTITY(1,1) NOT NULL,
                    job_id NVARCHAR(36) PRIMARY KEY,
                    run_id NVARCHAR(36),
                    entity_type NVARCHAR(32) NOT NULL,
                    connection_id NVARCHAR(100) NOT NULL,
                    tenant_id NVARCHAR(100) NOT NULL,
                    status NVARCHAR(20) NOT NULL,
                    records_processed INT NOT NULL DEFAULT 0,
                    records_success INT NOT NULL DEFAULT 0,
                    records_failed INT NOT NULL DEFAULT 0,
                    progress_total INT NOT NULL DEFAULT 0,
                    error_details NVARCHAR(MAX),
                    started_at DATETIME2 NOT NULL,
                    completed_at DATETIME2
                )
            END
        """, (), "create sync_jobs")
        logger.debug("Initialized SQL Server sync store schema")

    # ------------------------------------------------------------------
    # Staging records
    # ------------------------------------------------------------------

    def find(
        self,
        entity_type: EntityType,
        remote_id: int,
        tenant_id: str,
    ) -> Optional[StagingRecord]:
        rows = self._query(f"""
            SELECT * FROM [{self.schema}].[staging_records]
            WHERE entity_type = ? AND tenant_id = ? AND remote_id = ?
        """, (entity_type.value, tenant_id, remote_id))
        return self._row_to_record(rows[0]) if rows else None

    def insert(self, record: StagingRecord) -> None:
        # MERGE keeps the unique key intact if a concurrent runner inserted first
        self._execute(f"""
            MERGE [{self.schema}].[staging_records] AS target
            USING (SELECT ? AS entity_type, ? AS tenant_id, ? AS remote_id) AS source
            ON target.entity_type = source.entity_type
               AND target.tenant_id = source.tenant_id
               AND target.remote_id = source.remote_id
            WHEN MATCHED THEN
                UPDATE SET payload = ?, batch_id = ?, sync_session_id = ?,
                           processing_status = ?, parent_local_id = ?,
                           parent_remote_id = ?, updated_at = ?
            WHEN NOT MATCHED THEN
                INSERT (local_id, entity_type, tenant_id, remote_id, payload, batch_id,
                        sync_session_id, processing_status, parent_local_id,
                        parent_remote_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
        """, (
            record.entity_type.value,
            record.tenant_id,
            record.remote_id,
            json.dumps(record.payload, default=str),
            record.batch_id,
            record.sync_session_id,
            record.processing_status.value,
            record.parent_local_id,
            record.parent_remote_id,
            record.updated_at,
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
            record.created_at,
            record.updated_at,
        ), f"insert staging record {record.get_key()}")

    def update(self, record: StagingRecord) -> None:
        rowcount = self._execute(f"""
            UPDATE [{self.schema}].[staging_records]
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
            record.updated_at,
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
            rows = self._query(f"""
                SELECT remote_id FROM [{self.schema}].[staging_records]
                WHERE entity_type = ? AND tenant_id = ? AND remote_id IN ({placeholders})
            """, (entity_type.value, tenant_id, *chunk))
            found.extend(int(row["remote_id"]) for row in rows)
        return found

    def count(self, entity_type: EntityType, tenant_id: Optional[str] = None) -> int:
        sql = f"SELECT COUNT(*) AS n FROM [{self.schema}].[staging_records] WHERE entity_type = ?"
        params: tuple = (entity_type.value,)
        if tenant_id is not None:
            sql += " AND tenant_id = ?"
            params += (tenant_id,)
        rows = self._query(sql, params)
        return int(rows[0]["n"]) if rows else 0

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def create_job(self, job: SyncJob) -> None:
        self._execute(f"""
            INSERT INTO [{self.schema}].[sync_jobs] (
                job_id, run_id, entity_type, connection_id, tenant_id, status,
                records_processed, records_success, records_failed,
                progress_total, error_details, started_at, completed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
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
            job.started_at,
            job.completed_at,
        ), f"create job {job.job_id}")

    def get_job(self, job_id: str) -> Optional[SyncJob]:
        rows = self._query(
            f"SELECT * FROM [{self.schema}].[sync_jobs] WHERE job_id = ?",
            (job_id,),
        )
        return self._row_to_job(rows[0]) if rows else None

    def save_job(self, job: SyncJob) -> None:
        rowcount = self._execute(f"""
            UPDATE [{self.schema}].[sync_jobs]
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
            job.completed_at,
            job.job_id,
        ), f"save job {job.job_id}")

        if rowcount == 0:
            raise PersistenceError(f"Job not found: {job.job_id}")

    def list_jobs(self, run_id: str) -> List[SyncJob]:
        rows = self._query(
            f"SELECT * FROM [{self.schema}].[sync_jobs] WHERE run_id = ? ORDER BY seq ASC",
            (run_id,),
        )
        return [self._row_to_job(row) for row in rows]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _execute(self, sql: str, params: tuple, action: str) -> int:
        conn = self._get_conn()
        try:
            cursor = conn.cursor()
            cursor.execute(sql, params)
            conn.commit()
            return cursor.rowcount
        except pyodbc.Error as e:
            logger.error(f"Failed to {action}: {e}")
            conn.rollback()
            raise PersistenceError(f"Failed to {action}: {e}") from e

    def _query(self, sql: str, params: tuple) -> List[dict]:
        conn = self._get_conn()
        try:
            cursor = conn.cursor()
            cursor.execute(sql, params)
            columns = [column[0] for column in cursor.description]
            return [dict(zip(columns, row)) for row in cursor.fetchall()]
        except pyodbc.Error as e:
            logger.error(f"Query failed: {e}")
            raise PersistenceError(f"Query failed: {e}") from e

    def _parse_datetime(self, value: Any) -> Optional[datetime]:
        if value is None:
            return None
        if isinstance(value, datetime):
            return value
        return datetime.fromisoformat(str(value))

    def _row_to_record(self, row: dict) -> StagingRecord:
        return StagingRecord(
            local_id=row["local_id"],
            entity_type=EntityType(row["entity_type"]),
            tenant_id=row["tenant_id"],
            remote_id=int(row["remote_id"]),
            payload=json.loads(row["payload"]),
            batch_id=row["batch_id"],
            sync_session_id=row["sync_session_id"],
            processing_status=ProcessingStatus(row["processing_status"]),
            parent_local_id=row["parent_local_id"],
            parent_remote_id=int(row["parent_remote_id"]) if row["parent_remote_id"] is not None else None,
            created_at=self._parse_datetime(row["created_at"]),
            updated_at=self._parse_datetime(row["updated_at"]),
        )

    def _row_to_job(self, row: dict) -> SyncJob:
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
            started_at=self._parse_datetime(row["started_at"]),
            completed_at=self._parse_datetime(row["completed_at"]),
        )

    def close(self) -> None:
        """Close all thread-local connections."""
        with self._connections_lock:
            for conn in self._connections:
                try:
                    conn.close()
                except pyodbc.Error as e:
                    logger.debug(f"Ignoring error while closing connection: {e}")
            self._connections.clear()
        self._thread_local = threading.local()
        logger.debug("Closed SQL Server sync store connections")
