"""
Integration tests for the SQL Server sync store.

These tests verify that:
1. The staging schema and tables are created
2. Staging records stay unique per (entity type, tenant, remote id)
3. Jobs round-trip with their counters and error details
"""

import uuid

import pytest

from erpsync.core.models import EntityType, JobStatus, StagingRecord, SyncJob
from erpsync.staging.writer import StagingWriter


@pytest.fixture
def tenant_id():
    """Fresh tenant per test so runs never see each other's rows."""
    return f"it-{uuid.uuid4().hex[:12]}"


@pytest.mark.integration
class TestSchema:
    """Tests for schema creation."""

    @pytest.mark.parametrize("table", ["staging_records", "sync_jobs"])
    def test_table_exists(self, sqlserver_sync_store, table):
        store = sqlserver_sync_store
        cursor = store._get_conn().cursor()

        cursor.execute("""
            SELECT 1 FROM sys.tables t
            JOIN sys.schemas s ON t.schema_id = s.schema_id
            WHERE t.name = ? AND s.name = ?
        """, (table, store.schema))

        assert cursor.fetchone() is not None, f"Table '{store.schema}.{table}' does not exist"


@pytest.mark.integration
class TestStagingRecords:
    """Tests for staging record persistence."""

    def test_insert_find_update(self, sqlserver_sync_store, tenant_id):
        store = sqlserver_sync_store
        record = StagingRecord(EntityType.INVOICE, 500, tenant_id, {"id": 500, "name": "INV/1"}, "batch_1")
        store.insert(record)

        found = store.find(EntityType.INVOICE, 500, tenant_id)
        assert found.local_id == record.local_id
        assert found.payload == {"id": 500, "name": "INV/1"}

        found.payload = {"id": 500, "name": "INV/1 (amended)"}
        store.update(found)
        assert store.find(EntityType.INVOICE, 500, tenant_id).payload["name"] == "INV/1 (amended)"

    def test_duplicate_insert_merges(self, sqlserver_sync_store, tenant_id):
        """Test a racing second insert of the same key updates instead of duplicating."""
        store = sqlserver_sync_store
        store.insert(StagingRecord(EntityType.PARTNER, 1, tenant_id, {"id": 1, "name": "A"}, "b1"))
        store.insert(StagingRecord(EntityType.PARTNER, 1, tenant_id, {"id": 1, "name": "B"}, "b2"))

        assert store.count(EntityType.PARTNER, tenant_id) == 1
        assert store.find(EntityType.PARTNER, 1, tenant_id).batch_id == "b2"

    def test_writer_upsert_is_idempotent(self, sqlserver_sync_store, tenant_id):
        writer = StagingWriter(sqlserver_sync_store)
        writer.upsert(EntityType.PARTNER, 7, tenant_id, {"id": 7, "name": "A"}, "b1")
        writer.upsert(EntityType.PARTNER, 7, tenant_id, {"id": 7, "name": "B"}, "b2")

        assert sqlserver_sync_store.count(EntityType.PARTNER, tenant_id) == 1
        assert writer.confirm_written(EntityType.PARTNER, tenant_id, [7, 8]) == [8]


@pytest.mark.integration
class TestJobs:
    """Tests for job persistence."""

    def test_job_round_trip(self, sqlserver_sync_store, tenant_id):
        store = sqlserver_sync_store
        run_id = str(uuid.uuid4())
        jobs = [SyncJob(entity_type, "main", tenant_id, run_id=run_id) for entity_type in EntityType]
        for job in jobs:
            store.create_job(job)

        jobs[1].status = JobStatus.FAILED
        jobs[1].records_processed = 3
        jobs[1].error_details = {"type": "TransportError", "message": "down"}
        store.save_job(jobs[1])

        found = store.get_job(jobs[1].job_id)
        assert found.status == JobStatus.FAILED
        assert found.records_processed == 3
        assert found.error_details["type"] == "TransportError"
        assert [job.job_id for job in store.list_jobs(run_id)] == [job.job_id for job in jobs]
