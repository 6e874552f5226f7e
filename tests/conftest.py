"""
Shared test fixtures and configuration for pytest.
"""

import logging
import os
import sys
from pathlib import Path

import pytest

# Add src directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from erpsync.core.models import RemoteConnection
from erpsync.fetch.entity_fetcher import EntityFetcher
from erpsync.jobs.tracker import JobTracker
from erpsync.rpc.memory_remote import MemoryRemote, build_sample_dataset
from erpsync.rpc.session import RemoteSession
from erpsync.staging.writer import StagingWriter
from erpsync.state.sqlite_store import MEMORY_PATH, SqliteSyncStore
from erpsync.utils.retry import RetryConfig
from erpsync.core.exceptions import MalformedResponseError


logger = logging.getLogger(__name__)

TENANT_ID = "holding-1"


# ============================================================================
# Environment detection
# ============================================================================

def sqlserver_settings() -> dict:
    return {
        "host": os.environ.get("ERPSYNC_SQLSERVER_HOST", "localhost"),
        "port": int(os.environ.get("ERPSYNC_SQLSERVER_PORT", "1433")),
        "database": os.environ.get("ERPSYNC_SQLSERVER_DATABASE", "ErpSync"),
        "username": os.environ.get("ERPSYNC_SQLSERVER_USER", "sa"),
        "password": os.environ.get("ERPSYNC_SQLSERVER_PASSWORD", os.environ.get("MSSQL_SA_PASSWORD")),
        "driver": os.environ.get("ERPSYNC_SQLSERVER_DRIVER", "ODBC Driver 18 for SQL Server"),
    }


def is_sqlserver_available() -> bool:
    """Check if SQL Server is available for testing."""
    settings = sqlserver_settings()
    if not settings["password"]:
        return False

    try:
        import pyodbc

        conn_str = (
            f"Driver={{{settings['driver']}}};"
            f"Server={settings['host']},{settings['port']};"
            f"Database={settings['database']};"
            f"UID={settings['username']};"
            f"PWD={settings['password']};"
            f"TrustServerCertificate=yes"
        )

        conn = pyodbc.connect(conn_str, timeout=5)
        conn.close()
        return True

    except Exception as e:
        logger.debug(f"SQL Server not available: {e}")
        return False


# ============================================================================
# Pytest hooks
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests (requires SQL Server)")


def pytest_collection_modifyitems(config, items):
    """Automatically skip integration tests if SQL Server is not available."""
    if not any("integration" in item.keywords for item in items):
        return
    if is_sqlserver_available():
        return

    skip_sqlserver = pytest.mark.skip(
        reason="SQL Server not available (set ERPSYNC_SQLSERVER_PASSWORD and ensure SQL Server is running)"
    )

    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_sqlserver)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def sample_remote():
    """In-memory remote with 1 partner, 2 invoices and 1 product line per invoice."""
    return MemoryRemote(records=build_sample_dataset(invoice_count=2, lines_per_invoice=1))


@pytest.fixture
def connection(sample_remote):
    """Connection descriptor matching the sample remote's credentials."""
    return RemoteConnection(
        connection_id="main",
        url="https://erp.example.com",
        database=sample_remote.database,
        username=sample_remote.username,
        api_key=sample_remote.api_key,
        tenant_id=TENANT_ID,
    )


@pytest.fixture
def session(connection, sample_remote):
    return RemoteSession(connection, sample_remote)


@pytest.fixture
def no_wait_retry():
    """Retry policy without backoff delays."""
    return RetryConfig(
        max_attempts=3,
        initial_delay_ms=0,
        max_delay_ms=0,
        jitter=False,
        attempt_limits={MalformedResponseError: 2},
    )


@pytest.fixture
def fetcher(session, no_wait_retry):
    return EntityFetcher(session, read_batch_size=50, retry_config=no_wait_retry, sleep=lambda _: None)


@pytest.fixture
def sync_store():
    """Throwaway SQLite sync store."""
    store = SqliteSyncStore(MEMORY_PATH)
    yield store
    store.close()


@pytest.fixture
def writer(sync_store):
    return StagingWriter(sync_store)


@pytest.fixture
def tracker(sync_store):
    return JobTracker(sync_store)


@pytest.fixture
def sqlserver_sync_store():
    """SQL Server sync store for integration tests."""
    from erpsync.state import SqlServerSyncStore

    settings = sqlserver_settings()
    store = SqlServerSyncStore(
        host=settings["host"],
        port=settings["port"],
        database=settings["database"],
        username=settings["username"],
        password=settings["password"],
        driver=settings["driver"],
        schema=os.environ.get("ERPSYNC_SQLSERVER_SCHEMA", "staging"),
    )
    yield store
    store.close()
