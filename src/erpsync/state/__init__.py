"""
Sync store implementations for staging records and jobs.

The default backend is SQLite (SqliteSyncStore). SQL Server
(SqlServerSyncStore) requires pyodbc and an ODBC driver.

To select backend, set the ERPSYNC_DB_BACKEND environment variable:
    - ERPSYNC_DB_BACKEND=sqlite (default)
    - ERPSYNC_DB_BACKEND=sqlserver
"""

import logging
import os
from pathlib import Path
from typing import Optional, Union

from ..core.stores import SyncStore
from .sqlite_store import MEMORY_PATH, SqliteSyncStore
from .sqlserver_store import SqlServerSyncStore


logger = logging.getLogger(__name__)

DEFAULT_SQLITE_PATH = Path("local/state/erpsync.db")


def create_sync_store(
    backend: Optional[str] = None,
    # SQLite options
    db_path: Optional[Union[str, Path]] = None,
    # SQL Server options
    connection_string: Optional[str] = None,
    host: str = "localhost",
    port: int = 1433,
    database: str = "ErpSync",
    username: str = "sa",
    password: Optional[str] = None,
    driver: str = "ODBC Driver 18 for SQL Server",
    schema: str = "staging",
    trust_server_certificate: bool = True,
    auto_init: bool = True,
) -> SyncStore:
    """
    Factory function to create the appropriate sync store based on configuration.

    Args:
        backend: Backend type ('sqlite' or 'sqlserver'). Defaults to
            ERPSYNC_DB_BACKEND env var or 'sqlite'.

        SQLite options:
            db_path: Path to SQLite database file (":memory:" for a throwaway store)

        SQL Server options:
            connection_string: Full ODBC connection string
            host: SQL Server host
            port: SQL Server port
            database: Database name
            username: Database username
            password: Database password
            driver: ODBC driver name
            schema: Schema name for tables
            trust_server_certificate: Trust self-signed certs
            auto_init: Auto-create schema/tables

    Returns:
        SyncStore instance

    Raises:
        ValueError: If backend is not recognized
        ImportError: If required dependencies are missing
    """
    if backend is None:
        backend = os.environ.get("ERPSYNC_DB_BACKEND", "sqlite")
    backend = backend.lower()

    if backend == "sqlite":
        if db_path is None:
            db_path = os.environ.get("ERPSYNC_SQLITE_PATH") or DEFAULT_SQLITE_PATH
        logger.debug(f"Using SQLite sync store at {db_path}")
        return SqliteSyncStore(db_path=db_path, auto_init=auto_init)

    elif backend == "sqlserver":
        if password is None:
            password = os.environ.get("ERPSYNC_SQLSERVER_PASSWORD")

        if connection_string is None:
            connection_string = os.environ.get("ERPSYNC_SQLSERVER_CONN_STR")

        return SqlServerSyncStore(
            connection_string=connection_string,
            host=host,
            port=port,
            database=database,
            username=username,
            password=password,
            driver=driver,
            schema=schema,
            auto_init=auto_init,
            trust_server_certificate=trust_server_certificate,
        )

    else:
        raise ValueError(
            f"Unknown backend: {backend}. "
            "Supported backends: 'sqlite' (default), 'sqlserver'"
        )


__all__ = ["MEMORY_PATH", "SqliteSyncStore", "SqlServerSyncStore", "create_sync_store"]
