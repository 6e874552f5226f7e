"""
Configuration loader for the sync engine.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from dotenv import load_dotenv

from ..core.exceptions import ConfigError
from ..core.models import RemoteConnection
from ..staging.field_filter import DEFAULT_EXCLUDED_PREFIXES


logger = logging.getLogger(__name__)

REQUIRED_CONNECTION_KEYS = ("id", "url", "database", "username", "tenant_id")


def load_environment(env_file: Optional[Union[str, Path]] = None) -> bool:
    """Load a .env file into the process environment (existing variables win)."""
    loaded = load_dotenv(dotenv_path=env_file) if env_file else load_dotenv()
    if loaded:
        logger.debug(f"Loaded environment from {env_file or '.env'}")
    return loaded


def api_key_env_var(connection_id: str) -> str:
    """Environment variable holding a connection's API key, e.g. ERPSYNC_MAIN_API_KEY."""
    return f"ERPSYNC_{re.sub(r'[^A-Za-z0-9]', '_', connection_id).upper()}_API_KEY"


class SyncConfig:
    """
    Configuration for the sync engine.

    Loads YAML configuration files, falls back to defaults and applies
    environment variable overrides.
    """

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to YAML config file (optional)
        """
        self.config_path = Path(config_path) if config_path else None
        self.config = self._load_config() if self.config_path else self._default_config()
        self._apply_defaults()
        self._apply_env_overrides()

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "SyncConfig":
        """Build a configuration from an in-memory mapping (defaults and env overrides still apply)."""
        instance = cls.__new__(cls)
        instance.config_path = None
        instance.config = dict(config)
        instance._apply_defaults()
        instance._apply_env_overrides()
        return instance

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        logger.info(f"Loading config from: {self.config_path}")

        with open(self.config_path, "r", encoding="utf-8") as f:
            try:
                config = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {self.config_path}: {e}") from e

        if config is not None and not isinstance(config, dict):
            raise ConfigError(f"Config root must be a mapping: {self.config_path}")
        return config or {}

    def _default_config(self) -> Dict[str, Any]:
        """Return default configuration."""
        return {
            "connections": [],
            "state": {
                "type": "sqlite",
                "sqlite": {
                    "path": "local/state/erpsync.db",
                },
                "sqlserver": {
                    "host": "localhost",
                    "port": 1433,
                    "database": "ErpSync",
                    "user": "sa",
                    "schema": "staging",
                },
            },
            "runner": {
                "page_size": 100,
                "read_batch_size": 80,
                "max_attempts": 3,
                "phase_delay_seconds": 0.0,
                "max_workers": 2,
                "lock_timeout": None,
            },
            "transport": {
                "timeout": 60.0,
                "rate_limit_delay": 0.0,
                "user_agent": "erpsync/1.0",
            },
            "staging": {
                "exclude_field_prefixes": list(DEFAULT_EXCLUDED_PREFIXES),
            },
        }

    def _apply_defaults(self) -> None:
        """Fill sections missing from a partial config file with defaults."""
        defaults = self._default_config()
        for section, values in defaults.items():
            current = self.config.get(section)
            if current is None:
                self.config[section] = values
            elif isinstance(values, dict) and isinstance(current, dict):
                for key, value in values.items():
                    current.setdefault(key, value)

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides to loaded config."""
        backend = os.environ.get("ERPSYNC_DB_BACKEND")
        if backend:
            self.config["state"]["type"] = backend.lower()

        sqlite_path = os.environ.get("ERPSYNC_SQLITE_PATH")
        if sqlite_path:
            self.config["state"].setdefault("sqlite", {})["path"] = sqlite_path

        timeout = os.environ.get("ERPSYNC_HTTP_TIMEOUT")
        if timeout:
            try:
                self.config["transport"]["timeout"] = float(timeout)
            except ValueError as e:
                raise ConfigError(f"ERPSYNC_HTTP_TIMEOUT must be a number, got {timeout!r}") from e

    def get_state_config(self) -> Dict[str, Any]:
        """Get state store configuration."""
        return self.config.get("state", {})

    def get_runner_config(self) -> Dict[str, Any]:
        """Get runner configuration."""
        return self.config.get("runner", {})

    def get_transport_config(self) -> Dict[str, Any]:
        """Get HTTP transport configuration."""
        return self.config.get("transport", {})

    def get_staging_config(self) -> Dict[str, Any]:
        return self.config.get("staging", {})

    def get_connections(self) -> List[Dict[str, Any]]:
        """Get list of connection configurations."""
        return self.config.get("connections") or []

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by dotted key, e.g. "runner.page_size"."""
        keys = key.split(".")
        value = self.config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default

        return value if value is not None else default


class ConnectionRegistry:
    """Resolves remote connections by id."""

    def __init__(self, connections: Optional[List[RemoteConnection]] = None):
        self._connections: Dict[str, RemoteConnection] = {}
        for connection in connections or []:
            self.register(connection)

    def register(self, connection: RemoteConnection) -> None:
        if connection.connection_id in self._connections:
            raise ConfigError(f"Duplicate connection id: {connection.connection_id}")
        self._connections[connection.connection_id] = connection

    def get(self, connection_id: str) -> RemoteConnection:
        connection = self._connections.get(connection_id)
        if connection is None:
            raise ConfigError(f"Unknown connection: {connection_id}")
        return connection

    def ids(self) -> List[str]:
        return list(self._connections)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def __len__(self) -> int:
        return len(self._connections)

    @classmethod
    def from_config(cls, config: SyncConfig) -> "ConnectionRegistry":
        """
        Build the registry from the ``connections`` section.

        The API key comes from ``ERPSYNC_<ID>_API_KEY`` when set, then from
        the variable named by ``api_key_env``, then from ``api_key``.
        """
        registry = cls()
        for index, entry in enumerate(config.get_connections()):
            missing = [key for key in REQUIRED_CONNECTION_KEYS if not entry.get(key)]
            if missing:
                raise ConfigError(f"Connection #{index} is missing: {', '.join(missing)}")

            connection_id = str(entry["id"])
            api_key = os.environ.get(api_key_env_var(connection_id))
            if not api_key and entry.get("api_key_env"):
                api_key = os.environ.get(entry["api_key_env"])
            if not api_key:
                api_key = entry.get("api_key")
            if not api_key:
                raise ConfigError(
                    f"No API key for connection {connection_id}; "
                    f"set {api_key_env_var(connection_id)}"
                )

            registry.register(RemoteConnection(
                connection_id=connection_id,
                url=str(entry["url"]),
                database=str(entry["database"]),
                username=str(entry["username"]),
                api_key=str(api_key),
                tenant_id=str(entry["tenant_id"]),
            ))

        logger.debug(f"Loaded {len(registry)} connections")
        return registry
