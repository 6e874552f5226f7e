"""
Configuration loading.
"""

from .config_loader import ConnectionRegistry, SyncConfig, api_key_env_var, load_environment

__all__ = ["ConnectionRegistry", "SyncConfig", "api_key_env_var", "load_environment"]
