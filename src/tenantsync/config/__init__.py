"""Application configuration helpers."""

from __future__ import annotations

from .directory import (
    AccountInterpreterSettings,
    ConnectionSettings,
    DirectoryConfig,
    DirectorySourceSettings,
    GroupSchemaSettings,
    PersonSchemaSettings,
    TenantSettings,
    get_directory_config,
    load_directory_config,
)
from .env import require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .logging import configure_logging
from .storage import (
    DatabaseConfig,
    StorageConfig,
    get_database_config,
    get_database_uri,
    get_storage_config,
)
from .sync import SyncConfig, get_sync_config

__all__ = [
    "AccountInterpreterSettings",
    "ConfigurationError",
    "ConnectionSettings",
    "DatabaseConfig",
    "DirectoryConfig",
    "DirectorySourceSettings",
    "GroupSchemaSettings",
    "MissingConfigurationError",
    "PersonSchemaSettings",
    "StorageConfig",
    "SyncConfig",
    "TenantSettings",
    "configure_logging",
    "get_database_config",
    "get_database_uri",
    "get_directory_config",
    "get_storage_config",
    "get_sync_config",
    "load_directory_config",
    "require_env_vars",
]
