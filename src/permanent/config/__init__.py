"""Application configuration helpers."""

from __future__ import annotations

from .entity import EntityConfig, get_entity_config
from .env import env_flag
from .errors import ConfigurationError
from .logging import configure_logging
from .storage import (
    DEFAULT_INSTANCE,
    DatabaseConfig,
    StorageConfig,
    get_database_config,
    get_storage_config,
)

__all__ = [
    "DEFAULT_INSTANCE",
    "ConfigurationError",
    "DatabaseConfig",
    "EntityConfig",
    "StorageConfig",
    "configure_logging",
    "env_flag",
    "get_database_config",
    "get_entity_config",
    "get_storage_config",
]
