"""Data storage configuration helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final

APP_DIR_NAME: Final[str] = "permanent"
DEFAULT_DB_FILENAME: Final[str] = "permanent.db"
DEFAULT_INSTANCE: Final[str] = "default"


@dataclass(frozen=True, slots=True)
class StorageConfig:
    data_dir: Path
    database_filename: str = DEFAULT_DB_FILENAME

    def resolve_data_dir(self) -> Path:
        return self.data_dir.expanduser().resolve()

    def ensure_data_dir(self) -> Path:
        data_dir = self.resolve_data_dir()
        data_dir.mkdir(parents=True, exist_ok=True)
        return data_dir

    def database_path(self, *, ensure: bool = True) -> Path:
        base = self.ensure_data_dir() if ensure else self.resolve_data_dir()
        return base / self.database_filename

    def database_uri(self) -> str:
        return f"sqlite+pysqlite:///{self.database_path()}"


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    uri: str
    instance: str = DEFAULT_INSTANCE


def _default_data_dir() -> Path:
    if os.name == "nt":
        base = os.getenv("LOCALAPPDATA")
        base_path = Path(base) if base else (Path.home() / "AppData" / "Local")
    else:
        base = os.getenv("XDG_DATA_HOME")
        base_path = Path(base) if base else (Path.home() / ".local" / "share")
    return (base_path / APP_DIR_NAME).expanduser().resolve()


def get_storage_config() -> StorageConfig:
    env_dir = os.getenv("PERMANENT_DATA_DIR")
    data_dir = Path(env_dir) if env_dir else _default_data_dir()
    return StorageConfig(data_dir=data_dir)


def get_database_config(
    instance: str = DEFAULT_INSTANCE,
    *,
    storage: StorageConfig | None = None,
) -> DatabaseConfig:
    """Resolve the database URI of a named adapter instance.

    Named instances look up ``DATABASE_URI_<INSTANCE>`` first. The default instance
    reads ``DATABASE_URI`` and falls back to a SQLite file in the data directory.
    """

    if instance != DEFAULT_INSTANCE:
        env_uri = os.getenv(f"DATABASE_URI_{instance.upper()}")
        if env_uri:
            return DatabaseConfig(uri=env_uri, instance=instance)
    env_uri = os.getenv("DATABASE_URI")
    if env_uri:
        return DatabaseConfig(uri=env_uri, instance=instance)
    storage_config = storage or get_storage_config()
    return DatabaseConfig(uri=storage_config.database_uri(), instance=instance)
