"""SQLAlchemy storage adapter package for permanent."""

from __future__ import annotations

from .adapter import SqlAlchemyAdapter
from .engine import (
    StartupError,
    configured_adapter,
    configured_engine,
    is_started,
    shutdown,
    startup,
)

__all__ = [
    "SqlAlchemyAdapter",
    "StartupError",
    "configured_adapter",
    "configured_engine",
    "is_started",
    "shutdown",
    "startup",
]
