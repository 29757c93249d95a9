"""Ports describing the external collaborators of the persistence core."""

from __future__ import annotations

from .storage import (
    AdapterRegistry,
    DeleteQuery,
    InsertQuery,
    Output,
    Row,
    SelectQuery,
    StorageAdapter,
    UpdateQuery,
    WhereClause,
    adapter_registry,
)

__all__ = [
    "AdapterRegistry",
    "DeleteQuery",
    "InsertQuery",
    "Output",
    "Row",
    "SelectQuery",
    "StorageAdapter",
    "UpdateQuery",
    "WhereClause",
    "adapter_registry",
]
