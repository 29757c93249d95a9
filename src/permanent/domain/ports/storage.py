"""Storage port consumed by entities and transaction operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol, TypeAlias, runtime_checkable

from permanent.config.storage import DEFAULT_INSTANCE

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from contextlib import AbstractContextManager

Row: TypeAlias = "dict[str, object]"
WhereClause: TypeAlias = "Mapping[str, object] | str | None"


class Output(StrEnum):
    """Shape of a select result."""

    ROWS = "rows"  # list of mappings
    FIRST = "first"  # first mapping or None
    OBJECTS = "objects"  # list of hydrated entities
    OBJECT = "object"  # first hydrated entity or None


@dataclass(frozen=True, slots=True)
class SelectQuery:
    table: str
    where: WhereClause = None
    fields: Sequence[str] | None = None
    order_by: Sequence[str] = ()
    number: int | None = None
    offset: int | None = None
    output: Output = Output.ROWS


@dataclass(frozen=True, slots=True)
class InsertQuery:
    table: str
    values: Mapping[str, object] = field(default_factory=dict[str, object])


@dataclass(frozen=True, slots=True)
class UpdateQuery:
    table: str
    values: Mapping[str, object]
    where: WhereClause = None
    number: int | None = None


@dataclass(frozen=True, slots=True)
class DeleteQuery:
    table: str
    where: WhereClause = None
    number: int | None = None


@runtime_checkable
class StorageAdapter(Protocol):
    """Executes statements against one database.

    ``select`` only handles ``Output.ROWS`` and ``Output.FIRST``; hydrating rows into
    entities is the entity class' job. Write methods return the number of affected
    rows. Failures are raised as ``StorageError``. ``transaction()`` joins a
    transaction that is already active, which ``in_transaction()`` reports.
    """

    def select(self, query: SelectQuery) -> list[Row] | Row | None: ...

    def insert(self, query: InsertQuery) -> int: ...

    def last_id(self, table: str) -> object: ...

    def update(self, query: UpdateQuery) -> int: ...

    def delete(self, query: DeleteQuery) -> int: ...

    def escape_identifier(self, identifier: str) -> str: ...

    def format_value(self, value: object) -> str: ...

    def transaction(self) -> AbstractContextManager[None]: ...

    def in_transaction(self) -> bool: ...


class AdapterRegistry:
    """Storage adapters keyed by instance name."""

    def __init__(self) -> None:
        self._adapters: dict[str, StorageAdapter] = {}

    def register(self, adapter: StorageAdapter, instance: str = DEFAULT_INSTANCE) -> None:
        self._adapters[instance] = adapter

    def unregister(self, instance: str = DEFAULT_INSTANCE) -> StorageAdapter | None:
        return self._adapters.pop(instance, None)

    def get(self, instance: str = DEFAULT_INSTANCE) -> StorageAdapter:
        try:
            return self._adapters[instance]
        except KeyError:
            raise LookupError(f"No storage adapter registered for instance {instance!r}") from None

    def __contains__(self, instance: object) -> bool:
        return instance in self._adapters

    def clear(self) -> None:
        self._adapters.clear()


adapter_registry = AdapterRegistry()
