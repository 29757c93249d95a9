"""Validate-then-run contract shared by every storage mutation."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, ClassVar, TypeVar

from permanent.domain.errors import StorageError
from permanent.domain.validation import Validation

if TYPE_CHECKING:
    from collections.abc import Callable

    from permanent.domain.entity import PermanentObject
    from permanent.domain.ports.storage import StorageAdapter
    from permanent.domain.transactions.operation_set import TransactionOperationSet

log = logging.getLogger(__name__)

T = TypeVar("T")


class TransactionOperation(ABC):
    """One create, update or delete against the table of ``entity_class``.

    ``run()`` executes unconditionally; callers go through ``run_if_valid()`` so
    nothing reaches storage unless the last ``validate()`` accepted the operation.
    """

    # Result of an operation that did not reach storage
    FAILED: ClassVar[object] = 0

    def __init__(self, entity_class: type[PermanentObject]) -> None:
        self.entity_class = entity_class
        self.operation_set: TransactionOperationSet | None = None
        self._adapter: StorageAdapter | None = None
        self._is_valid: bool | None = None
        self.validation = Validation()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.entity_class.__name__})"

    def is_valid(self) -> bool:
        return bool(self._is_valid)

    def _set_valid(self, valid: bool) -> None:  # noqa: FBT001
        self._is_valid = valid

    @property
    def adapter(self) -> StorageAdapter:
        """The adapter set on this operation, else the one of its set, else the class'."""

        if self._adapter is not None:
            return self._adapter
        if self.operation_set is not None:
            return self.operation_set.adapter
        return self.entity_class.get_adapter()

    @adapter.setter
    def adapter(self, adapter: StorageAdapter | None) -> None:
        self._adapter = adapter

    @abstractmethod
    def validate(self) -> Validation: ...

    @abstractmethod
    def run(self) -> object: ...

    def run_if_valid(self) -> object:
        return self.run() if self._is_valid else self.FAILED

    def rollback_state(self) -> None:
        """Restore in-memory state after the storage write was rolled back."""

    def _execute(self, statement: Callable[[], T], failed: T) -> T:
        """Run an adapter call, turning storage failures into ``failed``."""

        try:
            return statement()
        except StorageError:
            log.warning("%r failed in storage", self, exc_info=True)
            return failed
