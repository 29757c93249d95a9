"""Batches of operations validated together before any of them runs."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from permanent.domain.errors import OperationSetAborted, StorageError
from permanent.domain.validation import Validation

if TYPE_CHECKING:
    from collections.abc import Iterator

    from permanent.domain.ports.storage import StorageAdapter
    from permanent.domain.transactions.base import TransactionOperation

log = logging.getLogger(__name__)


class TransactionOperationSet:
    """Operations sharing one storage adapter, applied all-or-nothing.

    ``save()`` validates every operation first and runs none of them if any is
    invalid. The run phase is wrapped in the adapter's transaction: when one
    operation fails in storage, or the commit does, the writes of the previous ones
    are rolled back and their in-memory effects undone.
    """

    def __init__(self, adapter: StorageAdapter) -> None:
        self.adapter = adapter
        self._operations: list[TransactionOperation] = []
        self.validation = Validation()

    def __iter__(self) -> Iterator[TransactionOperation]:
        return iter(self._operations)

    def __len__(self) -> int:
        return len(self._operations)

    def add(self, operation: TransactionOperation) -> TransactionOperationSet:
        operation.operation_set = self
        self._operations.append(operation)
        return self

    def save(self) -> bool:
        """Validate then run every operation; return whether the whole set was applied.

        Inside a transaction opened by the caller, a failing operation raises
        ``OperationSetAborted`` after undoing the in-memory effects of the set, so
        the owner of that transaction rolls the writes back.
        """

        if not self._operations:
            return True
        if not self._validate_operations():
            log.info(
                "Operation set not saved: %d validation error(s)", self.validation.error_count
            )
            return False
        return self._run_operations()

    def _validate_operations(self) -> bool:
        self.validation = Validation()
        all_valid = True
        for operation in self._operations:
            self.validation.merge(operation.validate())
            all_valid = operation.is_valid() and all_valid
        return all_valid

    def _run_operations(self) -> bool:
        joined = self.adapter.in_transaction()
        done: list[TransactionOperation] = []
        try:
            with self.adapter.transaction():
                for operation in self._operations:
                    if not operation.run_if_valid():
                        raise OperationSetAborted(operation)
                    done.append(operation)
        except OperationSetAborted as exc:
            self._rollback_state(done)
            if joined:
                log.warning(
                    "Operation set aborted by %r inside an outer transaction", exc.operation
                )
                raise
            log.warning("Rolled back operation set after %r failed", exc.operation)
            return False
        except StorageError:
            log.warning("Operation set transaction failed, rolled back", exc_info=True)
            self._rollback_state(done)
            return False
        return True

    @staticmethod
    def _rollback_state(done: list[TransactionOperation]) -> None:
        for operation in reversed(done):
            operation.rollback_state()
