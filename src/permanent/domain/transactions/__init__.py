"""Create, update and delete operations with a validate-then-run lifecycle."""

from __future__ import annotations

from .base import TransactionOperation
from .create import CreateTransactionOperation
from .delete import DeleteTransactionOperation
from .operation_set import TransactionOperationSet
from .update import UpdateTransactionOperation

__all__ = [
    "CreateTransactionOperation",
    "DeleteTransactionOperation",
    "TransactionOperation",
    "TransactionOperationSet",
    "UpdateTransactionOperation",
]
