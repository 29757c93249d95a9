"""Insert a new row from validated input."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from permanent.domain.transactions.base import TransactionOperation

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from permanent.domain.entity import PermanentObject
    from permanent.domain.validation import Validation

log = logging.getLogger(__name__)


class CreateTransactionOperation(TransactionOperation):
    FAILED = None

    def __init__(
        self,
        entity_class: type[PermanentObject],
        data: Mapping[str, object],
        fields: Sequence[str] | None = None,
    ) -> None:
        super().__init__(entity_class)
        self.data: dict[str, object] = dict(data)
        self.fields = list(fields) if fields is not None else None
        self.insert_id: object = None

    def validate(self) -> Validation:
        cls = self.entity_class
        self.data, validation = cls.validate_input(self.data, self.fields)
        self._set_valid(cls.on_valid_create(self.data, validation))
        self.validation = validation
        return validation

    def run(self) -> object:
        cls = self.entity_class
        query = cls.extract_create_query(self.data)
        adapter = self.adapter
        inserted = self._execute(lambda: adapter.insert(query), 0)
        if not inserted:
            return self.FAILED
        self.insert_id = adapter.last_id(query.table)
        log.debug("Inserted %s#%s", cls.__name__, self.insert_id)
        cls.on_saved(dict(query.values), self.insert_id)
        return self.insert_id

    def rollback_state(self) -> None:
        self.insert_id = None
