"""Write changed fields of an existing entity."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from permanent.domain.transactions.base import TransactionOperation

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from permanent.domain.entity import EntitySnapshot, PermanentObject
    from permanent.domain.validation import Validation

log = logging.getLogger(__name__)


class UpdateTransactionOperation(TransactionOperation):
    def __init__(
        self,
        entity_class: type[PermanentObject],
        data: Mapping[str, object],
        fields: Sequence[str] | None,
        entity: PermanentObject,
    ) -> None:
        super().__init__(entity_class)
        self.data: dict[str, object] = dict(data)
        self.fields = list(fields) if fields is not None else None
        self.entity = entity
        self._snapshot: EntitySnapshot | None = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.entity})"

    def validate(self) -> Validation:
        cls = self.entity_class
        self.data, validation = cls.validate_input(self.data, self.fields, self.entity)
        self._set_valid(cls.on_valid_update(self.data, validation))
        self.validation = validation
        return validation

    def run(self) -> int:
        cls = self.entity_class
        snapshot = self.entity.snapshot()
        query = cls.extract_update_query(self.data, self.entity)
        if not query.values:
            log.debug("Nothing to write for %s", self.entity)
            return 0
        adapter = self.adapter
        updated = self._execute(lambda: adapter.update(query), 0)
        if not updated:
            return 0
        self._snapshot = snapshot
        # Storage is authoritative, re-read what was actually written
        self.entity.reload()
        self.entity.dispatch_saved(dict(query.values), self)
        return 1

    def rollback_state(self) -> None:
        # Storage may still hold the written values until the transaction ends
        if self._snapshot is not None:
            self.entity.restore_snapshot(self._snapshot)
            self._snapshot = None
