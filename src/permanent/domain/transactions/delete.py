"""Delete the row of an entity."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from permanent.domain.ports.storage import DeleteQuery
from permanent.domain.transactions.base import TransactionOperation
from permanent.domain.validation import Validation

if TYPE_CHECKING:
    from permanent.domain.entity import PermanentObject

log = logging.getLogger(__name__)


class DeleteTransactionOperation(TransactionOperation):
    def __init__(self, entity_class: type[PermanentObject], entity: PermanentObject) -> None:
        super().__init__(entity_class)
        self.entity = entity
        self._deleted_here = False

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.entity})"

    def validate(self) -> Validation:
        validation = Validation()
        if self.entity.is_deleted():
            validation.add_error("alreadyDeleted", self.entity_class.get_domain())
        self._set_valid(validation.is_valid())
        self.validation = validation
        return validation

    def run(self) -> int:
        cls = self.entity_class
        id_field = cls.get_id_field()
        query = DeleteQuery(
            table=cls.require_table(), where={id_field: self.entity.id}, number=1
        )
        adapter = self.adapter
        deleted = self._execute(lambda: adapter.delete(query), 0)
        if not deleted:
            return 0
        log.debug("Deleted %s", self.entity)
        self.entity.mark_as_deleted()
        self._deleted_here = True
        self.entity.dispatch_saved({id_field: self.entity.id}, self)
        return 1

    def rollback_state(self) -> None:
        if self._deleted_here:
            self.entity.restore()
            self._deleted_here = False
