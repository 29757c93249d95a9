"""Scoped owner flushing pending entity changes when the scope ends."""

from __future__ import annotations

import logging
from contextvars import ContextVar, Token
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from types import TracebackType

    from permanent.domain.entity import PermanentObject

log = logging.getLogger(__name__)

_CURRENT: ContextVar[UnitOfWork | None] = ContextVar("permanent_unit_of_work", default=None)


class UnitOfWork:
    """Track entities used during a request and save the dirty ones on exit.

    Entities loaded or created while the unit of work is active are registered
    automatically. Leaving the ``with`` block releases each of them: pending changes
    are saved and any failure is logged, never raised, since the code that could
    handle it has already finished. Exceptions raised inside the block propagate.
    """

    def __init__(self) -> None:
        self._entities: dict[int, PermanentObject] = {}
        self._token: Token[UnitOfWork | None] | None = None

    @staticmethod
    def current() -> UnitOfWork | None:
        return _CURRENT.get()

    def __enter__(self) -> UnitOfWork:
        if self._token is not None:
            raise RuntimeError("Unit of work already entered")
        self._token = _CURRENT.set(self)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        try:
            self.flush()
        finally:
            if self._token is not None:
                _CURRENT.reset(self._token)
                self._token = None
            self._entities.clear()
        return False  # don't swallow exceptions

    def track(self, entity: PermanentObject) -> PermanentObject:
        self._entities.setdefault(id(entity), entity)
        return entity

    def tracked(self) -> list[PermanentObject]:
        return list(self._entities.values())

    def flush(self) -> int:
        """Release every tracked entity with pending changes; return how many saved."""

        saved = 0
        for entity in self.tracked():
            if entity.has_changes() and entity.release():
                saved += 1
        log.debug("Unit of work flushed %d entity(ies)", saved)
        return saved
