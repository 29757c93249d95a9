"""Identity map holding the canonical in-memory instance of each stored row."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from permanent.domain.entity import PermanentObject

log = logging.getLogger(__name__)

T = TypeVar("T", bound="PermanentObject")


class IdentityCache:
    """Maps ``(entity class, id)`` to the single instance representing that row.

    Entries are only removed by explicit calls; there is no eviction policy.
    """

    def __init__(self) -> None:
        self._instances: dict[type[PermanentObject], dict[object, PermanentObject]] = {}

    def get(self, entity_class: type[T], entity_id: object) -> T | None:
        instance = self._instances.get(entity_class, {}).get(entity_id)
        if instance is None:
            return None
        log.debug("Identity cache hit for %s#%s", entity_class.__name__, entity_id)
        return instance  # type: ignore[return-value]

    def put(self, entity: T) -> T:
        """Cache ``entity`` unless its row is already cached; return the cached one."""

        instances = self._instances.setdefault(type(entity), {})
        cached = instances.get(entity.id)
        if cached is not None:
            return cached  # type: ignore[return-value]
        instances[entity.id] = entity
        return entity

    def discard(self, entity: PermanentObject) -> None:
        instances = self._instances.get(type(entity))
        if instances is not None and instances.get(entity.id) is entity:
            del instances[entity.id]

    def evict_deleted(self, entity_class: type[PermanentObject] | None = None) -> int:
        """Drop deleted entities, for one class or all of them."""

        classes = [entity_class] if entity_class is not None else list(self._instances)
        evicted = 0
        for cls in classes:
            instances = self._instances.get(cls)
            if not instances:
                continue
            for entity_id in [key for key, obj in instances.items() if obj.is_deleted()]:
                del instances[entity_id]
                evicted += 1
        return evicted

    def clear(self, entity_class: type[PermanentObject] | None = None) -> None:
        if entity_class is None:
            self._instances.clear()
            return
        self._instances.pop(entity_class, None)

    def count(self, entity_class: type[PermanentObject] | None = None) -> int:
        if entity_class is not None:
            return len(self._instances.get(entity_class, {}))
        return sum(len(instances) for instances in self._instances.values())

    def instances(self, entity_class: type[PermanentObject]) -> list[PermanentObject]:
        return list(self._instances.get(entity_class, {}).values())
