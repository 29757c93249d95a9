"""Immutable description of how an entity class maps to its table.

Each entity class declares an ``EntitySchema`` with only what it adds or overrides.
When the class is created, the declaration is composed with the parent class'
schema into the final descriptor the class uses from then on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final

from permanent.config.storage import DEFAULT_INSTANCE
from permanent.domain.validators import CallableFieldValidator, as_field_validator

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from permanent.domain.validators import FieldCheck, FieldValidator

DEFAULT_ID_FIELD: Final[str] = "id"
DEFAULT_CREATE_EVENTS: Final[tuple[str, ...]] = ("create", "edit")
DEFAULT_UPDATE_EVENTS: Final[tuple[str, ...]] = ("edit", "update")


def _unique(values: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(values))


@dataclass(frozen=True, slots=True)
class EntitySchema:
    """Table binding, declared fields and validation rules of an entity class.

    ``None`` means "inherit from the parent schema" for every optional attribute.
    """

    table: str | None = None
    fields: tuple[str, ...] = ()
    id_field: str | None = None
    editable_fields: tuple[str, ...] | None = None
    validator: FieldValidator | Mapping[str, FieldCheck] | None = None
    domain: str | None = None
    instance: str | None = None
    create_events: tuple[str, ...] | None = None
    update_events: tuple[str, ...] | None = None
    _field_set: frozenset[str] = field(default=frozenset(), init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", _unique(self.fields))
        if self.editable_fields is not None:
            object.__setattr__(self, "editable_fields", _unique(self.editable_fields))
        object.__setattr__(self, "validator", as_field_validator(self.validator))
        object.__setattr__(self, "_field_set", frozenset(self.fields))

    @classmethod
    def root(cls) -> EntitySchema:
        """Schema of the abstract base: only the id field is known."""

        return cls(
            fields=(DEFAULT_ID_FIELD,),
            id_field=DEFAULT_ID_FIELD,
            validator=CallableFieldValidator(),
            instance=DEFAULT_INSTANCE,
            create_events=DEFAULT_CREATE_EVENTS,
            update_events=DEFAULT_UPDATE_EVENTS,
        )

    @property
    def resolved_id_field(self) -> str:
        return self.id_field or DEFAULT_ID_FIELD

    @property
    def resolved_domain(self) -> str | None:
        return self.domain if self.domain is not None else self.table

    def has_field(self, name: str) -> bool:
        return name in self._field_set

    def extend(self, declared: EntitySchema) -> EntitySchema:
        """Compose ``declared`` on top of this (parent) schema.

        Fields are merged in order with the id field first, editable fields are
        merged when either side declares some, and callable validators are merged
        with the child's checks taking precedence. A validator object replaces the
        parent's one.
        """

        id_field = declared.id_field or self.resolved_id_field
        inherited = (name for name in self.fields if name != self.resolved_id_field)
        fields = _unique((id_field, *inherited, *declared.fields))

        editable: tuple[str, ...] | None
        if declared.editable_fields is None and self.editable_fields is None:
            editable = None
        else:
            editable = _unique((*(self.editable_fields or ()), *(declared.editable_fields or ())))

        table = declared.table if declared.table is not None else self.table
        return EntitySchema(
            table=table,
            fields=fields,
            id_field=id_field,
            editable_fields=editable,
            validator=_merge_validators(self.validator, declared.validator),
            domain=declared.domain if declared.domain is not None else table,
            instance=declared.instance or self.instance,
            create_events=declared.create_events
            if declared.create_events is not None
            else self.create_events,
            update_events=declared.update_events
            if declared.update_events is not None
            else self.update_events,
        )


def _merge_validators(
    parent: FieldValidator | Mapping[str, FieldCheck] | None,
    child: FieldValidator | Mapping[str, FieldCheck] | None,
) -> FieldValidator | None:
    parent_validator = as_field_validator(parent)
    child_validator = as_field_validator(child)
    if child_validator is None:
        return parent_validator
    if isinstance(parent_validator, CallableFieldValidator) and isinstance(
        child_validator, CallableFieldValidator
    ):
        return parent_validator.merged_with(child_validator)
    return child_validator
