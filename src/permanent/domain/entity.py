"""Permanent objects: in-memory entities bound to one table row.

A ``PermanentObject`` subclass declares its table and fields through an
``EntitySchema``. Instances hold the row data, remember the original value of every
field changed since the last load or save, and write those changes back through
transaction operations. Loading goes through the class identity cache so that a
row is represented by a single instance.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, ClassVar, Final, Self
from uuid import UUID

from permanent.config import DEFAULT_INSTANCE, get_entity_config
from permanent.domain.errors import (
    FieldNotFoundError,
    ImmutableFieldError,
    NotFoundError,
    OutOfDateSchemaError,
    StorageError,
    UnknownKeyError,
    UserError,
)
from permanent.domain.events import current_request, fill_log_event, get_log_event
from permanent.domain.identity_cache import IdentityCache
from permanent.domain.ports.storage import (
    InsertQuery,
    Output,
    SelectQuery,
    UpdateQuery,
    adapter_registry,
)
from permanent.domain.schema import EntitySchema
from permanent.domain.transactions import (
    CreateTransactionOperation,
    DeleteTransactionOperation,
    UpdateTransactionOperation,
)
from permanent.domain.translation import translate
from permanent.domain.unit_of_work import UnitOfWork
from permanent.domain.validation import Validation
from permanent.domain.validators import as_field_validator

if TYPE_CHECKING:
    from collections.abc import Iterable, MutableMapping, Sequence

    from permanent.domain.ports.storage import Row, StorageAdapter, WhereClause
    from permanent.domain.validators import FieldValidator

log = logging.getLogger(__name__)

OUTPUT_MODEL_ALL: Final[str] = "all"
OUTPUT_MODEL_MINIMALS: Final[str] = "min"

default_identity_cache = IdentityCache()


def is_id(value: object) -> bool:
    """Tell whether ``value`` can identify a row: a positive int, a UUID or a key string."""

    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return value > 0
    if isinstance(value, UUID):
        return True
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.isdigit():
            return int(stripped) > 0
        return bool(stripped)
    return False


def normalize_id(value: object) -> object:
    """Turn digit strings into the integer they spell, so both forms hit the same cache entry."""

    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return value


@dataclass(frozen=True, slots=True)
class EntitySnapshot:
    data: dict[str, object]
    original: dict[str, object]
    deleted: bool


class PermanentObject:
    """Base class of entities persisted through a storage adapter."""

    schema: ClassVar[EntitySchema] = EntitySchema.root()
    identity_cache: ClassVar[IdentityCache] = default_identity_cache
    storage_adapter: ClassVar[StorageAdapter | None] = None
    check_field_integrity: ClassVar[bool | None] = None

    def __init_subclass__(cls, **kwargs: object) -> None:
        super().__init_subclass__(**kwargs)
        declared = cls.__dict__.get("schema")
        if declared is None:
            return
        parent = next(
            base.__dict__["schema"] for base in cls.__mro__[1:] if "schema" in base.__dict__
        )
        cls.schema = parent.extend(declared)

    def __init__(self, row: Mapping[str, object]) -> None:
        self._data: dict[str, object] = {}
        self._original: dict[str, object] = {}
        self._deleted = False
        self._on_saved_in_progress = False
        self._hydrate(row)
        if get_entity_config().dev_mode:
            self.check_integrity()

    def _hydrate(self, row: Mapping[str, object]) -> None:
        cls = type(self)
        check = cls.is_checking_field_integrity()
        data: dict[str, object] = {}
        for name in cls.schema.fields:
            # None is a valid value, a missing key is not
            if name not in row and check:
                raise OutOfDateSchemaError(cls.__name__, name)
            data[name] = cls.parse_field_value(name, row.get(name))
        self._data = data
        self._original.clear()

    # Identity --------------------------------------------------------------

    @property
    def id(self) -> object:
        return self.get_value(type(self).get_id_field())

    def uid(self) -> str:
        return f"{type(self).get_table()}#{self.id}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PermanentObject) or type(other) is not type(self):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash((type(self), self.id))

    def __str__(self) -> str:
        try:
            return f"{type(self).__name__}#{self.id}"
        except FieldNotFoundError:
            log.exception("Unable to represent %s", type(self).__name__)
            return ""

    def __repr__(self) -> str:
        return f"<{self}>"

    # Field access ----------------------------------------------------------

    def get_value(self, key: str | None = None) -> object:
        """Return the value of ``key``, or a copy of all values when no key is given."""

        if not key:
            return dict(self._data)
        if key not in self._data:
            raise FieldNotFoundError(key, type(self).__name__)
        return self._data[key]

    def set_value(self, key: str | None, value: object) -> Self:
        cls = type(self)
        if key is None:
            raise UnknownKeyError("nullKey", key)
        if not cls.schema.has_field(key):
            raise FieldNotFoundError(key, cls.__name__)
        if key == cls.get_id_field():
            raise ImmutableFieldError(key, cls.__name__)
        # Freed entities hold no data
        current = self._data.get(key)
        if value == current and type(value) is type(current):
            return self
        if key not in self._original:
            self._original[key] = current
        elif self._original[key] == value and type(self._original[key]) is type(value):
            # Back to the loaded value, nothing left to write
            del self._original[key]
        self._data[key] = value
        return self

    def __getitem__(self, key: str) -> object:
        return self.get_value(key)

    def __setitem__(self, key: str, value: object) -> None:
        self.set_value(key, value)

    def has_changes(self) -> bool:
        return bool(self._original)

    def list_modified_fields(self) -> list[str]:
        return list(self._original)

    def revert(self) -> None:
        """Drop in-memory changes, restoring the values loaded from storage."""

        self._data.update(self._original)
        self._original.clear()

    def snapshot(self) -> EntitySnapshot:
        """Capture the in-memory state, to be put back by ``restore_snapshot``."""

        return EntitySnapshot(dict(self._data), dict(self._original), self._deleted)

    def restore_snapshot(self, snapshot: EntitySnapshot) -> None:
        self._data = dict(snapshot.data)
        self._original = dict(snapshot.original)
        self._deleted = snapshot.deleted

    # Lifecycle -------------------------------------------------------------

    def is_deleted(self) -> bool:
        return self._deleted

    def is_valid(self) -> bool:
        return not self._deleted

    def mark_as_deleted(self) -> None:
        self._deleted = True

    def restore(self) -> None:
        """Clear the deleted flag, after the deletion was rolled back in storage."""

        self._deleted = False

    def save(self) -> bool:
        """Write the modified fields; return whether anything was written.

        The new values already live in this object, so they are not validated again.
        """

        if not self._original or self._deleted:
            return False
        data = {key: self._data[key] for key in self._original}
        operation = self.get_update_operation(data, list(data))
        # The write reloads this entity before on_saved runs, which resets the dirty
        # set; changes the hook makes afterwards stay pending.
        return bool(operation.run())

    def release(self) -> bool:
        """Save pending changes before the entity goes away, never raising."""

        if not self._original:
            return False
        try:
            return self.save()
        except Exception:  # noqa: BLE001
            log.exception("Saving %s on release failed", self)
            return False

    def dispatch_saved(self, data: Mapping[str, object], subject: object) -> None:
        """Run the ``on_saved`` hook unless it is already running for this entity."""

        if self._on_saved_in_progress:
            return
        self._on_saved_in_progress = True
        try:
            type(self).on_saved(dict(data), subject)
        finally:
            self._on_saved_in_progress = False

    def update(
        self,
        input_data: Mapping[str, object],
        fields: Sequence[str] | None = None,
        *,
        validation: Validation | None = None,
    ) -> int:
        """Validate external input for ``fields`` and write it; return 1 on success.

        Errors are merged into ``validation`` when one is given.
        """

        operation = self.get_update_operation(input_data, fields)
        result = operation.validate()
        if validation is not None:
            validation.merge(result)
        return int(operation.run_if_valid())  # type: ignore[arg-type]

    def remove(self, *, validation: Validation | None = None) -> int:
        if self._deleted:
            return 0
        operation = self.get_delete_operation()
        result = operation.validate()
        if validation is not None:
            validation.merge(result)
        return int(operation.run_if_valid())  # type: ignore[arg-type]

    def free(self) -> bool:
        """Remove the row and drop the in-memory data."""

        if not self.remove():
            return False
        type(self).identity_cache.discard(self)
        self._data = {}
        self._original = {}
        return True

    def reload(self, field: str | None = None) -> bool:
        """Refresh from storage, all fields or only ``field``.

        A missing row marks this entity as deleted.
        """

        cls = type(self)
        if field is not None:
            if not cls.schema.has_field(field):
                raise FieldNotFoundError(field, cls.__name__)
            self._original.pop(field, None)
        else:
            self._original.clear()
        query = SelectQuery(
            table=cls.require_table(),
            where={cls.get_id_field(): self.id},
            fields=[field] if field is not None else None,
            output=Output.FIRST,
        )
        try:
            row = cls.get_adapter().select(query)
        except StorageError:
            log.warning("Reloading %s failed", self, exc_info=True)
            row = None
        if not isinstance(row, Mapping) or not row:
            self.mark_as_deleted()
            return False
        if field is not None:
            self._data[field] = cls.parse_field_value(field, row.get(field))
        else:
            self._hydrate(row)
        return True

    def check_integrity(self) -> None:
        """Check object integrity and validity, run in dev mode after construction."""

    # Operations ------------------------------------------------------------

    def get_update_operation(
        self,
        input_data: Mapping[str, object],
        fields: Sequence[str] | None,
    ) -> UpdateTransactionOperation:
        cls = type(self)
        operation = UpdateTransactionOperation(cls, input_data, fields, self)
        operation.adapter = cls.get_adapter()
        return operation

    def get_delete_operation(self) -> DeleteTransactionOperation:
        cls = type(self)
        operation = DeleteTransactionOperation(cls, self)
        operation.adapter = cls.get_adapter()
        return operation

    @classmethod
    def get_create_operation(
        cls,
        input_data: Mapping[str, object],
        fields: Sequence[str] | None,
    ) -> CreateTransactionOperation:
        operation = CreateTransactionOperation(cls, input_data, fields)
        operation.adapter = cls.get_adapter()
        return operation

    @classmethod
    def create(
        cls,
        input_data: Mapping[str, object] | None = None,
        fields: Sequence[str] | None = None,
        *,
        validation: Validation | None = None,
    ) -> object:
        """Validate and insert a new row; return its id, or ``None`` if nothing was created."""

        operation = cls.get_create_operation(input_data or {}, fields)
        result = operation.validate()
        if validation is not None:
            validation.merge(result)
        return operation.run_if_valid()

    @classmethod
    def create_and_get(
        cls,
        input_data: Mapping[str, object] | None = None,
        fields: Sequence[str] | None = None,
        *,
        validation: Validation | None = None,
    ) -> Self | None:
        return cls.load(cls.create(input_data, fields, validation=validation))

    # Loading ---------------------------------------------------------------

    @classmethod
    def instantiate(cls, row: Mapping[str, object]) -> Self:
        return cls(row)

    @classmethod
    def load(
        cls,
        value: object,
        nullable: bool = True,  # noqa: FBT001, FBT002
        use_cache: bool = True,  # noqa: FBT001, FBT002
    ) -> Self | None:
        """Return the entity for an id, a full row or an instance of this class.

        Ids are looked up in the identity cache before storage. A missing row gives
        ``None`` when ``nullable``, else ``NotFoundError``.
        """

        if not value:
            if nullable:
                return None
            raise NotFoundError("invalidParameter_load", cls.get_domain())
        if isinstance(value, cls):
            return value
        row: Mapping[str, object] | None = None
        if isinstance(value, Mapping):
            row = value  # pyright: ignore[reportUnknownVariableType]
            entity_id = row.get(cls.get_id_field())
        else:
            entity_id = value
        if not is_id(entity_id):
            raise UserError("invalidID", cls.get_domain())
        entity_id = normalize_id(entity_id)
        if use_cache:
            cached = cls.identity_cache.get(cls, entity_id)
            if cached is not None:
                return cls._track(cached)
        if row is None:
            row = cls._fetch_row(entity_id)
            if row is None:
                if nullable:
                    return None
                raise NotFoundError(domain=cls.get_domain())
        entity = cls.instantiate(row)
        if use_cache:
            entity = cls.identity_cache.put(entity)
        return cls._track(entity)

    @classmethod
    def _fetch_row(cls, entity_id: object) -> Row | None:
        query = SelectQuery(
            table=cls.require_table(),
            where={cls.get_id_field(): entity_id},
            output=Output.FIRST,
        )
        row = cls.get_adapter().select(query)
        return row if isinstance(row, dict) else None

    @classmethod
    def _track(cls, entity: Self) -> Self:
        unit_of_work = UnitOfWork.current()
        if unit_of_work is not None:
            unit_of_work.track(entity)
        return entity

    @classmethod
    def get(  # noqa: PLR0913
        cls,
        where: WhereClause = None,
        *,
        fields: Sequence[str] | None = None,
        order_by: Sequence[str] = (),
        number: int | None = None,
        offset: int | None = None,
        output: Output = Output.OBJECTS,
    ) -> list[Self] | Self | list[Row] | Row | None:
        """Query this class' table.

        ``Output.OBJECTS`` and ``Output.OBJECT`` hydrate rows through ``load()``; the
        other outputs return raw rows.
        """

        hydrate = output in (Output.OBJECTS, Output.OBJECT)
        if output in (Output.OBJECT, Output.FIRST):
            number = 1
        query = SelectQuery(
            table=cls.require_table(),
            where=where,
            fields=fields,
            order_by=order_by,
            number=number,
            offset=offset,
            output=Output.ROWS if hydrate else output,
        )
        result = cls.get_adapter().select(query)
        if not hydrate:
            if result is None and output is Output.ROWS:
                return []
            return result
        rows = result if isinstance(result, list) else []
        entities = [entity for row in rows if (entity := cls.load(row)) is not None]
        if output is Output.OBJECT:
            return entities[0] if entities else None
        return entities

    # Identity cache --------------------------------------------------------

    @classmethod
    def cache_objects(cls, objects: Iterable[Self]) -> list[Self]:
        return [cls.identity_cache.put(entity) for entity in objects]

    @classmethod
    def get_cache_stats(cls) -> int:
        return cls.identity_cache.count()

    @classmethod
    def clear_deleted_instances(cls) -> int:
        return cls.identity_cache.evict_deleted(cls)

    @classmethod
    def clear_all_instances(cls) -> None:
        cls.identity_cache.clear(cls)

    # Validation ------------------------------------------------------------

    @classmethod
    def check_user_input(
        cls,
        input_data: Mapping[str, object],
        fields: Sequence[str] | None = None,
        ref: PermanentObject | None = None,
        *,
        ignore_required: bool = False,
    ) -> tuple[dict[str, object], Validation]:
        """Run the field validator over ``fields`` (editable fields by default)."""

        validator = cls.get_validator()
        if fields is None:
            fields = cls.schema.editable_fields
        if not fields or validator is None:
            return {}, Validation()
        id_field = cls.get_id_field()
        allowed = [name for name in fields if name != id_field]
        data, validation = validator.validate(
            input_data, allowed, ref, ignore_required=ignore_required
        )
        return data, validation.with_default_domain(cls.get_domain())

    @classmethod
    def validate_input(
        cls,
        input_data: Mapping[str, object],
        fields: Sequence[str] | None = None,
        ref: PermanentObject | None = None,
        *,
        ignore_required: bool = False,
    ) -> tuple[dict[str, object], Validation]:
        """Check the fields, then the resulting data as a whole with ``check_for_object``."""

        data, validation = cls.check_user_input(
            input_data, fields, ref, ignore_required=ignore_required
        )
        if validation.has_errors():
            return data, validation
        try:
            cls.check_for_object(data, ref)
        except UserError as exc:
            validation.add_error(exc, exc.domain or cls.get_domain())
        return data, validation

    @classmethod
    def test_user_input(
        cls,
        input_data: Mapping[str, object],
        fields: Sequence[str] | None = None,
        ref: PermanentObject | None = None,
        *,
        validation: Validation | None = None,
        ignore_required: bool = False,
    ) -> bool:
        _, result = cls.validate_input(input_data, fields, ref, ignore_required=ignore_required)
        if validation is not None:
            validation.merge(result)
        return result.is_valid()

    # Hooks -----------------------------------------------------------------

    @classmethod
    def parse_field_value(cls, name: str, value: object) -> object:
        """Convert a stored value to its Python form."""

        _ = name
        return value

    @classmethod
    def check_for_object(cls, data: Mapping[str, object], ref: PermanentObject | None) -> None:
        """Check validated data as a whole; raise ``UserError`` to reject it."""

    @classmethod
    def on_edit(cls, data: MutableMapping[str, object], entity: PermanentObject | None) -> None:
        """Adjust data about to be written by a create (``entity`` is None) or an update."""

    @classmethod
    def on_saved(cls, data: Mapping[str, object], subject: object) -> None:
        """Called after a successful write with the written data."""

    @classmethod
    def on_valid_create(cls, data: MutableMapping[str, object], validation: Validation) -> bool:
        if validation.has_errors():
            return False
        for event in cls.schema.create_events or ():
            fill_log_event(data, event, cls.schema.fields)
        return True

    @classmethod
    def on_valid_update(cls, data: MutableMapping[str, object], validation: Validation) -> bool:
        if validation.has_errors():
            return False
        # Nothing to write: no audit fields either
        if not any(cls.schema.has_field(name) for name in data):
            return False
        for event in cls.schema.update_events or ():
            fill_log_event(data, event, cls.schema.fields)
        return True

    @classmethod
    def extract_create_query(cls, data: MutableMapping[str, object]) -> InsertQuery:
        cls.on_edit(data, None)
        values = {name: value for name, value in data.items() if cls.schema.has_field(name)}
        return InsertQuery(table=cls.require_table(), values=values)

    @classmethod
    def extract_update_query(
        cls,
        data: MutableMapping[str, object],
        entity: PermanentObject,
    ) -> UpdateQuery:
        cls.on_edit(data, entity)
        values = {name: value for name, value in data.items() if cls.schema.has_field(name)}
        id_field = cls.get_id_field()
        return UpdateQuery(
            table=cls.require_table(),
            values=values,
            where={id_field: entity.id},
            number=1,
        )

    # Audit events ----------------------------------------------------------

    def log_event(
        self,
        event: str,
        timestamp: int | None = None,
        ip_address: str | None = None,
    ) -> None:
        """Set the ``<event>_*`` audit fields of this entity in memory."""

        schema = type(self).schema
        values = get_log_event(event, timestamp, ip_address)
        if schema.has_field(f"{event}_time"):
            self.set_value(f"{event}_time", values[f"{event}_time"])
        elif schema.has_field(f"{event}_date"):
            self.set_value(f"{event}_date", values[f"{event}_date"])
        else:
            return
        request = current_request()
        if schema.has_field(f"{event}_agent") and request.user_agent:
            self.set_value(f"{event}_agent", request.user_agent)
        if schema.has_field(f"{event}_referer") and request.referer:
            self.set_value(f"{event}_referer", request.referer)
        if schema.has_field(f"{event}_ip"):
            self.set_value(f"{event}_ip", values[f"{event}_ip"])

    # Export ----------------------------------------------------------------

    def get_label(self) -> str:
        return str(self)

    def as_dict(self, model: str = OUTPUT_MODEL_ALL) -> dict[str, object] | None:
        if model == OUTPUT_MODEL_ALL:
            return dict(self._data)
        if model == OUTPUT_MODEL_MINIMALS:
            return {"id": self.id, "label": self.get_label()}
        return None

    def export_data(self, filter_keys: Iterable[str] | None = None) -> dict[str, object]:
        """Return the data with datetimes as ISO-8601 strings."""

        if filter_keys is None:
            data = dict(self._data)
        else:
            data = {key: self._data[key] for key in filter_keys if key in self._data}
        return {
            key: value.isoformat() if isinstance(value, datetime) else value
            for key, value in data.items()
        }

    # Class metadata --------------------------------------------------------

    @classmethod
    def get_table(cls) -> str | None:
        return cls.schema.table

    @classmethod
    def require_table(cls) -> str:
        table = cls.schema.table
        if table is None:
            raise TypeError(f"{cls.__name__} is not bound to a table")
        return table

    @classmethod
    def get_id_field(cls) -> str:
        return cls.schema.resolved_id_field

    @classmethod
    def get_fields(cls) -> tuple[str, ...]:
        return cls.schema.fields

    @classmethod
    def get_editable_fields(cls) -> tuple[str, ...] | None:
        return cls.schema.editable_fields

    @classmethod
    def get_domain(cls) -> str | None:
        return cls.schema.resolved_domain

    @classmethod
    def get_validator(cls) -> FieldValidator | None:
        return as_field_validator(cls.schema.validator)

    @classmethod
    def get_adapter(cls) -> StorageAdapter:
        if cls.storage_adapter is not None:
            return cls.storage_adapter
        return adapter_registry.get(cls.schema.instance or DEFAULT_INSTANCE)

    @classmethod
    def is_checking_field_integrity(cls) -> bool:
        if cls.check_field_integrity is not None:
            return cls.check_field_integrity
        return get_entity_config().check_field_integrity

    @classmethod
    def set_check_field_integrity(cls, check: bool) -> None:  # noqa: FBT001
        cls.check_field_integrity = check

    @classmethod
    def is_field_editable(cls, field: str) -> bool:
        if field == cls.get_id_field():
            return False
        editable = cls.schema.editable_fields
        if editable is not None:
            return field in editable
        return cls.schema.has_field(field)

    @classmethod
    def complete_fields(cls, data: Mapping[str, object]) -> dict[str, object]:
        """Return ``data`` with every missing declared field set to an empty string."""

        completed = dict(data)
        for name in cls.schema.fields:
            if completed.get(name) is None:
                completed[name] = ""
        return completed

    @classmethod
    def escape_identifier(cls, identifier: str | None = None) -> str:
        return cls.get_adapter().escape_identifier(identifier or cls.require_table())

    @classmethod
    def format_value(cls, value: object) -> str:
        return cls.get_adapter().format_value(value)

    @classmethod
    def text(cls, key: str, values: Sequence[object] | Mapping[str, object] = ()) -> str:
        """Translate ``key`` in this class' domain."""

        return translate(key, cls.get_domain(), values)
