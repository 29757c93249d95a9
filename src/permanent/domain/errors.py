"""Error types raised by the persistence core.

Structural errors (unknown field, immutable id, stale schema) signal a defect in
the calling code and are never caught by the library. ``UserError`` and its
subclasses are user-facing: they carry a translatable message key, a translation
domain and structured extra data, and are usually collected into a ``Validation``
instead of being raised to the caller.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence


class PermanentError(Exception):
    """Base class of every error raised by this package."""


class OutOfDateSchemaError(PermanentError):
    """Raised when a declared field is missing from a fetched row."""

    def __init__(self, entity_class: str, field_name: str) -> None:
        super().__init__(
            f"The class {entity_class} is out of date, "
            f'the field "{field_name}" is unknown in database.'
        )
        self.entity_class = entity_class
        self.field_name = field_name


class FieldNotFoundError(PermanentError, LookupError):
    """Raised when a field is not found in a set of declared fields."""

    def __init__(self, field_name: str, source: str | None = None) -> None:
        prefix = f"{source}-" if source is not None else ""
        super().__init__(f"fieldNotFound[{prefix}{field_name}]")
        self.field_name = field_name
        self.source = source


class ImmutableFieldError(PermanentError):
    """Raised when writing a field that cannot change after construction."""

    def __init__(self, field_name: str, source: str | None = None) -> None:
        super().__init__("idNotEditable")
        self.field_name = field_name
        self.source = source


class UnknownKeyError(PermanentError, KeyError):
    """Raised when a required key is not provided."""

    def __init__(self, message: str, key: str | None) -> None:
        super().__init__(message)
        self.message = message
        self.key = key

    def __str__(self) -> str:
        return self.message


class StorageError(PermanentError):
    """Raised by storage adapters when a statement cannot be executed."""


class OperationSetAborted(PermanentError):
    """Raised inside an operation set transaction to roll it back."""

    def __init__(self, operation: object) -> None:
        super().__init__(f"Operation {operation!r} failed, rolling back the set")
        self.operation = operation


class UserError(PermanentError):
    """A user-facing error identified by a translatable message key."""

    def __init__(
        self,
        message: str,
        domain: str | None = None,
        extra: Mapping[str, object] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.domain = domain
        self._extra: dict[str, object] = dict(extra or {})

    @property
    def extra_data(self) -> dict[str, object]:
        return dict(self._extra)


class NotFoundError(UserError, LookupError):
    """Raised when a required entity does not exist."""

    def __init__(self, message: str | None = None, domain: str | None = None) -> None:
        super().__init__(message or "notFound", domain)


class InvalidFieldError(UserError):
    """Raised when a single input field fails its check."""

    def __init__(  # noqa: PLR0913
        self,
        key: str,
        field: str,
        value: object,
        type_: str | None = None,
        domain: str | None = None,
        args: Sequence[object] | Mapping[str, object] | object = (),
    ) -> None:
        self.key = key
        self.field = field
        self.value = value
        self.type = type_
        self.arguments = _normalize_args(args)
        super().__init__(f"{field}_{key}", domain)

    @property
    def extra_data(self) -> dict[str, object]:
        return {
            "field": self.field,
            "value": self.value,
            "type": self.type,
            "args": self.arguments,
        }

    def remove_args(self) -> None:
        self.arguments = []

    @classmethod
    def from_error(
        cls,
        error: UserError,
        field: str,
        value: object,
        type_: str | None = None,
        args: Sequence[object] | Mapping[str, object] | object = (),
    ) -> InvalidFieldError:
        if isinstance(error, InvalidFieldError):
            return error
        return cls(error.message, field, value, type_, error.domain, args)


def _normalize_args(args: object) -> list[object] | dict[str, object]:
    if isinstance(args, dict):
        return dict(args)  # pyright: ignore[reportUnknownArgumentType]
    if isinstance(args, (list, tuple)):
        return list(args)  # pyright: ignore[reportUnknownArgumentType]
    return [args]
