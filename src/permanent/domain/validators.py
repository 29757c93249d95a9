"""Field validators turning untrusted input into data ready to be written."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, TypeAlias, runtime_checkable

from permanent.domain.errors import InvalidFieldError, UserError
from permanent.domain.validation import Validation

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    from permanent.domain.entity import PermanentObject

    FieldCheck: TypeAlias = Callable[[Mapping[str, object], PermanentObject | None], object]


@runtime_checkable
class FieldValidator(Protocol):
    """Validate input for the given fields against an optional reference entity."""

    def validate(
        self,
        input_data: Mapping[str, object],
        fields: Sequence[str],
        ref: PermanentObject | None = None,
        *,
        ignore_required: bool = False,
    ) -> tuple[dict[str, object], Validation]: ...


class CallableFieldValidator:
    """Run one check callable per field.

    A check receives the whole input and the reference entity (``None`` on create)
    and returns the value to store, raising ``UserError`` when the input is not
    acceptable. Fields without a check are copied from the input as-is. Values equal
    to the reference entity's current value are left out.
    """

    def __init__(self, checks: Mapping[str, FieldCheck] | None = None) -> None:
        self._checks: dict[str, FieldCheck] = dict(checks or {})

    def __repr__(self) -> str:
        return f"CallableFieldValidator(fields={sorted(self._checks)!r})"

    @property
    def checks(self) -> dict[str, FieldCheck]:
        return dict(self._checks)

    def merged_with(self, other: CallableFieldValidator) -> CallableFieldValidator:
        """Return a validator with ``other``'s checks taking precedence."""

        return CallableFieldValidator({**self._checks, **other.checks})

    def validate(
        self,
        input_data: Mapping[str, object],
        fields: Sequence[str],
        ref: PermanentObject | None = None,
        *,
        ignore_required: bool = False,
    ) -> tuple[dict[str, object], Validation]:
        _ = ignore_required
        validation = Validation()
        data: dict[str, object] = {}
        for field in fields:
            value: object = None
            try:
                check = self._checks.get(field)
                if check is not None:
                    value = check(input_data, ref)
                elif field in input_data:
                    value = input_data[field]
                else:
                    continue
            except UserError as exc:
                if value is None and input_data.get(field) is not None:
                    value = input_data[field]
                validation.add_error(InvalidFieldError.from_error(exc, field, value))
                continue
            if ref is None or field not in ref.get_fields() or value != ref.get_value(field):
                data[field] = value
        return data, validation


def as_field_validator(
    validator: FieldValidator | Mapping[str, FieldCheck] | None,
) -> FieldValidator | None:
    """Wrap a plain ``{field: check}`` mapping into a ``CallableFieldValidator``."""

    if validator is None or isinstance(validator, FieldValidator):
        return validator
    return CallableFieldValidator(validator)
