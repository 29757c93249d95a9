"""Validation results accumulated across field checks."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Final

from permanent.domain.errors import UserError
from permanent.domain.translation import translate

if TYPE_CHECKING:
    from collections.abc import Iterator

    from permanent.domain.translation import Translator

DEFAULT_SEVERITY: Final[int] = 1


@dataclass(frozen=True, slots=True)
class ValidationError:
    """One failed check, ready to be translated and reported."""

    message: str
    extra: dict[str, object] = field(default_factory=dict[str, object])
    domain: str | None = None
    severity: int = DEFAULT_SEVERITY

    @property
    def field_name(self) -> str | None:
        value = self.extra.get("field")
        return value if isinstance(value, str) else None

    @property
    def value(self) -> object:
        return self.extra.get("value")

    @property
    def arguments(self) -> object:
        return self.extra.get("args")


class Validation:
    """Mutable accumulator of validation errors; valid when empty."""

    def __init__(self) -> None:
        self._errors: list[ValidationError] = []

    def __repr__(self) -> str:
        return f"Validation(errors={self._errors!r})"

    def __iter__(self) -> Iterator[ValidationError]:
        return iter(self._errors)

    @property
    def errors(self) -> list[ValidationError]:
        return list(self._errors)

    @property
    def error_count(self) -> int:
        return len(self._errors)

    def merge(self, validation: Validation) -> Validation:
        self._errors.extend(validation.errors)
        return self

    def add_validation_error(self, error: ValidationError) -> Validation:
        self._errors.append(error)
        return self

    def add_error(
        self,
        error: str | UserError,
        domain: str | None = None,
        severity: int = DEFAULT_SEVERITY,
    ) -> Validation:
        """Record a message key or a user error, keeping its structured extra data."""

        extra: dict[str, object] = {}
        if isinstance(error, UserError):
            extra = error.extra_data
            domain = domain if domain is not None else error.domain
            message = error.message
        else:
            message = error
        return self.add_validation_error(ValidationError(message, extra, domain, severity))

    def with_default_domain(self, domain: str | None) -> Validation:
        """Assign ``domain`` to every error recorded without one."""

        if domain is None:
            return self
        self._errors = [
            error if error.domain is not None else replace(error, domain=domain)
            for error in self._errors
        ]
        return self

    def get_reports(self, translator: Translator | None = None) -> list[dict[str, object]]:
        reports: list[dict[str, object]] = []
        for error in self._errors:
            arguments = error.arguments
            values = arguments if isinstance(arguments, (list, dict)) else []
            if translator is None:
                report = translate(error.message, error.domain, values)
            else:
                report = translator(error.message, error.domain, values)
            reports.append(
                {
                    "code": error.message,
                    "report": report,
                    "domain": error.domain,
                    "severity": error.severity,
                    "field": error.field_name,
                }
            )
        return reports

    def is_valid(self) -> bool:
        return not self.has_errors()

    def has_errors(self) -> bool:
        return bool(self._errors)
