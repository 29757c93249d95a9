"""Pluggable translation hook used when rendering user-facing messages."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeAlias

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    TranslationValues: TypeAlias = Sequence[object] | Mapping[str, object]
    Translator: TypeAlias = Callable[[str, str | None, TranslationValues], str]


def default_translator(
    key: str,
    domain: str | None,
    values: Sequence[object] | Mapping[str, object],
) -> str:
    """Return the key itself, with ``{name}``/``{0}`` placeholders substituted."""

    _ = domain
    try:
        if isinstance(values, dict):
            return key.format(**values)
        return key.format(*values)
    except (IndexError, KeyError, ValueError):
        return key


@dataclass(slots=True)
class _TranslationState:
    translator: Translator | None = None


_STATE = _TranslationState()


def set_translator(translator: Translator | None) -> None:
    """Install the translation lookup; ``None`` restores the default."""

    _STATE.translator = translator


def translate(
    key: str,
    domain: str | None = None,
    values: Sequence[object] | Mapping[str, object] = (),
) -> str:
    translator = _STATE.translator or default_translator
    return translator(key, domain, values)
