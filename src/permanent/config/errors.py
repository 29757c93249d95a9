"""Errors raised while reading settings from the environment."""

from __future__ import annotations


class ConfigurationError(RuntimeError):
    """Raised when an environment setting holds a value that cannot be used."""
