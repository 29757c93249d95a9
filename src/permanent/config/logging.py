"""Logging setup for applications embedding permanent."""

from __future__ import annotations

import logging


def configure_logging(*, level: int = logging.INFO, force: bool = False) -> None:
    """Configure the root logger with a terse one-line format.

    Library modules only create ``logging.getLogger(__name__)`` loggers; call this
    once from the application entry point. ``force=True`` replaces handlers that are
    already installed.
    """

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        force=force,
    )
