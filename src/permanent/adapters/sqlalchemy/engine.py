"""Lifecycle of the SQLAlchemy storage adapters registered for entities."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import create_engine

from permanent.adapters.sqlalchemy.adapter import SqlAlchemyAdapter
from permanent.config import DEFAULT_INSTANCE, get_database_config
from permanent.domain.ports.storage import adapter_registry

if TYPE_CHECKING:
    from sqlalchemy import MetaData
    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)


class StartupError(RuntimeError):
    """Raised when an adapter instance is started twice without ``force``."""


@dataclass(slots=True)
class _AdapterState:
    adapters: dict[str, SqlAlchemyAdapter] = field(default_factory=dict[str, SqlAlchemyAdapter])


_STATE = _AdapterState()


def startup(  # noqa: PLR0913
    *,
    engine: Engine | None = None,
    database_uri: str | None = None,
    metadata: MetaData | None = None,
    instance: str = DEFAULT_INSTANCE,
    create_tables: bool = False,
    force: bool = False,
) -> SqlAlchemyAdapter:
    """Create the adapter of ``instance`` and register it for entity classes.

    The engine is built from ``database_uri`` or the environment configuration when
    not given. ``create_tables`` creates the tables declared in ``metadata``.
    """

    if instance in _STATE.adapters:
        if not force:
            raise StartupError(
                f"Storage instance {instance!r} already initialised. "
                "Pass force=True to reconfigure."
            )
        shutdown(instance)

    resolved_engine = engine or create_engine(
        database_uri or get_database_config(instance).uri, future=True
    )
    if metadata is not None and create_tables:
        metadata.create_all(resolved_engine)

    adapter = SqlAlchemyAdapter(resolved_engine, metadata)
    _STATE.adapters[instance] = adapter
    adapter_registry.register(adapter, instance)
    log.debug("Started storage instance %r on %s", instance, resolved_engine.url)
    return adapter


def configured_adapter(instance: str = DEFAULT_INSTANCE) -> SqlAlchemyAdapter | None:
    """Return the adapter managed for ``instance`` (if any)."""

    return _STATE.adapters.get(instance)


def configured_engine(instance: str = DEFAULT_INSTANCE) -> Engine | None:
    adapter = _STATE.adapters.get(instance)
    return adapter.engine if adapter is not None else None


def is_started(instance: str = DEFAULT_INSTANCE) -> bool:
    """Return whether ``instance`` has been initialised."""

    return instance in _STATE.adapters


def shutdown(instance: str | None = None) -> None:
    """Close and unregister one instance, or all of them (primarily for tests)."""

    instances = [instance] if instance is not None else list(_STATE.adapters)
    for name in instances:
        adapter = _STATE.adapters.pop(name, None)
        if adapter is None:
            continue
        adapter_registry.unregister(name)
        adapter.close()
        adapter.engine.dispose()
