from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine  # noqa: TC002
from sqlalchemy.pool import StaticPool

from permanent.adapters.sqlalchemy import SqlAlchemyAdapter, shutdown, startup
from permanent.domain.entity import default_identity_cache
from permanent.domain.translation import set_translator
from tests.helpers.entities import AuditedUser, metadata

os.environ.setdefault("DATABASE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Iterator


@pytest.fixture(autouse=True)
def _reset_process_state(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.delenv("PERMANENT_DEV_MODE", raising=False)
    monkeypatch.delenv("PERMANENT_CHECK_FIELD_INTEGRITY", raising=False)
    try:
        yield
    finally:
        default_identity_cache.clear()
        AuditedUser.saved.clear()
        set_translator(None)


@pytest.fixture
def sqlite_engine() -> Iterator[Engine]:
    # One shared connection so the in-memory database outlives checkouts
    engine = create_engine("sqlite+pysqlite://", poolclass=StaticPool, future=True)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def storage(sqlite_engine: Engine) -> Iterator[SqlAlchemyAdapter]:
    adapter = startup(engine=sqlite_engine, metadata=metadata, create_tables=True, force=True)
    try:
        yield adapter
    finally:
        shutdown()
