"""Storage adapter executing entity queries with SQLAlchemy Core."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from contextlib import contextmanager
from typing import TYPE_CHECKING, TypeVar

from sqlalchemy import (
    MetaData,
    Table,
    and_,
    delete,
    insert,
    literal,
    select,
    text,
    update,
)
from sqlalchemy.exc import SQLAlchemyError

from permanent.domain.errors import StorageError
from permanent.domain.ports.storage import Output

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from sqlalchemy import ColumnElement, Connection, CursorResult, Executable
    from sqlalchemy.engine import Engine

    from permanent.domain.ports.storage import (
        DeleteQuery,
        InsertQuery,
        Row,
        SelectQuery,
        UpdateQuery,
        WhereClause,
    )

log = logging.getLogger(__name__)

T = TypeVar("T")


class SqlAlchemyAdapter:
    """Run select/insert/update/delete queries on one connection of ``engine``.

    Tables are taken from ``metadata`` when declared there, otherwise reflected
    from the database on first use. Every statement runs in its own transaction
    unless ``transaction()`` is active, in which case it joins it. The adapter is
    not thread-safe: use one instance per thread.
    """

    def __init__(self, engine: Engine, metadata: MetaData | None = None) -> None:
        self.engine = engine
        self.metadata = metadata if metadata is not None else MetaData()
        self._connection: Connection | None = None
        self._last_ids: dict[str, object] = {}

    def __repr__(self) -> str:
        return f"SqlAlchemyAdapter({self.engine.url!r})"

    def connection(self) -> Connection:
        if self._connection is None or self._connection.closed:
            self._connection = self.engine.connect()
        return self._connection

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    def table(self, name: str) -> Table:
        table = self.metadata.tables.get(name)
        if table is not None:
            return table
        return self._run(lambda connection: Table(name, self.metadata, autoload_with=connection))

    # Queries ---------------------------------------------------------------

    def select(self, query: SelectQuery) -> list[Row] | Row | None:
        table = self.table(query.table)
        if query.fields:
            statement = select(*(_column(table, name) for name in query.fields))
        else:
            statement = select(table)
        condition = _where(table, query.where)
        if condition is not None:
            statement = statement.where(condition)
        for order in query.order_by:
            statement = statement.order_by(_order(table, order))
        number = 1 if query.output is Output.FIRST else query.number
        if number is not None:
            statement = statement.limit(number)
        if query.offset:
            statement = statement.offset(query.offset)

        rows = self._execute(statement, lambda result: [dict(row) for row in result.mappings()])
        if query.output is Output.FIRST:
            return rows[0] if rows else None
        return rows

    def insert(self, query: InsertQuery) -> int:
        table = self.table(query.table)
        statement = insert(table).values(_values(table, query.values))

        def consume(result: CursorResult[object]) -> int:
            primary_key = result.inserted_primary_key
            self._last_ids[query.table] = primary_key[0] if primary_key else None
            return result.rowcount

        return self._execute(statement, consume)

    def last_id(self, table: str) -> object:
        """Primary key of the last row inserted into ``table`` by this adapter."""

        return self._last_ids.get(table)

    def update(self, query: UpdateQuery) -> int:
        table = self.table(query.table)
        statement = update(table).values(_values(table, query.values))
        condition = _limited_where(table, query.where, query.number)
        if condition is not None:
            statement = statement.where(condition)
        return self._execute(statement, lambda result: result.rowcount)

    def delete(self, query: DeleteQuery) -> int:
        table = self.table(query.table)
        statement = delete(table)
        condition = _limited_where(table, query.where, query.number)
        if condition is not None:
            statement = statement.where(condition)
        return self._execute(statement, lambda result: result.rowcount)

    # Formatting ------------------------------------------------------------

    def escape_identifier(self, identifier: str) -> str:
        return self.engine.dialect.identifier_preparer.quote_identifier(identifier)

    def format_value(self, value: object) -> str:
        """Render ``value`` as a SQL literal of the engine's dialect."""

        if value is None:
            return "NULL"
        compiled = literal(value).compile(
            dialect=self.engine.dialect, compile_kwargs={"literal_binds": True}
        )
        return str(compiled)

    # Transactions ----------------------------------------------------------

    def in_transaction(self) -> bool:
        return self.connection().in_transaction()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group the statements of the block; roll them all back if it raises.

        An already active transaction is joined: the outer one decides.
        """

        if self.in_transaction():
            yield
            return
        try:
            with self.connection().begin():
                yield
        except SQLAlchemyError as exc:
            raise StorageError(f"Transaction failed: {exc}") from exc

    def _execute(
        self,
        statement: Executable,
        consume: Callable[[CursorResult[object]], T],
    ) -> T:
        return self._run(lambda connection: consume(connection.execute(statement)))

    def _run(self, work: Callable[[Connection], T]) -> T:
        """Run ``work`` in the active transaction, or in a new one committed on return."""

        connection = self.connection()
        try:
            if connection.in_transaction():
                return work(connection)
            with connection.begin():
                return work(connection)
        except SQLAlchemyError as exc:
            log.debug("Storage call failed", exc_info=True)
            raise StorageError(str(exc)) from exc


def _column(table: Table, name: str) -> ColumnElement[object]:
    try:
        return table.c[name]
    except KeyError:
        raise StorageError(f"Unknown column {name!r} in table {table.name!r}") from None


def _values(table: Table, values: Mapping[str, object]) -> dict[str, object]:
    for name in values:
        _column(table, name)
    return dict(values)


def _where(table: Table, where: WhereClause) -> ColumnElement[bool] | None:
    if where is None:
        return None
    if isinstance(where, str):
        return text(where) if where.strip() else None  # type: ignore[return-value]
    if not where:
        return None
    return and_(*(_column(table, name) == value for name, value in where.items()))


def _limited_where(
    table: Table,
    where: WhereClause,
    number: int | None,
) -> ColumnElement[bool] | None:
    """Condition matching at most ``number`` rows.

    The limit is enforced through a primary key subquery, unless the condition
    already pins the whole primary key.
    """

    condition = _where(table, where)
    primary_key = list(table.primary_key.columns)
    if number is None or len(primary_key) != 1:
        return condition
    key = primary_key[0]
    if isinstance(where, Mapping) and set(where) == {key.name}:
        return condition
    subquery = select(key)
    if condition is not None:
        subquery = subquery.where(condition)
    return key.in_(subquery.limit(number).scalar_subquery())


def _order(table: Table, order: str) -> ColumnElement[object]:
    name = order.strip()
    if name.startswith("-"):
        return _column(table, name[1:]).desc()
    if name in table.c:
        return table.c[name].asc()
    return text(name)  # type: ignore[return-value]
