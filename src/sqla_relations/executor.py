from __future__ import annotations

import logging
import threading
from collections.abc import Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

import sqlalchemy as sa

from .exceptions import ExecutorError
from .query import Join, Predicate, qualify
from .tools import compile_predicate


logger = logging.getLogger(__name__)


@runtime_checkable
class QueryExecutor(Protocol):
    """The one collaborator the loader needs to reach storage.

    ``execute`` returns rows as column-name -> value mappings.  When *join*
    is given, the joined table's columns are returned under
    ``"<join table>.<column>"`` keys next to the main table's columns.
    Failures surface as :class:`~sqla_relations.exceptions.ExecutorError`.
    """

    def execute(
        self,
        table: str,
        predicate: Predicate | None,
        join: Join | None = None,
    ) -> Sequence[Mapping[str, Any]]: ...


class SqlaExecutor:
    """SQLAlchemy Core implementation of :class:`QueryExecutor`.

    Args:
        bind: An ``Engine`` (a connection is checked out per query, so
            concurrent loads run on independent connections) or a
            ``Connection`` (queries join the caller's transaction and run one at a
            time, even when a load fans out over threads).
        metadata: ``MetaData`` with the tables to query.  Tables missing from
            it are reflected once, on first use.

    Example::

        engine = sa.create_engine("postgresql+psycopg://...")
        loader = Loader(SqlaExecutor(engine, Base.metadata))
    """

    __slots__ = ("_bind", "_lock", "_metadata")

    def __init__(
        self,
        bind: sa.Engine | sa.Connection,
        metadata: sa.MetaData | None = None,
    ) -> None:
        self._bind = bind
        self._metadata = metadata if metadata is not None else sa.MetaData()
        self._lock = threading.Lock()

    def execute(
        self,
        table: str,
        predicate: Predicate | None,
        join: Join | None = None,
    ) -> list[dict[str, Any]]:
        try:
            statement = self.compile(table, predicate, join)
            if isinstance(self._bind, sa.Engine):
                with self._bind.connect() as conn:
                    return self._fetch(conn, statement)

            # a Connection is not safe to share between threads
            with self._lock:
                return self._fetch(self._bind, statement)
        except sa.exc.SQLAlchemyError as exc:
            raise ExecutorError(str(exc)) from exc

    def compile(
        self,
        table: str,
        predicate: Predicate | None,
        join: Join | None = None,
    ) -> sa.Select[Any]:
        """Translate an abstract query into a ``SELECT``."""
        main = self._table(table)
        tables: dict[str | None, sa.FromClause] = {None: main, table: main}
        statement = sa.select(main)

        if join is not None:
            joined = self._table(join.table)
            tables[join.table] = joined
            statement = sa.select(
                main,
                *(joined.c[c.key].label(qualify(c.key, join.table)) for c in joined.c),
            ).select_from(main.join(joined, joined.c[join.column] == main.c[join.on]))

        if predicate is not None:
            statement = statement.where(compile_predicate(predicate, tables))

        return statement

    @staticmethod
    def _fetch(conn: sa.Connection, statement: sa.Select[Any]) -> list[dict[str, Any]]:
        logger.debug("Executing %s", statement)
        return [dict(row) for row in conn.execute(statement).mappings()]

    def _table(self, name: str) -> sa.Table:
        if (table := self._metadata.tables.get(name)) is not None:
            return table

        with self._lock:
            if (table := self._metadata.tables.get(name)) is not None:
                return table

            logger.debug("Reflecting table %s", name)
            return sa.Table(name, self._metadata, autoload_with=self._bind)
