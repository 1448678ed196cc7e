from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa

from .exceptions import InvalidSchema
from .query import And, Eq, In, Predicate


if TYPE_CHECKING:
    from .registry import Registry


def unique_values(values: Iterable[Any]) -> tuple[Any, ...]:
    """Distinct non-null values in first-seen order.

    Used to build ``IN (...)`` key sets: one entry per distinct key no matter
    how many owners share it.
    """
    return tuple(dict.fromkeys(value for value in values if value is not None))


def python_type(column: sa.ColumnElement[Any]) -> type:
    """Return the Python type of a SQLAlchemy column, or ``object`` if the type has none."""
    try:
        return column.type.python_type
    except NotImplementedError:
        return object


def register_tables(
    registry: Registry,
    metadata: sa.MetaData,
    entities: Mapping[str, str],
    pivots: Iterable[str] = (),
) -> None:
    """Register entities and pivot tables from SQLAlchemy ``Table`` metadata.

    Args:
        registry: Registry to fill (must not be frozen yet).
        metadata: ``MetaData`` holding the tables.
        entities: Entity name -> table name.
        pivots: Table names to declare as pivots.

    Raises:
        InvalidSchema: A table has no primary key or a composite one.
        KeyError: A table name is not in *metadata*.

    Example:
        >>> register_tables(
        ...     registry,
        ...     metadata,
        ...     entities={"user": "users", "role": "roles"},
        ...     pivots=("role_user",),
        ... )
    """
    for entity_name, table_name in entities.items():
        table = metadata.tables[table_name]
        primary_key = tuple(table.primary_key.columns)
        if len(primary_key) != 1:
            raise InvalidSchema(
                f"Table {table_name!r} must have a single-column primary key, "
                f"got {[c.name for c in primary_key]}"
            )

        registry.register(
            entity_name,
            table_name,
            primary_key[0].name,
            {column.name: python_type(column) for column in table.columns},
        )

    for table_name in pivots:
        registry.register_pivot(table_name, metadata.tables[table_name].columns.keys())


def compile_predicate(
    predicate: Predicate,
    tables: Mapping[str | None, sa.FromClause],
) -> sa.ColumnElement[bool]:
    """Compile an abstract predicate into a SQLAlchemy boolean clause.

    *tables* maps the predicate's table qualifier to the ``FromClause`` that
    owns the column; ``None`` is the query's main table.  Iterative, so deep
    ``And`` trees never hit the recursion limit.
    """
    clauses: list[sa.ColumnElement[bool]] = []
    stack: list[Predicate] = [predicate]
    while stack:
        node = stack.pop()
        if isinstance(node, And):
            stack.extend(reversed(node.clauses))
            continue

        column = resolve_column(tables, node.table, node.column)
        if isinstance(node, In):
            clauses.append(column.in_(node.values))
        elif isinstance(node, Eq):
            clauses.append(column.is_(None) if node.value is None else column == node.value)
        else:
            raise TypeError(f"Unsupported predicate {node!r}")

    return clauses[0] if len(clauses) == 1 else sa.and_(*clauses)


def resolve_column(
    tables: Mapping[str | None, sa.FromClause],
    table: str | None,
    column: str,
) -> sa.ColumnElement[Any]:
    """Resolve ``(table, column)`` against *tables*, raising ``ValueError`` when missing."""
    try:
        source = tables[table]
    except KeyError:
        raise ValueError(
            f"Table {table!r} is not part of the query. Available: {[t for t in tables if t]}"
        ) from None

    try:
        return source.c[column]
    except KeyError:
        raise ValueError(
            f"Column {column!r} not found in {source.description!r}. "
            f"Available: {[c.key for c in source.c]}"
        ) from None
