"""Abstract queries handed to a :class:`~sqla_relations.executor.QueryExecutor`.

The planner never builds SQL.  It emits :class:`Query` values made of a table
name, a predicate tree of :class:`Eq` / :class:`In` / :class:`And` nodes and an
optional :class:`Join`; each executor compiles them for its own store.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Union


@dataclass(frozen=True, slots=True)
class Eq:
    """``column = value`` (``column IS NULL`` when *value* is ``None``)."""

    column: str
    value: Any
    table: str | None = None

    def __str__(self) -> str:
        return f"{qualify(self.column, self.table)} = {self.value!r}"


@dataclass(frozen=True, slots=True)
class In:
    """``column IN (values...)``.  *values* is never empty when planned."""

    column: str
    values: tuple[Any, ...]
    table: str | None = None

    def __str__(self) -> str:
        return f"{qualify(self.column, self.table)} IN <{len(self.values)} keys>"


@dataclass(frozen=True, slots=True)
class And:
    clauses: tuple[Predicate, ...]

    def __str__(self) -> str:
        return " AND ".join(str(clause) for clause in self.clauses)


Predicate = Union[Eq, In, And]


@dataclass(frozen=True, slots=True)
class Join:
    """Inner join of *table* on ``table.column = <main table>.on``."""

    table: str
    column: str
    on: str

    def __str__(self) -> str:
        return f"JOIN {self.table} ON {self.table}.{self.column} = {self.on}"


@dataclass(frozen=True, slots=True)
class Query:
    table: str
    predicate: Predicate | None = None
    join: Join | None = None

    def __str__(self) -> str:
        parts = [f"FROM {self.table}"]
        if self.join is not None:
            parts.append(str(self.join))
        if self.predicate is not None:
            parts.append(f"WHERE {self.predicate}")

        return " ".join(parts)


def qualify(column: str, table: str | None) -> str:
    """Return ``"table.column"``, or *column* alone when *table* is ``None``."""
    return f"{table}.{column}" if table else column


def conjunction(*predicates: Predicate | None) -> Predicate | None:
    """Combine predicates with AND, flattening nested ``And`` nodes and skipping ``None``."""
    clauses: list[Predicate] = []
    for predicate in predicates:
        if predicate is None:
            continue
        if isinstance(predicate, And):
            clauses.extend(predicate.clauses)
        else:
            clauses.append(predicate)

    if not clauses:
        return None

    return clauses[0] if len(clauses) == 1 else And(tuple(clauses))


def columns_of(predicate: Predicate | None) -> Iterable[tuple[str | None, str]]:
    """Yield ``(table, column)`` for every column a predicate references."""
    if predicate is None:
        return

    stack: list[Predicate] = [predicate]
    while stack:
        node = stack.pop()
        if isinstance(node, And):
            stack.extend(node.clauses)
            continue

        yield node.table, node.column
