from __future__ import annotations

import threading
from collections.abc import Iterator, Mapping
from typing import TYPE_CHECKING, Any

from .datastructures import frozendict
from .exceptions import UnknownRelationship


if TYPE_CHECKING:
    from .loader import Loader


class Record:
    """One row of an entity, plus the relationships loaded onto it.

    Columns are read with ``record["name"]`` or ``record.name``.  A
    relationship is read with :meth:`related` or as an attribute; the first
    access on a record bound to a :class:`~sqla_relations.Loader` runs
    :meth:`Loader.load_lazy` and the value is memoized on this record only.
    Each record owns a re-entrant lock, so concurrent first accesses from
    several threads trigger a single load.

    Eager loads attach their results through the same memo, after which the
    attribute access is a plain lookup.
    """

    __slots__ = ("__weakref__", "_entity", "_loader", "_lock", "_relations", "_values")

    def __init__(
        self,
        entity: str,
        values: Mapping[str, Any],
        *,
        loader: Loader | None = None,
    ) -> None:
        self._entity = entity
        self._values: dict[str, Any] = dict(values)
        self._relations: dict[str, Any] = {}
        self._loader = loader
        self._lock = threading.RLock()

    @property
    def entity(self) -> str:
        return self._entity

    @property
    def values(self) -> Mapping[str, Any]:
        """Snapshot of the column values."""
        return frozendict(self._values)

    @property
    def relations(self) -> Mapping[str, Any]:
        """Snapshot of the relationships loaded so far."""
        with self._lock:
            return frozendict(self._relations)

    @property
    def loader(self) -> Loader | None:
        return self._loader

    def bind(self, loader: Loader) -> None:
        """Attach the loader used for lazy relationship access."""
        self._loader = loader

    def get(self, column: str, default: Any = None) -> Any:
        return self._values.get(column, default)

    def loaded(self, name: str) -> bool:
        with self._lock:
            return name in self._relations

    def related(self, name: str) -> Any:
        """Return relationship *name*, loading it on first access.

        Raises:
            RuntimeError: The relationship is not loaded and no loader is bound.
        """
        with self._lock:
            try:
                return self._relations[name]
            except KeyError:
                pass

            if self._loader is None:
                raise RuntimeError(
                    f"Relationship {name!r} of {self._entity!r} is not loaded "
                    "and the record is not bound to a loader"
                )

            value = self._loader.load_lazy(self, name)
            self._relations[name] = value

            return value

    def attach(self, name: str, value: Any) -> None:
        """Store an eagerly loaded relationship value, replacing any earlier one."""
        with self._lock:
            self._relations[name] = value

    def forget(self, name: str) -> None:
        """Drop the memoized value so the next access loads it again."""
        with self._lock:
            self._relations.pop(name, None)

    def __getitem__(self, column: str) -> Any:
        return self._values[column]

    def __setitem__(self, column: str, value: Any) -> None:
        self._values[column] = value

    def __contains__(self, column: object) -> bool:
        return column in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __getattr__(self, name: str) -> Any:
        # Only reached when normal attribute lookup fails.
        if name.startswith("_"):
            raise AttributeError(name)

        values = self._values
        if name in values:
            return values[name]

        with self._lock:
            if name in self._relations:
                return self._relations[name]

        message = f"{self._entity!r} record has no column or relationship {name!r}"
        if self._loader is None:
            raise AttributeError(message)

        try:
            return self.related(name)
        except UnknownRelationship as exc:
            raise AttributeError(message) from exc

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._entity} {self._values!r}>"
