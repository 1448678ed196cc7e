from __future__ import annotations

import threading
from collections.abc import Collection, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, ClassVar, final

from .datastructures import frozendict
from .descriptors import Descriptor, Shape, build_descriptor
from .exceptions import (
    DuplicateEntity,
    DuplicateRelationship,
    InvalidSchema,
    RegistryFrozen,
    UnknownEntity,
    UnknownRelationship,
)
from .morph import MorphMap


@dataclass(frozen=True, slots=True)
class Entity:
    """Metadata of one stored record type."""

    name: str
    table: str
    primary_key: str
    columns: Mapping[str, type]

    @property
    def primary_key_type(self) -> type:
        return self.columns[self.primary_key]


class Registry:
    """Entities, pivot tables, relationship descriptors and morph tags.

    A registry is filled once at start-up and then frozen.  Freezing moves
    every internal table into a :class:`~sqla_relations.frozendict`; any
    further ``register*`` or ``describe`` call raises
    :class:`~sqla_relations.exceptions.RegistryFrozen`.  Loaders freeze the
    registry they use before their first query, so the planner can never
    observe metadata changing in the middle of a batch.

    Example:
        >>> registry = Registry()
        >>> registry.register("user", "users", "id", {"id": int, "name": str})
        >>> registry.register("post", "posts", "id", {"id": int, "user_id": int})
        >>> registry.has_many("user", "posts", "post")
        >>> registry.freeze()
    """

    __slots__ = ("_entities", "_frozen", "_lock", "_morphs", "_pivots", "_relationships")

    def __init__(self) -> None:
        self._entities: dict[str, Entity] = {}
        self._pivots: dict[str, frozenset[str]] = {}
        self._relationships: dict[tuple[str, str], Descriptor] = {}
        self._morphs = MorphMap()
        self._frozen = False
        self._lock = threading.Lock()

    # -- entities ---------------------------------------------------------

    def register(
        self,
        entity_name: str,
        table: str,
        primary_key: str,
        columns: Mapping[str, type],
    ) -> Entity:
        """Register an entity.

        Args:
            entity_name: Application-facing name (``"user"``).
            table: Table the rows live in (``"users"``).
            primary_key: Single primary-key column; must be one of *columns*.
            columns: Column name -> Python value type.

        Raises:
            DuplicateEntity: *entity_name* is already registered.
            InvalidSchema: *primary_key* is not a column, or table/columns are empty.
        """
        with self._lock:
            self._check_mutable(f"entity {entity_name!r}")
            if entity_name in self._entities:
                raise DuplicateEntity(f"Entity {entity_name!r} is already registered")
            if not table or not columns:
                raise InvalidSchema(f"Entity {entity_name!r} needs a table and columns")
            if primary_key not in columns:
                raise InvalidSchema(
                    f"Primary key {primary_key!r} is not a column of {entity_name!r}. "
                    f"Available: {sorted(columns)}"
                )

            entity = Entity(
                name=entity_name,
                table=table,
                primary_key=primary_key,
                columns=frozendict(columns),
            )
            self._entities[entity_name] = entity

        return entity

    def lookup(self, entity_name: str) -> Entity:
        try:
            return self._entities[entity_name]
        except KeyError:
            raise UnknownEntity(f"Entity {entity_name!r} is not registered") from None

    def register_pivot(self, table: str, columns: Iterable[str]) -> None:
        """Declare a pivot table so relationship keys on it can be validated.

        Pivot tables are addressable by the loader but never become entities.
        """
        with self._lock:
            self._check_mutable(f"pivot {table!r}")
            if table in self._pivots:
                raise DuplicateEntity(f"Pivot table {table!r} is already registered")
            if not (names := frozenset(columns)):
                raise InvalidSchema(f"Pivot table {table!r} needs columns")

            self._pivots[table] = names

    def table_columns(self, table: str) -> Collection[str]:
        """Column names of a pivot table or of a registered entity's table."""
        if (columns := self._pivots.get(table)) is not None:
            return columns

        for entity in self._entities.values():
            if entity.table == table:
                return entity.columns.keys()

        raise UnknownEntity(f"Table {table!r} is neither a registered pivot nor an entity table")

    # -- relationships ----------------------------------------------------

    def describe(
        self,
        owner: str,
        name: str,
        kind: Shape | str,
        target: str | None = None,
        **fields: Any,
    ) -> Descriptor:
        """Validate and store the relationship *name* on *owner*.

        See :func:`~sqla_relations.descriptors.build_descriptor` for defaults
        and errors.  Raises ``DuplicateRelationship`` when *name* is taken.
        """
        with self._lock:
            self._check_mutable(f"relationship {owner}.{name}")
            if (owner, name) in self._relationships:
                raise DuplicateRelationship(f"Relationship {owner}.{name} is already described")

            descriptor = build_descriptor(self, owner, name, kind, target, fields)
            self._relationships[owner, name] = descriptor

        return descriptor

    def resolve(self, owner: str, name: str) -> Descriptor:
        try:
            return self._relationships[owner, name]
        except KeyError:
            raise UnknownRelationship(f"No relationship {name!r} on {owner!r}") from None

    def relationships(self, owner: str) -> Sequence[Descriptor]:
        """All descriptors declared on *owner*, in declaration order."""
        return tuple(d for (entity, _), d in self._relationships.items() if entity == owner)

    def has_one(self, owner: str, name: str, target: str, **fields: Any) -> Descriptor:
        return self.describe(owner, name, Shape.ONE_TO_ONE, target, **fields)

    def has_many(self, owner: str, name: str, target: str, **fields: Any) -> Descriptor:
        return self.describe(owner, name, Shape.ONE_TO_MANY, target, **fields)

    def belongs_to(self, owner: str, name: str, target: str, **fields: Any) -> Descriptor:
        return self.describe(owner, name, Shape.MANY_TO_ONE, target, **fields)

    def belongs_to_many(self, owner: str, name: str, target: str, **fields: Any) -> Descriptor:
        return self.describe(owner, name, Shape.MANY_TO_MANY, target, **fields)

    def has_one_through(
        self, owner: str, name: str, target: str, through: str, **fields: Any
    ) -> Descriptor:
        return self.describe(owner, name, Shape.ONE_THROUGH, target, through=through, **fields)

    def has_many_through(
        self, owner: str, name: str, target: str, through: str, **fields: Any
    ) -> Descriptor:
        return self.describe(owner, name, Shape.MANY_THROUGH, target, through=through, **fields)

    def morph_one(
        self, owner: str, name: str, target: str, morph_name: str, **fields: Any
    ) -> Descriptor:
        return self.describe(owner, name, Shape.MORPH_ONE, target, morph_name=morph_name, **fields)

    def morph_many(
        self, owner: str, name: str, target: str, morph_name: str, **fields: Any
    ) -> Descriptor:
        return self.describe(
            owner, name, Shape.MORPH_MANY, target, morph_name=morph_name, **fields
        )

    def morph_to(self, owner: str, name: str, morph_name: str | None = None) -> Descriptor:
        return self.describe(owner, name, Shape.MORPH_TO, morph_name=morph_name or name)

    def morph_to_many(
        self, owner: str, name: str, target: str, morph_name: str, **fields: Any
    ) -> Descriptor:
        return self.describe(
            owner, name, Shape.MORPH_TO_MANY, target, morph_name=morph_name, **fields
        )

    def morphed_by_many(
        self, owner: str, name: str, target: str, morph_name: str, **fields: Any
    ) -> Descriptor:
        return self.describe(
            owner, name, Shape.MORPHED_BY_MANY, target, morph_name=morph_name, **fields
        )

    # -- polymorphic types ------------------------------------------------

    def register_morph_type(self, tag_value: str, entity_name: str) -> None:
        """Associate the discriminator *tag_value* with a registered entity."""
        with self._lock:
            self._check_mutable(f"morph type {tag_value!r}")
            self.lookup(entity_name)
            self._morphs.register(tag_value, entity_name)

    def resolve_morph_type(self, tag_value: str) -> Entity:
        return self.lookup(self._morphs.resolve(tag_value))

    def morph_tag_for(self, entity_name: str) -> str:
        return self._morphs.tag_for(entity_name)

    @property
    def morph_types(self) -> Mapping[str, str]:
        """Registered morph tag -> entity name."""
        return self._morphs.tags

    # -- lifecycle --------------------------------------------------------

    def freeze(self) -> None:
        """Make the registry read-only.  Safe to call more than once."""
        with self._lock:
            if self._frozen:
                return

            self._entities = frozendict(self._entities)  # type: ignore[assignment]
            self._pivots = frozendict(self._pivots)  # type: ignore[assignment]
            self._relationships = frozendict(self._relationships)  # type: ignore[assignment]
            self._morphs.freeze()
            self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def _check_mutable(self, what: str) -> None:
        if self._frozen:
            raise RegistryFrozen(f"Cannot register {what}: registry is frozen")

    def __repr__(self) -> str:
        state = "frozen" if self._frozen else "open"
        return (
            f"<{type(self).__name__} {state} entities={len(self._entities)} "
            f"relationships={len(self._relationships)} morph_types={len(self._morphs)}>"
        )


@final
class Catalog:
    """Process-wide holder of the current, frozen :class:`Registry`.

    The catalog is a singleton initialized once at application start-up with
    :func:`init_catalog`.  Replacing the registry afterwards goes through
    :meth:`swap`, which freezes the new registry and bumps :attr:`version`
    under a lock; loads that already captured the previous registry keep
    using it until they finish.
    """

    __instance: ClassVar[Catalog | None] = None
    __lock: ClassVar[threading.Lock] = threading.Lock()
    _registry: Registry | None
    _version: int

    def __new__(cls, registry: Registry | None = None) -> Catalog:
        with cls.__lock:
            if cls.__instance is None:
                if registry is None:
                    raise RuntimeError("Catalog is not initialized or empty")

                instance = super().__new__(cls)
                instance._registry = None
                instance._version = 0
                instance._install(registry)
                cls.__instance = instance

            return cls.__instance

    @property
    def registry(self) -> Registry:
        """The registry every new load should use (read-only)."""
        assert self._registry is not None
        return self._registry

    @property
    def version(self) -> int:
        return self._version

    def swap(self, registry: Registry) -> int:
        """Install *registry* as the current one and return the new version."""
        with type(self).__lock:
            self._install(registry)
            return self._version

    def _install(self, registry: Registry) -> None:
        registry.freeze()
        self._registry = registry
        self._version += 1

    @classmethod
    def reset(cls) -> None:
        """Destroy the singleton, allowing re-initialization (primarily for tests)."""
        with cls.__lock:
            cls.__instance = None


def init_catalog(registry: Registry) -> Catalog:
    """Initialize the process-wide catalog with *registry*.

    Call once during application start-up, after every entity, relationship
    and morph type has been registered.  The registry is frozen here.

    Example:
        >>> registry = build_registry()
        >>> init_catalog(registry)
    """
    return Catalog(registry)


def get_registry() -> Registry:
    """Return the catalog's current registry (raises ``RuntimeError`` if uninitialized)."""
    return Catalog().registry
