"""Relationship descriptors.

Every relationship shape is a flat, frozen record tagged with a :class:`Shape`.
The key matcher and the planner interpret them with exhaustive ``match``
statements; there is no dispatch through a class hierarchy.
"""

from __future__ import annotations

from collections.abc import Collection, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Final, Union

from .exceptions import InvalidSchema, UnknownColumn, UnsupportedDepth


if TYPE_CHECKING:
    from .registry import Registry


class Shape(str, Enum):
    ONE_TO_ONE = "one_to_one"
    ONE_TO_MANY = "one_to_many"
    MANY_TO_ONE = "many_to_one"
    MANY_TO_MANY = "many_to_many"
    ONE_THROUGH = "one_through"
    MANY_THROUGH = "many_through"
    MORPH_ONE = "morph_one"
    MORPH_MANY = "morph_many"
    MORPH_TO_MANY = "morph_to_many"
    MORPHED_BY_MANY = "morphed_by_many"
    MORPH_TO = "morph_to"


TO_MANY: Final[frozenset[Shape]] = frozenset({
    Shape.ONE_TO_MANY,
    Shape.MANY_TO_MANY,
    Shape.MANY_THROUGH,
    Shape.MORPH_MANY,
    Shape.MORPH_TO_MANY,
    Shape.MORPHED_BY_MANY,
})

# Shapes whose target rows are reached through a pivot or intermediate table.
TWO_HOP: Final[frozenset[Shape]] = frozenset({
    Shape.MANY_TO_MANY,
    Shape.ONE_THROUGH,
    Shape.MANY_THROUGH,
    Shape.MORPH_TO_MANY,
    Shape.MORPHED_BY_MANY,
})


class _Described:
    __slots__ = ()

    kind: Shape
    owner: str
    name: str

    @property
    def to_many(self) -> bool:
        """``True`` when the relationship resolves to a list, ``False`` for a single value."""
        return self.kind in TO_MANY

    @property
    def hops(self) -> int:
        """Round trips needed per target entity when no join is used."""
        return 2 if self.kind in TWO_HOP else 1

    @property
    def path(self) -> str:
        return f"{self.owner}.{self.name}"


@dataclass(frozen=True, slots=True)
class HasRelation(_Described):
    """``ONE_TO_ONE`` / ``ONE_TO_MANY``: target rows hold a key pointing back at the owner."""

    owner: str
    name: str
    kind: Shape
    target: str
    local_key: str
    foreign_key: str


@dataclass(frozen=True, slots=True)
class BelongsTo(_Described):
    """``MANY_TO_ONE``: the owner row holds a key pointing at the target."""

    owner: str
    name: str
    target: str
    foreign_key: str
    owner_key: str
    kind: Shape = Shape.MANY_TO_ONE


@dataclass(frozen=True, slots=True)
class PivotRelation(_Described):
    """``MANY_TO_MANY`` through a pivot table holding both foreign keys."""

    owner: str
    name: str
    target: str
    pivot: str
    pivot_owner_fk: str
    pivot_target_fk: str
    local_key: str
    target_key: str
    kind: Shape = Shape.MANY_TO_MANY


@dataclass(frozen=True, slots=True)
class ThroughRelation(_Described):
    """``ONE_THROUGH`` / ``MANY_THROUGH``: owner -> intermediate -> target, exactly two hops.

    ``first_key`` is the intermediate column referencing ``owner.local_key``;
    ``second_key`` is the target column referencing
    ``intermediate.second_local_key``.
    """

    owner: str
    name: str
    kind: Shape
    target: str
    through: str
    first_key: str
    second_key: str
    local_key: str
    second_local_key: str


@dataclass(frozen=True, slots=True)
class MorphRelation(_Described):
    """``MORPH_ONE`` / ``MORPH_MANY``.

    Target rows carry ``<morph_name>_id`` and ``<morph_name>_type``.
    """

    owner: str
    name: str
    kind: Shape
    target: str
    morph_name: str
    morph_tag: str
    local_key: str

    @property
    def morph_id(self) -> str:
        return f"{self.morph_name}_id"

    @property
    def morph_type(self) -> str:
        return f"{self.morph_name}_type"


@dataclass(frozen=True, slots=True)
class MorphPivotRelation(_Described):
    """``MORPH_TO_MANY`` / ``MORPHED_BY_MANY`` over a polymorphic pivot.

    For ``MORPH_TO_MANY`` (``post.tags``) the owner sits on the polymorphic side
    of the pivot and ``pivot_key`` references the target.  For
    ``MORPHED_BY_MANY`` (``tag.posts``) it is the other way round.
    ``morph_tag`` is always the tag of whichever entity is polymorphic.
    """

    owner: str
    name: str
    kind: Shape
    target: str
    pivot: str
    morph_name: str
    morph_tag: str
    pivot_key: str
    local_key: str
    target_key: str

    @property
    def morph_id(self) -> str:
        return f"{self.morph_name}_id"

    @property
    def morph_type(self) -> str:
        return f"{self.morph_name}_type"


@dataclass(frozen=True, slots=True)
class MorphTo(_Described):
    """``MORPH_TO``: the owner row names its target entity through a stored tag."""

    owner: str
    name: str
    morph_name: str
    kind: Shape = Shape.MORPH_TO
    target: None = None

    @property
    def morph_id(self) -> str:
        return f"{self.morph_name}_id"

    @property
    def morph_type(self) -> str:
        return f"{self.morph_name}_type"


Descriptor = Union[
    HasRelation,
    BelongsTo,
    PivotRelation,
    ThroughRelation,
    MorphRelation,
    MorphPivotRelation,
    MorphTo,
]

_DIRECT_FIELDS: Final = frozenset({"local_key", "foreign_key"})
_THROUGH_FIELDS: Final = frozenset({
    "through", "first_key", "second_key", "local_key", "second_local_key"
})
_MORPH_FIELDS: Final = frozenset({"morph_name", "local_key"})
_MORPH_PIVOT_FIELDS: Final = frozenset({
    "morph_name", "pivot", "pivot_key", "local_key", "target_key"
})

FIELDS: Final[Mapping[Shape, frozenset[str]]] = {
    Shape.ONE_TO_ONE: _DIRECT_FIELDS,
    Shape.ONE_TO_MANY: _DIRECT_FIELDS,
    Shape.MANY_TO_ONE: frozenset({"foreign_key", "owner_key"}),
    Shape.MANY_TO_MANY: frozenset({
        "pivot", "pivot_owner_fk", "pivot_target_fk", "local_key", "target_key"
    }),
    Shape.ONE_THROUGH: _THROUGH_FIELDS,
    Shape.MANY_THROUGH: _THROUGH_FIELDS,
    Shape.MORPH_ONE: _MORPH_FIELDS,
    Shape.MORPH_MANY: _MORPH_FIELDS,
    Shape.MORPH_TO_MANY: _MORPH_PIVOT_FIELDS,
    Shape.MORPHED_BY_MANY: _MORPH_PIVOT_FIELDS,
    Shape.MORPH_TO: frozenset({"morph_name"}),
}


def build_descriptor(  # noqa: C901, PLR0912
    registry: Registry,
    owner: str,
    name: str,
    kind: Shape | str,
    target: str | None,
    fields: Mapping[str, Any],
) -> Descriptor:
    """Validate a relationship definition against *registry* and build its descriptor.

    Omitted key names fall back to the conventional defaults (owner primary
    key, ``<owner>_id`` foreign keys, alphabetical pivot names, ...).  Every
    resulting key is checked against the columns of the table it lives on.

    Raises:
        UnknownEntity: owner, target, intermediate or pivot table is unknown.
        UnknownColumn: a key does not exist on its table.
        UnsupportedDepth: a through relationship names other than one intermediate.
        UnregisteredMorphType: the polymorphic side of a morph relation has no tag.
        InvalidSchema: a required field is missing or the name shadows a column.
        TypeError: *fields* holds names the shape does not accept.
    """
    kind = Shape(kind)
    if unexpected := set(fields) - FIELDS[kind]:
        raise TypeError(f"{kind.value} relationship does not accept {sorted(unexpected)}")

    source = registry.lookup(owner)
    if name in source.columns:
        raise InvalidSchema(f"Relationship {owner}.{name} shadows a column of {owner!r}")

    local_key: str = fields.get("local_key") or source.primary_key

    if kind is Shape.MORPH_TO:
        if target is not None:
            raise InvalidSchema(f"morph_to relationship {owner}.{name} takes no target entity")
        morph_to = MorphTo(owner=owner, name=name, morph_name=_morph_name(owner, name, fields))
        _require_columns(source.table, source.columns, morph_to.morph_id, morph_to.morph_type)
        return morph_to

    if target is None:
        raise InvalidSchema(f"{kind.value} relationship {owner}.{name} needs a target entity")
    related = registry.lookup(target)
    target_key: str = fields.get("target_key") or related.primary_key

    descriptor: Descriptor
    match kind:
        case Shape.ONE_TO_ONE | Shape.ONE_TO_MANY:
            descriptor = HasRelation(
                owner=owner,
                name=name,
                kind=kind,
                target=target,
                local_key=local_key,
                foreign_key=fields.get("foreign_key") or f"{owner}_id",
            )
            _require_columns(source.table, source.columns, descriptor.local_key)
            _require_columns(related.table, related.columns, descriptor.foreign_key)

        case Shape.MANY_TO_ONE:
            descriptor = BelongsTo(
                owner=owner,
                name=name,
                target=target,
                foreign_key=fields.get("foreign_key") or f"{name}_id",
                owner_key=fields.get("owner_key") or related.primary_key,
            )
            _require_columns(source.table, source.columns, descriptor.foreign_key)
            _require_columns(related.table, related.columns, descriptor.owner_key)

        case Shape.MANY_TO_MANY:
            descriptor = PivotRelation(
                owner=owner,
                name=name,
                target=target,
                pivot=fields.get("pivot") or "_".join(sorted((owner, target))),
                pivot_owner_fk=fields.get("pivot_owner_fk") or f"{owner}_id",
                pivot_target_fk=fields.get("pivot_target_fk") or f"{target}_id",
                local_key=local_key,
                target_key=target_key,
            )
            _require_columns(source.table, source.columns, local_key)
            _require_columns(related.table, related.columns, target_key)
            _require_columns(
                descriptor.pivot,
                registry.table_columns(descriptor.pivot),
                descriptor.pivot_owner_fk,
                descriptor.pivot_target_fk,
            )

        case Shape.ONE_THROUGH | Shape.MANY_THROUGH:
            through = registry.lookup(_single_hop(owner, name, fields.get("through")))
            descriptor = ThroughRelation(
                owner=owner,
                name=name,
                kind=kind,
                target=target,
                through=through.name,
                first_key=fields.get("first_key") or f"{owner}_id",
                second_key=fields.get("second_key") or f"{through.name}_id",
                local_key=local_key,
                second_local_key=fields.get("second_local_key") or through.primary_key,
            )
            _require_columns(source.table, source.columns, local_key)
            _require_columns(
                through.table, through.columns, descriptor.first_key, descriptor.second_local_key
            )
            _require_columns(related.table, related.columns, descriptor.second_key)

        case Shape.MORPH_ONE | Shape.MORPH_MANY:
            descriptor = MorphRelation(
                owner=owner,
                name=name,
                kind=kind,
                target=target,
                morph_name=_morph_name(owner, name, fields),
                morph_tag=registry.morph_tag_for(owner),
                local_key=local_key,
            )
            _require_columns(source.table, source.columns, local_key)
            _require_columns(
                related.table, related.columns, descriptor.morph_id, descriptor.morph_type
            )

        case Shape.MORPH_TO_MANY | Shape.MORPHED_BY_MANY:
            morph_name = _morph_name(owner, name, fields)
            inverse = kind is Shape.MORPHED_BY_MANY
            descriptor = MorphPivotRelation(
                owner=owner,
                name=name,
                kind=kind,
                target=target,
                pivot=fields.get("pivot") or f"{morph_name}s",
                morph_name=morph_name,
                morph_tag=registry.morph_tag_for(target if inverse else owner),
                pivot_key=fields.get("pivot_key") or f"{owner if inverse else target}_id",
                local_key=local_key,
                target_key=target_key,
            )
            _require_columns(source.table, source.columns, local_key)
            _require_columns(related.table, related.columns, target_key)
            _require_columns(
                descriptor.pivot,
                registry.table_columns(descriptor.pivot),
                descriptor.morph_id,
                descriptor.morph_type,
                descriptor.pivot_key,
            )

        case _:
            raise InvalidSchema(f"Unsupported relationship shape {kind!r}")

    return descriptor


def _single_hop(owner: str, name: str, through: str | Collection[str] | None) -> str:
    """Return the one intermediate entity of a through relationship."""
    if through is None:
        raise InvalidSchema(f"Through relationship {owner}.{name} needs an intermediate entity")

    hops = (through,) if isinstance(through, str) else tuple(through)
    if len(hops) != 1 or "." in hops[0]:
        raise UnsupportedDepth(
            f"Through relationship {owner}.{name} must have exactly one intermediate "
            f"entity, got {list(hops)!r}"
        )

    return hops[0]


def _morph_name(owner: str, name: str, fields: Mapping[str, Any]) -> str:
    if not (morph_name := fields.get("morph_name")):
        raise InvalidSchema(f"Polymorphic relationship {owner}.{name} needs a morph_name")

    return morph_name


def _require_columns(table: str, columns: Collection[str], *required: str) -> None:
    for column in required:
        if column not in columns:
            raise UnknownColumn(
                f"Column {column!r} not found on {table!r}. Available: {sorted(columns)}"
            )
