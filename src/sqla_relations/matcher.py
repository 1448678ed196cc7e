"""Key matching: which far-side keys to fetch and which owner each row belongs to.

Everything here is pure.  Owners are addressed by their position in the batch
so that two owners with equal column values still get separate results.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .descriptors import (
    BelongsTo,
    Descriptor,
    HasRelation,
    MorphPivotRelation,
    MorphRelation,
    MorphTo,
    PivotRelation,
    Shape,
    ThroughRelation,
)
from .query import qualify
from .tools import unique_values


if TYPE_CHECKING:
    from .record import Record

Row = Mapping[str, Any]
Grouping = dict[int, list[Row]]


@dataclass(frozen=True, slots=True)
class KeyMatch:
    """Keys to match on plus the functions that route rows back to owners.

    Attributes:
        keys: Distinct, non-null owner-side values in first-seen order.
        group: Receives the rows of every hop, in hop order, and returns
            owner position -> target rows (executor order preserved).
        link: For two-hop matches, maps the first hop's rows to the keys of
            the second hop.  ``None`` for single-hop matches.
    """

    keys: tuple[Any, ...]
    group: Callable[[Sequence[Sequence[Row]]], Grouping]
    link: Callable[[Sequence[Row]], tuple[Any, ...]] | None = None

    @property
    def empty(self) -> bool:
        return not self.keys


def index_owners(owners: Sequence[Record], column: str) -> dict[Any, list[int]]:
    """Map each non-null value of *column* to the positions of the owners holding it."""
    index: dict[Any, list[int]] = {}
    for position, owner in enumerate(owners):
        if (value := owner.get(column)) is None:
            continue
        index.setdefault(value, []).append(position)

    return index


def match_keys(
    descriptor: Descriptor,
    owners: Sequence[Record],
    *,
    joined: str | None = None,
) -> KeyMatch:
    """Build the :class:`KeyMatch` for a non-polymorphic-inverse descriptor.

    Args:
        descriptor: Any descriptor except ``MorphTo`` (see :func:`match_morph_to`).
        owners: The owner batch.
        joined: Table name of the pivot/intermediate when the planner folds it
            into the target query; grouping then reads its qualified column.
    """
    match descriptor:
        case HasRelation(local_key=local_key, foreign_key=foreign_key):
            return _direct(index_owners(owners, local_key), foreign_key)

        case BelongsTo(foreign_key=foreign_key, owner_key=owner_key):
            return _direct(index_owners(owners, foreign_key), owner_key)

        case MorphRelation(local_key=local_key):
            return _direct(index_owners(owners, local_key), descriptor.morph_id)

        case PivotRelation():
            index = index_owners(owners, descriptor.local_key)
            if joined:
                return _direct(index, qualify(descriptor.pivot_owner_fk, joined))

            return _two_hop(
                index,
                descriptor.pivot_owner_fk,
                descriptor.pivot_target_fk,
                descriptor.target_key,
            )

        case ThroughRelation():
            index = index_owners(owners, descriptor.local_key)
            if joined:
                return _direct(index, qualify(descriptor.first_key, joined))

            return _two_hop(
                index,
                descriptor.first_key,
                descriptor.second_local_key,
                descriptor.second_key,
            )

        case MorphPivotRelation():
            index = index_owners(owners, descriptor.local_key)
            if descriptor.kind is Shape.MORPH_TO_MANY:
                owner_column, link_column = descriptor.morph_id, descriptor.pivot_key
            else:
                owner_column, link_column = descriptor.pivot_key, descriptor.morph_id

            if joined:
                return _direct(index, qualify(owner_column, joined))

            return _two_hop(index, owner_column, link_column, descriptor.target_key)

        case MorphTo():
            raise TypeError("morph_to relationships are matched per tag with match_morph_to()")

    raise TypeError(f"Unsupported descriptor {descriptor!r}")


def match_morph_to(
    descriptor: MorphTo,
    owners: Sequence[Record],
    key_for: Callable[[str], str],
) -> dict[str, KeyMatch]:
    """Bucket owners by stored type tag; one :class:`KeyMatch` per distinct tag.

    Args:
        descriptor: The ``MorphTo`` descriptor.
        owners: The owner batch.
        key_for: Returns the target column to match for a tag (normally the
            primary key of the entity the tag resolves to).  Unknown tags make
            it raise ``UnregisteredMorphType``.
    """
    buckets: dict[str, dict[Any, list[int]]] = {}
    for position, owner in enumerate(owners):
        tag = owner.get(descriptor.morph_type)
        key = owner.get(descriptor.morph_id)
        if tag is None or key is None:
            continue
        buckets.setdefault(tag, {}).setdefault(key, []).append(position)

    return {tag: _direct(index, key_for(tag)) for tag, index in buckets.items()}


def _direct(index: Mapping[Any, Sequence[int]], column: str) -> KeyMatch:
    def group(hops: Sequence[Sequence[Row]]) -> Grouping:
        return _group(index, hops[-1], column)

    return KeyMatch(keys=tuple(index), group=group)


def _two_hop(
    index: Mapping[Any, Sequence[int]],
    owner_column: str,
    link_column: str,
    target_column: str,
) -> KeyMatch:
    """Compose owner -> first-hop rows -> target rows.

    *owner_column* and *link_column* live on the first-hop (pivot or
    intermediate) rows; *target_column* on the target rows.
    """

    def link(rows: Sequence[Row]) -> tuple[Any, ...]:
        return unique_values(row.get(link_column) for row in rows)

    def group(hops: Sequence[Sequence[Row]]) -> Grouping:
        first, targets = hops
        via: dict[Any, dict[int, None]] = {}
        for row in first:
            positions = index.get(row.get(owner_column))
            linked = row.get(link_column)
            if not positions or linked is None:
                continue
            bucket = via.setdefault(linked, {})
            for position in positions:
                bucket[position] = None

        return _group(via, targets, target_column)

    return KeyMatch(keys=tuple(index), group=group, link=link)


def _group(
    index: Mapping[Any, Sequence[int] | Mapping[int, None]],
    rows: Sequence[Row],
    column: str,
) -> Grouping:
    grouped: Grouping = {}
    for row in rows:
        for position in index.get(row.get(column), ()):
            grouped.setdefault(position, []).append(row)

    return grouped
