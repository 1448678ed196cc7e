"""Query planning.

``plan`` turns a descriptor and an owner batch into a :class:`LoadPlan`.  The
number of queries in a plan depends only on the relationship shape (and, for
``morph_to``, on the number of distinct tags in the batch), never on the number
of owners: every hop is a single ``IN`` over the distinct keys.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
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
from .matcher import KeyMatch, match_keys, match_morph_to
from .query import Eq, In, Join, Predicate, Query, conjunction


if TYPE_CHECKING:
    from .record import Record
    from .registry import Registry


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Hop:
    """One round trip: ``table`` filtered by ``column IN keys`` plus ``where``.

    ``qualifier`` names the table ``column`` lives on when it belongs to the
    joined table rather than the main one.
    """

    table: str
    column: str
    where: Predicate | None = None
    join: Join | None = None
    qualifier: str | None = None

    def query(self, keys: Sequence[Any]) -> Query:
        membership = In(self.column, tuple(keys), table=self.qualifier)
        return Query(self.table, conjunction(membership, self.where), self.join)


@dataclass(frozen=True, slots=True)
class Branch:
    """Hops that fetch rows of one target entity for one key set."""

    target: str
    match: KeyMatch
    hops: tuple[Hop, ...]


@dataclass(frozen=True, slots=True)
class LoadPlan:
    descriptor: Descriptor
    branches: tuple[Branch, ...]

    @property
    def query_count(self) -> int:
        """Upper bound of queries the plan issues (lower if a first hop comes back empty)."""
        return sum(len(branch.hops) for branch in self.branches if not branch.match.empty)


def plan(  # noqa: C901
    descriptor: Descriptor,
    owners: Sequence[Record],
    registry: Registry,
    *,
    joined: bool = False,
    where: Predicate | None = None,
) -> LoadPlan:
    """Build the load plan for *descriptor* over *owners*.

    Args:
        descriptor: Relationship to load.
        owners: Owner batch (all of ``descriptor.owner``).
        registry: Registry snapshot used for table names and morph tags.
        joined: Fold the pivot/intermediate hop of two-hop shapes into the
            target query with a join (one round trip instead of two).
        where: Extra predicate on the target rows.

    Raises:
        UnregisteredMorphType: A ``morph_to`` owner stores an unknown tag.
    """
    if isinstance(descriptor, MorphTo):
        return _plan_morph_to(descriptor, owners, registry, where)

    target = registry.lookup(descriptor.target)
    hops: tuple[Hop, ...]
    joined_table: str | None = None

    match descriptor:
        case HasRelation(foreign_key=foreign_key):
            hops = (Hop(target.table, foreign_key, where),)

        case BelongsTo(owner_key=owner_key):
            hops = (Hop(target.table, owner_key, where),)

        case MorphRelation():
            type_filter = Eq(descriptor.morph_type, descriptor.morph_tag)
            hops = (Hop(target.table, descriptor.morph_id, conjunction(type_filter, where)),)

        case PivotRelation(pivot=pivot):
            if joined:
                joined_table = pivot
                hops = (
                    Hop(
                        target.table,
                        descriptor.pivot_owner_fk,
                        where,
                        join=Join(pivot, descriptor.pivot_target_fk, descriptor.target_key),
                        qualifier=pivot,
                    ),
                )
            else:
                hops = (
                    Hop(pivot, descriptor.pivot_owner_fk),
                    Hop(target.table, descriptor.target_key, where),
                )

        case ThroughRelation():
            through = registry.lookup(descriptor.through)
            if joined:
                joined_table = through.table
                hops = (
                    Hop(
                        target.table,
                        descriptor.first_key,
                        where,
                        join=Join(
                            through.table, descriptor.second_local_key, descriptor.second_key
                        ),
                        qualifier=through.table,
                    ),
                )
            else:
                hops = (
                    Hop(through.table, descriptor.first_key),
                    Hop(target.table, descriptor.second_key, where),
                )

        case MorphPivotRelation(pivot=pivot):
            if descriptor.kind is Shape.MORPH_TO_MANY:
                owner_column, link_column = descriptor.morph_id, descriptor.pivot_key
            else:
                owner_column, link_column = descriptor.pivot_key, descriptor.morph_id

            if joined:
                joined_table = pivot
                type_filter = Eq(descriptor.morph_type, descriptor.morph_tag, table=pivot)
                hops = (
                    Hop(
                        target.table,
                        owner_column,
                        conjunction(type_filter, where),
                        join=Join(pivot, link_column, descriptor.target_key),
                        qualifier=pivot,
                    ),
                )
            else:
                type_filter = Eq(descriptor.morph_type, descriptor.morph_tag)
                hops = (
                    Hop(pivot, owner_column, type_filter),
                    Hop(target.table, descriptor.target_key, where),
                )

        case _:
            raise TypeError(f"Unsupported descriptor {descriptor!r}")

    branch = Branch(
        target=target.name,
        match=match_keys(descriptor, owners, joined=joined_table),
        hops=hops,
    )
    load_plan = LoadPlan(descriptor=descriptor, branches=(branch,))
    logger.debug(
        "Planned %s for %d owner(s): %d distinct key(s), %d quer%s",
        descriptor.path,
        len(owners),
        len(branch.match.keys),
        load_plan.query_count,
        "y" if load_plan.query_count == 1 else "ies",
    )

    return load_plan


def _plan_morph_to(
    descriptor: MorphTo,
    owners: Sequence[Record],
    registry: Registry,
    where: Predicate | None,
) -> LoadPlan:
    """Fan out by stored tag: one branch (one query) per distinct tag in the batch."""

    def key_for(tag: str) -> str:
        return registry.resolve_morph_type(tag).primary_key

    branches = []
    for tag, key_match in match_morph_to(descriptor, owners, key_for).items():
        entity = registry.resolve_morph_type(tag)
        branches.append(
            Branch(
                target=entity.name,
                match=key_match,
                hops=(Hop(entity.table, entity.primary_key, where),),
            )
        )

    logger.debug(
        "Planned %s for %d owner(s): %d morph type(s)",
        descriptor.path,
        len(owners),
        len(branches),
    )

    return LoadPlan(descriptor=descriptor, branches=tuple(branches))
