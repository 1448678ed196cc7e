from __future__ import annotations

from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from .query import Query


class RelationsError(Exception):
    """Base class for every error raised by sqla_relations."""


class DuplicateEntity(RelationsError):
    """An entity (or pivot table) was registered twice."""


class DuplicateRelationship(RelationsError):
    """A relationship name was described twice on the same entity."""


class InvalidSchema(RelationsError):
    """Entity, pivot or morph-type metadata is inconsistent."""


class UnknownEntity(RelationsError, LookupError):
    """No entity (or pivot table) with that name is registered."""


class UnknownColumn(RelationsError, LookupError):
    """A key name does not resolve to a column of the referenced table."""


class UnknownRelationship(RelationsError, LookupError):
    """No relationship with that name is described on the entity."""


class UnsupportedDepth(RelationsError):
    """A through relationship was given anything but exactly one intermediate."""


class UnregisteredMorphType(RelationsError, LookupError):
    """A discriminator value (or an entity's tag) is not in the morph map."""


class RegistryFrozen(RelationsError, RuntimeError):
    """The registry was mutated after it was frozen for loading."""


class LoadCancelled(RelationsError):
    """The load was cancelled before it completed; nothing was attached."""


class QueryExecutionFailed(RelationsError):
    """The query executor failed while running one query of a load.

    Attributes:
        query: The abstract query that failed.
    """

    def __init__(self, query: Query) -> None:
        super().__init__(f"Query execution failed: {query}")
        self.query = query


class ExecutorError(Exception):
    """Opaque failure raised by a query executor implementation."""
