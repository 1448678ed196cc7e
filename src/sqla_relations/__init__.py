"""Relationship-aware record loading on top of SQLAlchemy Core.

sqla_relations resolves declared relationships (one-to-one, one-to-many,
many-to-one, many-to-many, through and polymorphic) between plain records.
Fill a ``Registry`` at startup, install it with ``init_catalog``, then load
relationships for whole batches with ``Loader.with_related`` or lazily through
record attributes.  The number of queries depends on the relationship shapes
requested, never on the number of records.
"""

from ._version import __version__, __version_tuple__
from .datastructures import frozendict
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
from .exceptions import (
    DuplicateEntity,
    DuplicateRelationship,
    ExecutorError,
    InvalidSchema,
    LoadCancelled,
    QueryExecutionFailed,
    RegistryFrozen,
    RelationsError,
    UnknownColumn,
    UnknownEntity,
    UnknownRelationship,
    UnregisteredMorphType,
    UnsupportedDepth,
)
from .executor import QueryExecutor, SqlaExecutor
from .loader import (
    DEFAULT_MAX_WORKERS,
    Loader,
    LoadOptions,
    ResolvedGraph,
    relations_cache_clear,
    relations_cache_info,
    with_related,
)
from .planner import LoadPlan, plan
from .query import And, Eq, In, Join, Query
from .record import Record
from .registry import Catalog, Entity, Registry, get_registry, init_catalog
from .tools import register_tables


__all__ = (
    "DEFAULT_MAX_WORKERS",
    "And",
    "BelongsTo",
    "Catalog",
    "Descriptor",
    "DuplicateEntity",
    "DuplicateRelationship",
    "Entity",
    "Eq",
    "ExecutorError",
    "HasRelation",
    "In",
    "InvalidSchema",
    "Join",
    "LoadCancelled",
    "LoadOptions",
    "LoadPlan",
    "Loader",
    "MorphPivotRelation",
    "MorphRelation",
    "MorphTo",
    "PivotRelation",
    "Query",
    "QueryExecutionFailed",
    "QueryExecutor",
    "Record",
    "Registry",
    "RegistryFrozen",
    "RelationsError",
    "ResolvedGraph",
    "Shape",
    "SqlaExecutor",
    "ThroughRelation",
    "UnknownColumn",
    "UnknownEntity",
    "UnknownRelationship",
    "UnregisteredMorphType",
    "UnsupportedDepth",
    "__version__",
    "__version_tuple__",
    "frozendict",
    "get_registry",
    "init_catalog",
    "plan",
    "register_tables",
    "relations_cache_clear",
    "relations_cache_info",
    "with_related",
)
