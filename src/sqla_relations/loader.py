from __future__ import annotations

import dataclasses
import logging
import sys
import threading
import warnings
from collections.abc import Iterable, Mapping, Sequence
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from functools import lru_cache
from itertools import repeat
from typing import Any, Final, overload


if sys.version_info >= (3, 11):
    from typing import TypedDict, Unpack
else:
    from typing_extensions import TypedDict, Unpack

from .datastructures import frozendict
from .descriptors import Descriptor
from .exceptions import LoadCancelled, QueryExecutionFailed, UnknownColumn, UnknownRelationship
from .executor import QueryExecutor
from .planner import Branch, plan
from .query import Eq, Predicate, Query, columns_of
from .record import Record
from .registry import Entity, Registry, get_registry


logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS: Final[int] = 1

_Tree = dict[str, "_Tree"]


@dataclass(slots=True, frozen=True)
class LoadOptions:
    """Per-call loading options.

    Attributes:
        constraints: Load path (``"posts"``, ``"posts.comments"``) -> extra
            predicate on that relationship's target rows.
        join_pivots: Fetch pivot/intermediate rows in the same round trip as
            the targets (one query instead of two for two-hop shapes).
        max_workers: Threads used to load sibling relationships of one level
            concurrently.  ``1`` loads them one after the other.
        cancel: Event that aborts the load at the next query boundary.
    """

    constraints: Mapping[str, Predicate] = field(default_factory=frozendict)
    join_pivots: bool = field(default=False)
    max_workers: int = field(default=DEFAULT_MAX_WORKERS)
    cancel: threading.Event | None = field(default=None)


class LoadOptionsType(TypedDict, total=False):
    constraints: Mapping[str, Predicate]
    join_pivots: bool
    max_workers: int
    cancel: threading.Event | None


@dataclass(frozen=True, slots=True)
class ResolvedGraph(Sequence[Record]):
    """Owner records of one eager load, with the load paths attached to them.

    The graph belongs to the caller; the loader keeps no reference to it.
    """

    owners: tuple[Record, ...]
    loaded: tuple[str, ...]

    @overload
    def __getitem__(self, index: int) -> Record: ...

    @overload
    def __getitem__(self, index: slice) -> tuple[Record, ...]: ...

    def __getitem__(self, index: int | slice) -> Record | tuple[Record, ...]:
        return self.owners[index]

    def __len__(self) -> int:
        return len(self.owners)

    def related(self, name: str) -> tuple[Any, ...]:
        """Value of relationship *name* for every owner, in owner order."""
        return tuple(owner.related(name) for owner in self.owners)


class _Cancellation:
    """Caller's cancel event combined with an internal abort flag."""

    __slots__ = ("_aborted", "_event")

    def __init__(self, event: threading.Event | None) -> None:
        self._event = event
        self._aborted = threading.Event()

    def abort(self) -> None:
        self._aborted.set()

    @property
    def cancelled(self) -> bool:
        return self._aborted.is_set() or (self._event is not None and self._event.is_set())

    def check(self) -> None:
        if self.cancelled:
            raise LoadCancelled("Load was cancelled; no relationships were attached")


class Loader:
    """Runs relationship loads through a :class:`~sqla_relations.executor.QueryExecutor`.

    Eager entry points (:meth:`with_related`, :meth:`load_eager`) load whole
    batches in a number of queries that does not depend on the batch size;
    :meth:`load_lazy` loads one owner and is what records call on first
    attribute access.  Every record the loader creates is bound to it.

    Results are attached only once every query of a call has succeeded, so a
    failed or cancelled load leaves the passed-in records untouched.

    Args:
        executor: Query executor to run the plans with.
        registry: Registry to read metadata from.  Defaults to the catalog's
            current registry, captured once per call.
        **defaults: Default :class:`LoadOptions` for every call.

    Example::

        loader = Loader(SqlaExecutor(engine))
        users = loader.select("user")
        loader.with_related(users, "profile", "posts.comments", "roles")
        users[0].profile  # already loaded, no query
    """

    __slots__ = ("_defaults", "_executor", "_registry")

    def __init__(
        self,
        executor: QueryExecutor,
        registry: Registry | None = None,
        **defaults: Unpack[LoadOptionsType],
    ) -> None:
        self._executor = executor
        self._registry = registry
        self._defaults = _merge_options(LoadOptions(), defaults)

    @property
    def registry(self) -> Registry:
        """The registry snapshot for a new load (frozen on first use)."""
        registry = self._registry if self._registry is not None else get_registry()
        if not registry.frozen:
            registry.freeze()

        return registry

    @property
    def executor(self) -> QueryExecutor:
        return self._executor

    # -- root records -----------------------------------------------------

    def select(self, entity: str, where: Predicate | None = None) -> list[Record]:
        """Fetch records of *entity* (all of them when *where* is ``None``)."""
        registry = self.registry
        meta = registry.lookup(entity)
        rows = self._execute(Query(meta.table, where), _Cancellation(self._defaults.cancel))

        return [self._record(meta, row) for row in rows]

    def find(self, entity: str, key: Any) -> Record | None:
        """Fetch the record of *entity* whose primary key is *key*."""
        meta = self.registry.lookup(entity)
        records = self.select(entity, Eq(meta.primary_key, key))

        return records[0] if records else None

    def wrap(self, entity: str, rows: Iterable[Mapping[str, Any]]) -> list[Record]:
        """Turn externally fetched rows into records bound to this loader."""
        meta = self.registry.lookup(entity)
        return [self._record(meta, row) for row in rows]

    # -- relationship loading ---------------------------------------------

    def with_related(
        self,
        records: Iterable[Record],
        *loads: str,
        **options: Unpack[LoadOptionsType],
    ) -> ResolvedGraph:
        """Eager-load every path in *loads* onto *records*.

        Dotted paths (``"posts.comments"``) are loaded level by level; each
        level is one batch.  Records may belong to different entities; they
        are batched per entity.

        Raises:
            UnknownRelationship: A path segment is not a relationship.
            UnknownColumn: A constraint names a column the target lacks.
            UnregisteredMorphType: A ``morph_to`` owner stores an unknown tag.
            QueryExecutionFailed: The executor failed; nothing was attached.
            LoadCancelled: ``cancel`` was set; nothing was attached.
        """
        owners = tuple(records)
        loads = tuple(dict.fromkeys(loads))
        if not owners or not loads:
            return ResolvedGraph(owners, loads)

        opts = _merge_options(self._defaults, options)
        registry = self.registry
        for entity in dict.fromkeys(owner.entity for owner in owners):
            for path in loads:
                _resolve_path(registry, entity, path)
            _check_constraints(registry, entity, loads, opts.constraints)

        staged: list[tuple[Record, str, Any]] = []
        self._load_level(
            owners, _build_tree(loads), "", registry, opts, _Cancellation(opts.cancel), staged
        )

        for record, name, value in staged:
            record.attach(name, value)

        return ResolvedGraph(owners, loads)

    def load_eager(
        self,
        owners: Iterable[Record],
        relationship_name: str,
        **options: Unpack[LoadOptionsType],
    ) -> ResolvedGraph:
        """Eager-load one relationship onto a batch of owners.

        An empty batch returns immediately without issuing a query.
        """
        return self.with_related(owners, relationship_name, **options)

    def load_lazy(self, owner: Record, relationship_name: str) -> Any:
        """Load one relationship of one owner and return it without attaching it.

        Returns a list for to-many relationships and a record or ``None`` for
        to-one relationships.  :meth:`Record.related` memoizes the result.
        """
        registry = self.registry
        descriptor = registry.resolve(owner.entity, relationship_name)
        opts = self._defaults
        (value,) = self._resolve(
            (owner,),
            descriptor,
            relationship_name,
            registry,
            opts,
            _Cancellation(opts.cancel),
        )

        return value

    # -- internals --------------------------------------------------------

    def _load_level(
        self,
        records: Sequence[Record],
        tree: _Tree,
        prefix: str,
        registry: Registry,
        opts: LoadOptions,
        cancellation: _Cancellation,
        staged: list[tuple[Record, str, Any]],
    ) -> None:
        for batch in _group_by_entity(records):
            values = self._gather(batch, tree, prefix, registry, opts, cancellation)
            for name, subtree in tree.items():
                column = values[name]
                staged.extend(zip(batch, repeat(name), column))
                if subtree and (children := _flatten(column)):
                    self._load_level(
                        children, subtree, f"{prefix}{name}.", registry, opts, cancellation, staged
                    )

    def _gather(
        self,
        batch: Sequence[Record],
        tree: _Tree,
        prefix: str,
        registry: Registry,
        opts: LoadOptions,
        cancellation: _Cancellation,
    ) -> dict[str, list[Any]]:
        """Resolve the sibling relationships of one level, concurrently if configured."""
        entity = batch[0].entity
        descriptors = {name: registry.resolve(entity, name) for name in tree}
        workers = min(opts.max_workers, len(descriptors))

        if workers <= 1:
            return {
                name: self._resolve(batch, d, f"{prefix}{name}", registry, opts, cancellation)
                for name, d in descriptors.items()
            }

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sqla-relations") as pool:
            futures = {
                name: pool.submit(
                    self._resolve, batch, d, f"{prefix}{name}", registry, opts, cancellation
                )
                for name, d in descriptors.items()
            }
            wait(futures.values(), return_when=FIRST_EXCEPTION)

            if (failure := _first_failure(futures.values())) is not None:
                cancellation.abort()
                for future in futures.values():
                    future.cancel()
                wait(futures.values())
                raise _first_failure(futures.values()) or failure

            return {name: future.result() for name, future in futures.items()}

    def _resolve(
        self,
        batch: Sequence[Record],
        descriptor: Descriptor,
        path: str,
        registry: Registry,
        opts: LoadOptions,
        cancellation: _Cancellation,
    ) -> list[Any]:
        """Load *descriptor* for *batch*; returns one value per owner, in batch order."""
        logger.debug("Loading %s on %d %s record(s)", path, len(batch), descriptor.owner)
        load_plan = plan(
            descriptor,
            batch,
            registry,
            joined=opts.join_pivots,
            where=opts.constraints.get(path),
        )

        values: list[Any] = [[] for _ in batch] if descriptor.to_many else [None] * len(batch)
        identity: dict[tuple[str, Any], Record] = {}
        for branch in load_plan.branches:
            meta = registry.lookup(branch.target)
            for position, rows in self._run(branch, cancellation).items():
                related = [self._identity(meta, row, identity) for row in rows]
                if descriptor.to_many:
                    values[position] = related
                elif related:
                    values[position] = related[0]

        return values

    def _run(self, branch: Branch, cancellation: _Cancellation) -> dict[int, list[Any]]:
        keys = branch.match.keys
        if not keys:
            return {}

        hop_rows: list[Sequence[Mapping[str, Any]]] = []
        last = len(branch.hops) - 1
        for position, hop in enumerate(branch.hops):
            # An empty key set would need ``IN ()``; skip the round trip instead.
            rows = self._execute(hop.query(keys), cancellation) if keys else []
            hop_rows.append(rows)
            if position < last and branch.match.link is not None:
                keys = branch.match.link(rows)

        return branch.match.group(hop_rows)

    def _execute(self, query: Query, cancellation: _Cancellation) -> Sequence[Mapping[str, Any]]:
        cancellation.check()
        logger.debug("Running %s", query)
        try:
            rows = self._executor.execute(query.table, query.predicate, query.join)
        except Exception as exc:
            raise QueryExecutionFailed(query) from exc
        cancellation.check()

        return rows

    def _identity(
        self,
        meta: Entity,
        row: Mapping[str, Any],
        identity: dict[tuple[str, Any], Record],
    ) -> Record:
        """Return one record per primary key within a single load."""
        if (key := row.get(meta.primary_key)) is None:
            return self._record(meta, row)

        if (record := identity.get((meta.name, key))) is None:
            record = identity[meta.name, key] = self._record(meta, row)

        return record

    def _record(self, meta: Entity, row: Mapping[str, Any]) -> Record:
        return Record(
            meta.name,
            {column: row[column] for column in meta.columns if column in row},
            loader=self,
        )


def with_related(
    records: Iterable[Record],
    *loads: str,
    executor: QueryExecutor,
    registry: Registry | None = None,
    **options: Unpack[LoadOptionsType],
) -> ResolvedGraph:
    """Eager-load *loads* onto *records* with a one-off :class:`Loader`.

    Example::

        graph = with_related(users, "profile", "roles", executor=SqlaExecutor(engine))
    """
    return Loader(executor, registry).with_related(records, *loads, **options)


@lru_cache(maxsize=1024)
def _resolve_path(registry: Registry, entity: str, path: str) -> tuple[Descriptor, ...]:
    """Resolve ``"posts.comments"`` on *entity* into its chain of descriptors.

    Resolution stops after a ``morph_to`` segment: what follows depends on the
    tag stored in each row and is resolved per entity while loading.  The rest
    of the path must still resolve on at least one registered morph type.
    """
    if any(not segment for segment in path.split(".")):
        raise ValueError(f"Empty segment in load path {path!r}")

    descriptors: list[Descriptor] = []
    current = entity
    segments = path.split(".")
    for position, segment in enumerate(segments):
        descriptor = registry.resolve(current, segment)
        descriptors.append(descriptor)
        if descriptor.target is None:
            if rest := ".".join(segments[position + 1 :]):
                _check_morph_rest(registry, descriptor, rest)
            break
        current = descriptor.target

    return tuple(descriptors)


def _check_morph_rest(registry: Registry, descriptor: Descriptor, rest: str) -> None:
    candidates = sorted(set(registry.morph_types.values()))
    for candidate in candidates:
        try:
            _resolve_path(registry, candidate, rest)
        except UnknownRelationship:
            continue
        return

    raise UnknownRelationship(
        f"{rest!r} does not resolve on any morph type reachable from {descriptor.path!r}. "
        f"Morph types: {candidates}"
    )


def _check_constraints(
    registry: Registry,
    entity: str,
    loads: Sequence[str],
    constraints: Mapping[str, Predicate],
) -> None:
    """Reject constraints on requested paths that name columns the target lacks."""
    for path, predicate in constraints.items():
        if not any(load == path or load.startswith(f"{path}.") for load in loads):
            continue

        descriptors = _resolve_path(registry, entity, path)
        target = descriptors[-1].target
        if target is None or len(descriptors) != path.count(".") + 1:
            continue

        meta = registry.lookup(target)
        for table, column in columns_of(predicate):
            if table in (None, meta.table) and column not in meta.columns:
                raise UnknownColumn(
                    f"Constraint on {path!r} references {column!r}, which is not a column "
                    f"of {meta.table!r}. Available: {sorted(meta.columns)}"
                )


def _merge_options(base: LoadOptions, overrides: Mapping[str, Any]) -> LoadOptions:
    if not overrides:
        return base

    changes = dict(overrides)
    if (constraints := changes.get("constraints")) is not None:
        changes["constraints"] = frozendict(base.constraints) | constraints

    options = dataclasses.replace(base, **changes)
    if options.max_workers < 1:
        warnings.warn(
            f"max_workers must be at least 1, got {options.max_workers}. Using 1.",
            stacklevel=3,
        )
        options = dataclasses.replace(options, max_workers=1)

    return options


def _build_tree(loads: Iterable[str]) -> _Tree:
    tree: _Tree = {}
    for path in loads:
        node = tree
        for segment in path.split("."):
            node = node.setdefault(segment, {})

    return tree


def _group_by_entity(records: Sequence[Record]) -> list[list[Record]]:
    groups: dict[str, list[Record]] = {}
    for record in records:
        groups.setdefault(record.entity, []).append(record)

    return list(groups.values())


def _flatten(values: Iterable[Any]) -> list[Record]:
    """Distinct records out of a column of to-one values or to-many lists."""
    seen: dict[int, Record] = {}
    for value in values:
        if value is None:
            continue
        for record in value if isinstance(value, list) else (value,):
            seen.setdefault(id(record), record)

    return list(seen.values())


def _first_failure(futures: Iterable[Future[Any]]) -> BaseException | None:
    """First real failure among finished futures, preferring it over cancellations."""
    errors = [
        error
        for future in futures
        if future.done() and not future.cancelled() and (error := future.exception()) is not None
    ]
    if not errors:
        return None

    return next((error for error in errors if not isinstance(error, LoadCancelled)), errors[0])


def relations_cache_info() -> dict[str, Any]:
    """Return LRU cache statistics for the load-path cache."""
    return {fn.__name__: fn.cache_info() for fn in (_resolve_path,)}


def relations_cache_clear() -> None:
    """Clear the load-path cache."""
    for fn in (_resolve_path,):
        fn.cache_clear()
