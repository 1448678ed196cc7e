from __future__ import annotations

import sys
from collections.abc import Iterator, Mapping
from typing import Any, TypeVar


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self


K = TypeVar("K")
V = TypeVar("V")

_UNSET: Any = object()


class frozendict(Mapping[K, V]):  # noqa: N801
    """Read-only mapping used for frozen registry state and load options.

    Entity columns, the relationship table and the morph map are all moved
    into ``frozendict`` instances when a :class:`~sqla_relations.Registry` is
    frozen, so no code path can mutate metadata a load is reading.

    The hash is computed on first use, which lets a ``frozendict`` hold
    unhashable values as long as nobody hashes it.

    Example:
        >>> fd = frozendict({"id": int, "name": str})
        >>> fd["id"]
        <class 'int'>
        >>> fd | {"bio": str}
        <frozendict {'id': <class 'int'>, 'name': <class 'str'>, 'bio': <class 'str'>}>
    """

    __slots__ = ("_dict", "_hash")

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self._dict: dict[K, V] = dict(*args, **kwargs)
        self._hash: int = _UNSET

    def __getitem__(self, key: K) -> V:
        return self._dict[key]

    def __contains__(self, key: Any) -> bool:
        return key in self._dict

    def __or__(self, other: Mapping[K, V]) -> Self:
        """Return a new frozendict with *other*'s items added or replaced."""
        if not isinstance(other, Mapping):
            return NotImplemented

        return type(self)({**self._dict, **other})

    def __iter__(self) -> Iterator[K]:
        return iter(self._dict)

    def __len__(self) -> int:
        return len(self._dict)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._dict!r}>"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, frozendict):
            return self._dict == other._dict

        if isinstance(other, dict):
            return self._dict == other

        return NotImplemented

    def __hash__(self) -> int:
        if self._hash is _UNSET:
            self._hash = hash(frozenset(self._dict.items()))

        return self._hash
