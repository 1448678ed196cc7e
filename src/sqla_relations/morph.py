from __future__ import annotations

from collections.abc import Mapping

from .datastructures import frozendict
from .exceptions import InvalidSchema, RegistryFrozen, UnregisteredMorphType


class MorphMap:
    """Two-way map between discriminator tags and entity names.

    Tags are opaque strings chosen by the application (``"post"``,
    ``"video"``), never derived from Python class names.  Each tag names one
    entity and each entity has at most one tag, so the inverse lookup used
    when an owner filters its polymorphic children is unambiguous.
    """

    __slots__ = ("_by_entity", "_by_tag", "_frozen")

    def __init__(self) -> None:
        self._by_tag: dict[str, str] = {}
        self._by_entity: dict[str, str] = {}
        self._frozen = False

    def register(self, tag: str, entity: str) -> None:
        if self._frozen:
            raise RegistryFrozen(f"Cannot register morph type {tag!r}: registry is frozen")
        if not tag:
            raise InvalidSchema(f"Morph tag for {entity!r} must be a non-empty string")

        if (current := self._by_tag.get(tag)) is not None and current != entity:
            raise InvalidSchema(f"Morph tag {tag!r} already maps to {current!r}")
        if (existing := self._by_entity.get(entity)) is not None and existing != tag:
            raise InvalidSchema(f"Entity {entity!r} already has morph tag {existing!r}")

        self._by_tag[tag] = entity
        self._by_entity[entity] = tag

    def resolve(self, tag: str) -> str:
        """Return the entity name registered for *tag*."""
        try:
            return self._by_tag[tag]
        except KeyError:
            raise UnregisteredMorphType(f"No entity registered for morph tag {tag!r}") from None

    def tag_for(self, entity: str) -> str:
        """Return the tag registered for *entity*."""
        try:
            return self._by_entity[entity]
        except KeyError:
            raise UnregisteredMorphType(f"Entity {entity!r} has no registered morph tag") from None

    def freeze(self) -> None:
        if self._frozen:
            return

        self._by_tag = frozendict(self._by_tag)  # type: ignore[assignment]
        self._by_entity = frozendict(self._by_entity)  # type: ignore[assignment]
        self._frozen = True

    @property
    def tags(self) -> Mapping[str, str]:
        return self._by_tag

    def __contains__(self, tag: object) -> bool:
        return tag in self._by_tag

    def __len__(self) -> int:
        return len(self._by_tag)
