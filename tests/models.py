from __future__ import annotations

from typing import Any, Final

import sqlalchemy as sa
from sqlalchemy import orm

from sqla_relations import Registry, register_tables


class Base(orm.DeclarativeBase):
    pass


role_user = sa.Table(
    "role_user",
    Base.metadata,
    sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), primary_key=True),
    sa.Column("role_id", sa.Integer, sa.ForeignKey("roles.id"), primary_key=True),
)

# polymorphic pivot: (tag, post | video)
taggables = sa.Table(
    "taggables",
    Base.metadata,
    sa.Column("tag_id", sa.Integer, sa.ForeignKey("tags.id"), primary_key=True),
    sa.Column("taggable_id", sa.Integer, primary_key=True),
    sa.Column("taggable_type", sa.String(20), primary_key=True),
)


class Country(Base):
    __tablename__ = "countries"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    name: orm.Mapped[str] = orm.mapped_column(sa.String(100))


class User(Base):
    __tablename__ = "users"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    name: orm.Mapped[str] = orm.mapped_column(sa.String(100))
    active: orm.Mapped[bool] = orm.mapped_column(default=True)
    country_id: orm.Mapped[int | None] = orm.mapped_column(sa.ForeignKey("countries.id"))


class Profile(Base):
    __tablename__ = "profiles"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    bio: orm.Mapped[str] = orm.mapped_column(sa.Text, default="")
    user_id: orm.Mapped[int] = orm.mapped_column(sa.ForeignKey("users.id"))


class Post(Base):
    __tablename__ = "posts"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    title: orm.Mapped[str] = orm.mapped_column(sa.String(200))
    user_id: orm.Mapped[int | None] = orm.mapped_column(sa.ForeignKey("users.id"))


class Video(Base):
    __tablename__ = "videos"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    title: orm.Mapped[str] = orm.mapped_column(sa.String(200))
    user_id: orm.Mapped[int | None] = orm.mapped_column(sa.ForeignKey("users.id"))


class Comment(Base):
    __tablename__ = "comments"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    body: orm.Mapped[str] = orm.mapped_column(sa.Text)
    commentable_id: orm.Mapped[int | None]
    commentable_type: orm.Mapped[str | None] = orm.mapped_column(sa.String(20))


class Image(Base):
    __tablename__ = "images"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    url: orm.Mapped[str] = orm.mapped_column(sa.String(200))
    imageable_id: orm.Mapped[int | None]
    imageable_type: orm.Mapped[str | None] = orm.mapped_column(sa.String(20))


class Role(Base):
    __tablename__ = "roles"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    name: orm.Mapped[str] = orm.mapped_column(sa.String(50))
    level: orm.Mapped[int] = orm.mapped_column(default=0)


class Tag(Base):
    __tablename__ = "tags"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    name: orm.Mapped[str] = orm.mapped_column(sa.String(50))


ENTITIES: Final[dict[str, str]] = {
    "country": "countries",
    "user": "users",
    "profile": "profiles",
    "post": "posts",
    "video": "videos",
    "comment": "comments",
    "image": "images",
    "role": "roles",
    "tag": "tags",
}

PIVOTS: Final[tuple[str, ...]] = ("role_user", "taggables")


def build_registry() -> Registry:
    """Registry for the test schema (returned open, not frozen)."""
    registry = Registry()
    register_tables(registry, Base.metadata, ENTITIES, PIVOTS)

    registry.register_morph_type("user", "user")
    registry.register_morph_type("post", "post")
    registry.register_morph_type("video", "video")

    registry.belongs_to("user", "country", "country")
    registry.has_one("user", "profile", "profile")
    registry.has_many("user", "posts", "post")
    registry.has_many("user", "videos", "video")
    registry.belongs_to_many("user", "roles", "role")
    registry.morph_one("user", "image", "image", morph_name="imageable")

    registry.has_many("country", "users", "user")
    registry.has_many_through("country", "posts", "post", through="user")
    registry.has_one_through("country", "profile", "profile", through="user")

    registry.belongs_to("profile", "user", "user")

    registry.belongs_to("post", "author", "user", foreign_key="user_id")
    registry.morph_many("post", "comments", "comment", morph_name="commentable")
    registry.morph_one("post", "image", "image", morph_name="imageable")
    registry.morph_to_many("post", "tags", "tag", morph_name="taggable")

    registry.belongs_to("video", "author", "user", foreign_key="user_id")
    registry.morph_many("video", "comments", "comment", morph_name="commentable")
    registry.morph_to_many("video", "tags", "tag", morph_name="taggable")

    registry.morph_to("comment", "commentable")
    registry.morph_to("image", "imageable")

    registry.belongs_to_many("role", "users", "user")

    registry.morphed_by_many("tag", "posts", "post", morph_name="taggable")
    registry.morphed_by_many("tag", "videos", "video", morph_name="taggable")

    return registry


SEED: Final[dict[str, list[dict[str, Any]]]] = {
    "countries": [
        {"id": 1, "name": "netherlands"},
        {"id": 2, "name": "france"},
    ],
    "users": [
        {"id": 1, "name": "alice", "active": True, "country_id": 1},
        {"id": 2, "name": "bob", "active": True, "country_id": 1},
        {"id": 3, "name": "charlie", "active": False, "country_id": 1},
        {"id": 4, "name": "dave", "active": True, "country_id": None},
    ],
    "profiles": [
        {"id": 1, "bio": "Alice bio", "user_id": 1},
        {"id": 2, "bio": "Bob bio", "user_id": 2},
    ],
    "posts": [
        {"id": 1, "title": "Alice Post 1", "user_id": 1},
        {"id": 2, "title": "Alice Post 2", "user_id": 1},
        {"id": 3, "title": "Bob Post 1", "user_id": 2},
        {"id": 4, "title": "Bob Post 2", "user_id": 2},
        {"id": 5, "title": "Charlie Post 1", "user_id": 3},
        {"id": 6, "title": "Charlie Post 2", "user_id": 3},
        {"id": 7, "title": "Orphan Post", "user_id": None},
    ],
    "videos": [
        {"id": 1, "title": "Alice Video", "user_id": 1},
        {"id": 2, "title": "Bob Video", "user_id": 2},
    ],
    "comments": [
        {"id": 1, "body": "Great post!", "commentable_id": 1, "commentable_type": "post"},
        {"id": 2, "body": "Nice work", "commentable_id": 1, "commentable_type": "post"},
        {"id": 3, "body": "Great video!", "commentable_id": 1, "commentable_type": "video"},
        {"id": 4, "body": "Thanks Bob", "commentable_id": 3, "commentable_type": "post"},
        {"id": 5, "body": "Dangling", "commentable_id": None, "commentable_type": None},
    ],
    "images": [
        {"id": 1, "url": "https://example.com/alice.png", "imageable_id": 1, "imageable_type": "user"},
        {"id": 2, "url": "https://example.com/post1.png", "imageable_id": 1, "imageable_type": "post"},
    ],
    "roles": [
        {"id": 1, "name": "admin", "level": 10},
        {"id": 2, "name": "editor", "level": 5},
        {"id": 3, "name": "viewer", "level": 1},
    ],
    "role_user": [
        {"user_id": 1, "role_id": 1},
        {"user_id": 1, "role_id": 2},
        {"user_id": 2, "role_id": 2},
        {"user_id": 2, "role_id": 3},
    ],
    "tags": [
        {"id": 1, "name": "python"},
        {"id": 2, "name": "sql"},
        {"id": 3, "name": "media"},
    ],
    "taggables": [
        {"tag_id": 1, "taggable_id": 1, "taggable_type": "post"},
        {"tag_id": 2, "taggable_id": 1, "taggable_type": "post"},
        {"tag_id": 2, "taggable_id": 3, "taggable_type": "post"},
        {"tag_id": 1, "taggable_id": 1, "taggable_type": "video"},
        {"tag_id": 3, "taggable_id": 1, "taggable_type": "video"},
    ],
}
