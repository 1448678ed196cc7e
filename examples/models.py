"""Schema and registry shared by the examples."""

from __future__ import annotations

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


class User(Base):
    __tablename__ = "users"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    name: orm.Mapped[str] = orm.mapped_column(sa.String(100))


class Post(Base):
    __tablename__ = "posts"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    title: orm.Mapped[str] = orm.mapped_column(sa.String(200))
    user_id: orm.Mapped[int] = orm.mapped_column(sa.ForeignKey("users.id"))


class Video(Base):
    __tablename__ = "videos"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    title: orm.Mapped[str] = orm.mapped_column(sa.String(200))


class Comment(Base):
    __tablename__ = "comments"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    body: orm.Mapped[str] = orm.mapped_column(sa.Text)
    commentable_id: orm.Mapped[int]
    commentable_type: orm.Mapped[str] = orm.mapped_column(sa.String(20))


class Role(Base):
    __tablename__ = "roles"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    name: orm.Mapped[str] = orm.mapped_column(sa.String(50))
    level: orm.Mapped[int] = orm.mapped_column(default=0)


def build_registry() -> Registry:
    registry = Registry()
    register_tables(
        registry,
        Base.metadata,
        entities={
            "user": "users",
            "post": "posts",
            "video": "videos",
            "comment": "comments",
            "role": "roles",
        },
        pivots=("role_user",),
    )

    # tags are application strings stored in comments.commentable_type
    registry.register_morph_type("post", "post")
    registry.register_morph_type("video", "video")

    registry.has_many("user", "posts", "post")
    registry.belongs_to_many("user", "roles", "role")
    registry.belongs_to("post", "author", "user", foreign_key="user_id")
    registry.morph_many("post", "comments", "comment", morph_name="commentable")
    registry.morph_many("video", "comments", "comment", morph_name="commentable")
    registry.morph_to("comment", "commentable")

    return registry
