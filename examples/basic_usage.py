"""Basic sqla-relations usage examples.

Demonstrates initialization, eager loads, dotted paths, constraints,
joined pivots and lazy access.

NOTE: This file is illustrative -- it won't run standalone
without seeded data.
"""

from __future__ import annotations

import sqlalchemy as sa

from sqla_relations import Loader, Record, SqlaExecutor, init_catalog
from sqla_relations.query import In

from .models import Base, build_registry


# ── 1. Initialize once at startup ────────────────────────────────────

engine = sa.create_engine("sqlite:///example.db")


def setup() -> Loader:
    Base.metadata.create_all(engine)

    # Call once -- freezes the registry and makes it the process-wide one
    init_catalog(build_registry())

    return Loader(SqlaExecutor(engine, Base.metadata))


# ── 2. Eager loads ───────────────────────────────────────────────────


def get_users_with_posts(loader: Loader) -> list[Record]:
    users = loader.select("user")
    loader.with_related(users, "posts")  # one query, whatever len(users) is
    return users


def get_users_with_all(loader: Loader) -> list[Record]:
    users = loader.select("user")
    loader.with_related(users, "posts", "roles")  # 1 + 2 queries
    return users


# ── 3. Dotted paths ──────────────────────────────────────────────────


def get_users_deep(loader: Loader) -> list[Record]:
    users = loader.select("user")
    loader.with_related(users, "posts.comments")
    return users


# ── 4. Constraints ───────────────────────────────────────────────────


def get_users_with_senior_roles(loader: Loader) -> list[Record]:
    users = loader.select("user")
    loader.with_related(
        users,
        "roles",
        constraints={"roles": In("level", (5, 10))},
    )
    return users


# ── 5. Joined pivots and concurrent siblings ─────────────────────────


def get_users_fast(loader: Loader) -> list[Record]:
    users = loader.select("user")
    # roles in one round trip; posts and roles on two worker threads
    loader.with_related(users, "posts", "roles", join_pivots=True, max_workers=2)
    return users


# ── 6. Lazy access ───────────────────────────────────────────────────


def print_first_post_author(loader: Loader) -> None:
    post = loader.find("post", 1)
    if post is None:
        return

    # first access loads and memoizes, the second is a plain lookup
    print(post.author.name)
    print(post.author.name)


if __name__ == "__main__":
    loader = setup()
    for user in get_users_deep(loader):
        print(user.name, [(p.title, len(p.comments)) for p in user.posts])
