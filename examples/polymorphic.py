"""Polymorphic relationship examples.

``comments.commentable_type`` holds a tag ("post" or "video") registered with
``Registry.register_morph_type``; ``commentable_id`` is the parent key.
"""

from __future__ import annotations

from sqla_relations import Loader, Record


def get_posts_with_comments(loader: Loader) -> list[Record]:
    posts = loader.select("post")
    # filtered by commentable_type = 'post', so video 1 never leaks into post 1
    loader.with_related(posts, "comments")
    return posts


def get_comments_with_parents(loader: Loader) -> list[Record]:
    comments = loader.select("comment")
    # one query per distinct tag in the batch: here posts and videos
    loader.with_related(comments, "commentable")
    return comments


def describe(comment: Record) -> str:
    parent = comment.commentable
    if parent is None:
        return f"{comment.body!r} (orphan)"

    return f"{comment.body!r} on {parent.entity} {parent.title!r}"
