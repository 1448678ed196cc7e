from __future__ import annotations

import pytest

from sqla_relations import Record, Registry, UnregisteredMorphType, plan
from sqla_relations.query import And, Eq, In, Join, Query

from ..models import build_registry


@pytest.fixture
def schema() -> Registry:
    return build_registry()


def _records(entity: str, *ids: int, **values: object) -> list[Record]:
    return [Record(entity, {"id": i, **values}) for i in ids]


class TestQueryCount:
    @pytest.mark.parametrize(
        ("owner", "name", "expected"),
        [
            ("user", "profile", 1),
            ("user", "posts", 1),
            ("user", "roles", 2),
            ("country", "posts", 2),
            ("country", "profile", 2),
            ("post", "comments", 1),
            ("post", "image", 1),
            ("post", "tags", 2),
            ("tag", "videos", 2),
        ],
    )
    def test_independent_of_batch_size(self, schema: Registry, owner: str, name: str, expected: int) -> None:
        descriptor = schema.resolve(owner, name)
        small = plan(descriptor, _records(owner, 1), schema)
        large = plan(descriptor, _records(owner, *range(1, 501)), schema)

        assert small.query_count == large.query_count == expected

    @pytest.mark.parametrize(("owner", "name"), [("user", "roles"), ("country", "posts"), ("post", "tags")])
    def test_joined_is_one_query(self, schema: Registry, owner: str, name: str) -> None:
        load_plan = plan(schema.resolve(owner, name), _records(owner, 1, 2), schema, joined=True)

        assert load_plan.query_count == 1

    def test_empty_batch_plans_no_query(self, schema: Registry) -> None:
        assert plan(schema.resolve("user", "roles"), [], schema).query_count == 0

    def test_all_null_keys_plan_no_query(self, schema: Registry) -> None:
        users = [Record("user", {"id": 1, "country_id": None})]

        assert plan(schema.resolve("user", "country"), users, schema).query_count == 0


class TestHops:
    def test_has_many(self, schema: Registry) -> None:
        load_plan = plan(schema.resolve("user", "posts"), _records("user", 1, 2, 1), schema)
        (branch,) = load_plan.branches
        (hop,) = branch.hops

        assert branch.target == "post"
        assert hop.query(branch.match.keys) == Query("posts", In("user_id", (1, 2)))

    def test_pivot_hops(self, schema: Registry) -> None:
        (branch,) = plan(schema.resolve("user", "roles"), _records("user", 1), schema).branches
        pivot, target = branch.hops

        assert pivot.query((1,)) == Query("role_user", In("user_id", (1,)))
        assert target.query((2, 3)) == Query("roles", In("id", (2, 3)))

    def test_morph_many_filters_type(self, schema: Registry) -> None:
        (branch,) = plan(schema.resolve("post", "comments"), _records("post", 1), schema).branches

        assert branch.hops[0].query((1,)) == Query(
            "comments",
            And((In("commentable_id", (1,)), Eq("commentable_type", "post"))),
        )

    def test_morph_to_many_filters_pivot_type(self, schema: Registry) -> None:
        (branch,) = plan(schema.resolve("video", "tags"), _records("video", 1), schema).branches
        pivot, target = branch.hops

        assert pivot.query((1,)).predicate == And(
            (In("taggable_id", (1,)), Eq("taggable_type", "video"))
        )
        assert target.query((3,)) == Query("tags", In("id", (3,)))

    def test_joined_pivot(self, schema: Registry) -> None:
        (branch,) = plan(schema.resolve("user", "roles"), _records("user", 1), schema, joined=True).branches
        (hop,) = branch.hops

        assert hop.query((1,)) == Query(
            "roles",
            In("user_id", (1,), table="role_user"),
            Join("role_user", "role_id", "id"),
        )

    def test_joined_through(self, schema: Registry) -> None:
        (branch,) = plan(schema.resolve("country", "posts"), _records("country", 1), schema, joined=True).branches

        assert branch.hops[0].query((1,)) == Query(
            "posts",
            In("country_id", (1,), table="users"),
            Join("users", "id", "user_id"),
        )

    def test_joined_morphed_by_many(self, schema: Registry) -> None:
        (branch,) = plan(schema.resolve("tag", "posts"), _records("tag", 1), schema, joined=True).branches

        assert branch.hops[0].query((1,)) == Query(
            "posts",
            And((In("tag_id", (1,), table="taggables"), Eq("taggable_type", "post", table="taggables"))),
            Join("taggables", "taggable_id", "id"),
        )

    def test_where_applies_to_target_hop(self, schema: Registry) -> None:
        where = Eq("level", 10)
        (branch,) = plan(schema.resolve("user", "roles"), _records("user", 1), schema, where=where).branches
        pivot, target = branch.hops

        assert pivot.where is None
        assert target.query((1,)).predicate == And((In("id", (1,)), where))


class TestMorphTo:
    def test_one_branch_per_tag(self, schema: Registry) -> None:
        comments = [
            Record("comment", {"id": 1, "commentable_id": 1, "commentable_type": "post"}),
            Record("comment", {"id": 2, "commentable_id": 1, "commentable_type": "video"}),
            Record("comment", {"id": 3, "commentable_id": 3, "commentable_type": "post"}),
        ]
        load_plan = plan(schema.resolve("comment", "commentable"), comments, schema)

        assert {b.target for b in load_plan.branches} == {"post", "video"}
        assert load_plan.query_count == 2
        post = next(b for b in load_plan.branches if b.target == "post")
        assert post.hops[0].query(post.match.keys) == Query("posts", In("id", (1, 3)))

    def test_unknown_tag(self, schema: Registry) -> None:
        comments = [Record("comment", {"id": 1, "commentable_id": 1, "commentable_type": "podcast"})]

        with pytest.raises(UnregisteredMorphType, match="podcast"):
            plan(schema.resolve("comment", "commentable"), comments, schema)

    def test_no_tags_no_branches(self, schema: Registry) -> None:
        comments = [Record("comment", {"id": 1, "commentable_id": None, "commentable_type": None})]

        assert plan(schema.resolve("comment", "commentable"), comments, schema).branches == ()
