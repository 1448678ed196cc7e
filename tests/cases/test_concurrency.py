from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import pytest

from sqla_relations import Loader, Record

from ..fakes import RecordingExecutor

LOADS = ("profile", "posts.comments", "roles", "videos.tags", "image", "country")


def _snapshot(records: list[Record]) -> list[dict[str, Any]]:
    def value(v: Any) -> Any:
        if isinstance(v, list):
            return sorted(item["id"] for item in v)
        return None if v is None else v["id"]

    return [{name: value(r.related(name)) for name in r.relations} for r in records]


class TestConcurrentSiblings:
    def test_same_result_as_sequential(self, memory: RecordingExecutor) -> None:
        sequential = Loader(memory)
        users = sequential.select("user")
        sequential.with_related(users, *LOADS)
        expected = _snapshot(users)
        expected_count = memory.count

        memory.reset()
        concurrent = Loader(memory, max_workers=4)
        users = concurrent.select("user")
        concurrent.with_related(users, *LOADS)

        assert _snapshot(users) == expected
        assert memory.count == expected_count

    def test_query_count_with_workers(self, memory: RecordingExecutor) -> None:
        loader = Loader(memory)
        users = loader.select("user")
        memory.reset()
        loader.with_related(users, "profile", "posts", "roles", max_workers=8)

        assert memory.count == 1 + 1 + 2

    def test_invalid_max_workers_warns(self, memory_loader: Loader) -> None:
        users = memory_loader.select("user")

        with pytest.warns(UserWarning, match="max_workers"):
            memory_loader.with_related(users, "posts", max_workers=0)
        assert all(u.loaded("posts") for u in users)


class TestConcurrentCallers:
    def test_independent_loads_share_a_loader(self, memory_loader: Loader) -> None:
        def load(user_id: int) -> list[int]:
            user = memory_loader.find("user", user_id)
            assert user is not None
            memory_loader.with_related([user], "posts", "roles")
            return sorted(p["id"] for p in user.posts)

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(load, [1, 2, 3, 4] * 5))

        assert results[:4] == [[1, 2], [3, 4], [5, 6], []]
        assert results[4:8] == results[:4]

    def test_lazy_first_access_from_many_threads(self, memory_loader: Loader, memory: RecordingExecutor) -> None:
        alice = memory_loader.find("user", 1)
        assert alice is not None
        memory.reset()
        barrier = threading.Barrier(8)
        seen: list[Any] = []

        def access() -> None:
            barrier.wait()
            seen.append(alice.roles)

        threads = [threading.Thread(target=access) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert memory.tables() == ["role_user", "roles"]
        assert all(value is seen[0] for value in seen)
