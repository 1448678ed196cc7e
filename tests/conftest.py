from __future__ import annotations

import os
from collections.abc import Iterator
from typing import Any

import pytest
import sqlalchemy as sa

from sqla_relations import (
    Catalog,
    Loader,
    Registry,
    SqlaExecutor,
    init_catalog,
    relations_cache_clear,
)

from .fakes import MemoryExecutor, RecordingExecutor
from .models import SEED, Base, build_registry


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--db",
        default="sqlite",
        choices=["sqlite", "postgres"],
        help="Database backend to test against",
    )


@pytest.fixture(scope="session")
def db_backend(request: pytest.FixtureRequest) -> str:
    value: str = request.config.getoption("--db")

    return value


@pytest.fixture(scope="session", autouse=True)
def _init_catalog() -> None:
    """Install the test registry in the catalog.

    No DB needed -- safe to run for all tests including unit tests.
    """
    try:
        Catalog()
    except RuntimeError:
        Catalog.reset()
        init_catalog(build_registry())


@pytest.fixture(scope="session")
def db_config(db_backend: str, tmp_path_factory: pytest.TempPathFactory) -> Iterator[str]:
    match db_backend:
        case "postgres":
            from testcontainers.postgres import PostgresContainer

            pg = PostgresContainer(image="postgres:latest", driver="psycopg")
            if os.name == "nt":
                pg.get_container_host_ip = lambda: "127.0.0.1"
            with pg:
                yield pg.get_connection_url()

        case "sqlite":
            tmp = tmp_path_factory.mktemp("db")
            yield f"sqlite:///{tmp}/test.db"


@pytest.fixture(scope="session")
def engine(db_config: str) -> Iterator[sa.Engine]:
    engine = sa.create_engine(db_config, echo=False)
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def connection(engine: sa.Engine) -> Iterator[sa.Connection]:
    with engine.connect() as conn:
        trans = conn.begin()
        yield conn
        trans.rollback()


@pytest.fixture
def seed_data(connection: sa.Connection) -> dict[str, list[dict[str, Any]]]:
    # parents before children so foreign keys hold on every backend
    for table in Base.metadata.sorted_tables:
        if rows := SEED.get(table.name):
            connection.execute(table.insert(), rows)

    return SEED


@pytest.fixture
def registry() -> Registry:
    return Catalog().registry


@pytest.fixture
def executor(connection: sa.Connection, seed_data: dict[str, list[dict[str, Any]]]) -> RecordingExecutor:
    return RecordingExecutor(SqlaExecutor(connection, Base.metadata))


@pytest.fixture
def loader(executor: RecordingExecutor) -> Loader:
    return Loader(executor)


@pytest.fixture
def memory() -> RecordingExecutor:
    return RecordingExecutor(MemoryExecutor(SEED))


@pytest.fixture
def memory_loader(memory: RecordingExecutor) -> Loader:
    return Loader(memory)


@pytest.fixture(autouse=True)
def clear_lru_caches() -> Iterator[None]:
    yield
    relations_cache_clear()


@pytest.fixture
def reset_catalog_singleton() -> Iterator[None]:
    saved = Catalog._Catalog__instance  # type: ignore[attr-defined]
    yield
    Catalog._Catalog__instance = saved  # type: ignore[attr-defined]
