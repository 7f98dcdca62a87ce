from __future__ import annotations

from collections.abc import Iterator

import pytest
import sqlalchemy as sa

from sqla_prefixer import Prefixer, prefixer_cache_clear


@pytest.fixture(autouse=True)
def _clear_caches() -> Iterator[None]:
    """Process-wide LRU caches must not leak between tests."""
    prefixer_cache_clear()
    yield
    prefixer_cache_clear()


@pytest.fixture
def prefixer() -> Prefixer:
    return Prefixer()


@pytest.fixture(scope="session")
def engine(tmp_path_factory: pytest.TempPathFactory) -> Iterator[sa.Engine]:
    tmp = tmp_path_factory.mktemp("db")
    engine = sa.create_engine(f"sqlite:///{tmp}/test.db")

    with engine.begin() as conn:
        conn.execute(sa.text("CREATE TABLE addresses (id INTEGER PRIMARY KEY, city TEXT)"))
        conn.execute(
            sa.text(
                "CREATE TABLE users ("
                "id INTEGER PRIMARY KEY, name TEXT, "
                "address_id INTEGER REFERENCES addresses(id))"
            )
        )
        conn.execute(
            sa.text("INSERT INTO addresses (id, city) VALUES (:id, :city)"),
            [{"id": 10, "city": "Lisbon"}, {"id": 20, "city": "Porto"}],
        )
        conn.execute(
            sa.text("INSERT INTO users (id, name, address_id) VALUES (:id, :name, :address_id)"),
            [
                {"id": 1, "name": "alice", "address_id": 10},
                {"id": 2, "name": "bob", "address_id": 20},
                {"id": 3, "name": "carol", "address_id": None},
            ],
        )

    yield engine

    engine.dispose()
