from __future__ import annotations

import os
import re
import uuid
from collections.abc import Callable, Iterator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from gridbatch.db.formatting import quote_identifier
from gridbatch.db.models import TableRef


TEST_DB_URL_ENV = "GRIDBATCH_TEST_DB_URL"


@pytest.fixture(scope="session")
def db_url(tmp_path_factory: pytest.TempPathFactory) -> str:
    """
    Database URL for DB tests.

    Set GRIDBATCH_TEST_DB_URL to run against MySQL or PostgreSQL; otherwise a
    throwaway SQLite file is used.
    """
    url = os.environ.get(TEST_DB_URL_ENV)
    if url:
        return url
    path = tmp_path_factory.mktemp("db") / "gridbatch.sqlite"
    return f"sqlite:///{path}"


@pytest.fixture(scope="session")
def engine(db_url: str) -> Iterator[Engine]:
    """
    Session-scoped SQLAlchemy engine for tests.

    We fail fast if the database is unreachable, so failures are actionable.
    """
    eng = create_engine(db_url, pool_pre_ping=True)
    try:
        with eng.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
    except Exception as exc:  # pragma: no cover
        pytest.fail(
            "Test database is not reachable.\n"
            f"- {TEST_DB_URL_ENV}={db_url!r}\n"
            f"- Underlying error: {exc}",
            pytrace=False,
        )

    yield eng
    eng.dispose()


def _sanitize_table_name(name: str) -> str:
    name = re.sub(r"[^a-zA-Z0-9_]+", "_", name).strip("_").lower()
    if not name:
        name = "t"
    return name[:40]


@pytest.fixture
def table_factory(engine: Engine, request: pytest.FixtureRequest) -> Iterator[Callable[[str], TableRef]]:
    """
    Factory fixture creating per-test tables.

    Usage:
        target = table_factory("id INTEGER NOT NULL, name VARCHAR(64), PRIMARY KEY (id)")
    """
    created: list[str] = []
    suffix_sql = " ENGINE=InnoDB" if engine.dialect.name == "mysql" else ""

    def _create(schema_sql: str) -> TableRef:
        base = _sanitize_table_name(f"t_{request.node.name}")
        table = f"{base}_{uuid.uuid4().hex[:10]}"
        quoted = quote_identifier(table, engine.dialect)

        with engine.begin() as conn:
            conn.exec_driver_sql(f"DROP TABLE IF EXISTS {quoted}")
            conn.exec_driver_sql(f"CREATE TABLE {quoted} ({schema_sql}){suffix_sql}")

        created.append(table)
        return TableRef(database="test", schema=None, table=table)

    yield _create

    with engine.begin() as conn:
        for table in created:
            conn.exec_driver_sql(f"DROP TABLE IF EXISTS {quote_identifier(table, engine.dialect)}")


@pytest.fixture
def users_table(engine: Engine, table_factory: Callable[[str], TableRef]) -> TableRef:
    """
    A `users` table seeded with ids 1..5.

    Includes a UNIQUE `email` column for constraint-violation tests.
    """
    target = table_factory(
        """
        id INTEGER NOT NULL,
        name VARCHAR(255) NULL,
        email VARCHAR(255) NULL,
        score INTEGER NULL,
        PRIMARY KEY (id),
        UNIQUE (email)
        """
    )
    quoted = quote_identifier(target.table, engine.dialect)
    with engine.begin() as conn:
        for i in range(1, 6):
            conn.exec_driver_sql(
                f"INSERT INTO {quoted} (id, name, email, score) "
                f"VALUES ({i}, 'user{i}', 'user{i}@example.com', {i * 10})"
            )
    return target


@pytest.fixture
def read_table(engine: Engine) -> Callable[[TableRef], list[dict]]:
    """Return a reader giving all rows of a table ordered by id."""

    def _read(target: TableRef) -> list[dict]:
        quoted = quote_identifier(target.table, engine.dialect)
        with engine.connect() as conn:
            result = conn.exec_driver_sql(f"SELECT * FROM {quoted} ORDER BY id")
            return [dict(row) for row in result.mappings()]

    return _read
