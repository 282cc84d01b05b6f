from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.sql import Executable


class DbSession:
    """
    Short-lived read session around a SQLAlchemy Engine connection.

    Commits on clean exit and rolls back when the block raises.

    Use as:
        with DbSession(engine) as session:
            rows = session.fetch_all(select(table).limit(10))
            count = session.execute_scalar("SELECT COUNT(*) FROM t")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._conn: Connection | None = None
        self._tx = None

    def __enter__(self) -> "DbSession":
        if self._conn is not None:
            raise RuntimeError("DbSession is already active; nested sessions are not allowed")
        self._conn = self.engine.connect()
        self._tx = self._conn.begin()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if self._tx is not None:
                if exc_type:
                    self._tx.rollback()
                else:
                    self._tx.commit()
        finally:
            if self._conn is not None:
                self._conn.close()

            self._conn = None
            self._tx = None

        return False

    @property
    def connection(self) -> Connection:
        if self._conn is None:
            raise RuntimeError("DbSession is not active; use within a context manager")
        return self._conn

    def _run(self, sql: str | Executable, params: Mapping[str, Any] | None):
        stmt = text(sql) if isinstance(sql, str) else sql
        return self.connection.execute(stmt, params or {})

    def execute(
        self,
        sql: str | Executable,
        params: Mapping[str, Any] | None = None,
    ) -> int:
        """
        Execute a non-SELECT statement and return affected row count.
        """
        result = self._run(sql, params)
        if result.rowcount is None:
            raise RuntimeError("execute() received None rowcount for statement")
        return int(result.rowcount)

    def execute_scalar(
        self,
        sql: str | Executable,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        return self._run(sql, params).scalar_one_or_none()

    def fetch_one(
        self,
        sql: str | Executable,
        params: Mapping[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """
        Execute a SELECT expected to return 0 or 1 row. Raises if more than one row.
        """
        row = self._run(sql, params).mappings().one_or_none()
        if row is None:
            return None
        return dict(row)

    def fetch_all(
        self,
        sql: str | Executable,
        params: Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        return [dict(row) for row in self._run(sql, params).mappings()]
