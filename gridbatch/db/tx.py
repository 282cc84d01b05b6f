from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from ..errors import DbConnectionError
from .metrics import observe_statement
from .statements import Statement


logger = logging.getLogger(__name__)

# Inline-literal SQL must reach the driver without a parameter collection,
# otherwise pyformat drivers would interpret '%' inside string literals.
_NO_PARAMS = {"no_parameters": True}


class DbTx(Protocol):
    """
    Protocol for a batch transaction with explicit commit/rollback.
    """

    def commit(self) -> None:
        ...

    def rollback(self) -> None:
        ...

    def execute(self, stmt: Statement) -> int:
        """Execute one batch statement and return the affected row count."""
        ...


class DbTransaction:
    """
    One connection plus one open transaction, closed by commit() or rollback().

    The transaction begins on construction. After commit or rollback the
    connection is returned to the pool and the object cannot be reused.

    Statement metrics are emitted when the transaction ends, so rows
    affected are only counted for work that was actually committed.

    Usage:
        factory = DbFactory(engine)
        tx = factory.begin()
        try:
            for stmt in statements:
                tx.execute(stmt)
            tx.commit()
        except Exception:
            tx.rollback()
            raise
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._conn: Connection | None = None
        self._tx = None
        self._closed = False
        # (statement, rowcount) for every executed statement
        self._executed: list[tuple[Statement, int]] = []

        self._conn = self.engine.connect()
        try:
            self._tx = self._conn.begin()
        except Exception:
            self._conn.close()
            self._conn = None
            raise

    @property
    def closed(self) -> bool:
        return self._closed

    def _connection(self) -> Connection:
        if self._closed or self._conn is None:
            raise RuntimeError("Transaction is already closed")
        return self._conn

    def _close(self, status: str) -> None:
        self._closed = True
        if self._conn is not None:
            self._conn.close()
        self._conn = None
        self._tx = None

        # Metric errors must not mask the real outcome
        try:
            for stmt, rowcount in self._executed:
                observe_statement(
                    table=stmt.table,
                    op_type=stmt.op_type.value,
                    status=status,
                    rowcount=rowcount,
                )
        except Exception:
            logger.debug("Failed to emit statement metrics", exc_info=True)

    def commit(self) -> None:
        """
        Commit the transaction and release the connection.

        If COMMIT itself fails, a rollback is attempted before the original
        error propagates.

        Raises:
            RuntimeError: If transaction is already closed
        """
        if self._closed:
            raise RuntimeError("Transaction is already closed")

        status = "success"
        try:
            if self._tx is not None:
                self._tx.commit()
        except Exception:
            status = "rolled_back"
            try:
                if self._tx is not None:
                    self._tx.rollback()
            except Exception:
                logger.warning("Rollback after failed commit also failed", exc_info=True)
            raise
        finally:
            self._close(status)

    def rollback(self) -> None:
        """
        Rollback the transaction and release the connection.

        Raises:
            RuntimeError: If transaction is already closed
        """
        if self._closed:
            raise RuntimeError("Transaction is already closed")

        try:
            if self._tx is not None:
                self._tx.rollback()
        finally:
            self._close("rolled_back")

    def execute(self, stmt: Statement) -> int:
        """
        Execute one batch statement and return affected row count.

        Raises:
            RuntimeError: If transaction is closed or rowcount is unavailable
            sqlalchemy.exc.DBAPIError: If the database rejects the statement
        """
        conn = self._connection()
        result = conn.exec_driver_sql(stmt.sql, execution_options=_NO_PARAMS)
        try:
            if result.rowcount is None or result.rowcount < 0:
                raise RuntimeError(
                    f"Driver reported no rowcount for {stmt.op_type.value} statement"
                )
            rowcount = int(result.rowcount)
        finally:
            result.close()

        self._executed.append((stmt, rowcount))
        return rowcount


class DbFactory:
    """
    Factory for batch transactions bound to one Engine.

    Each begin() takes its own pooled connection, so independent batches
    on different threads do not share state.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    @property
    def dialect(self):
        return self.engine.dialect

    def begin(self) -> DbTransaction:
        """
        Begin a new transaction.

        Raises:
            DbConnectionError: If no connection or transaction could be opened
        """
        try:
            return DbTransaction(self.engine)
        except SQLAlchemyError as exc:
            raise DbConnectionError(f"Could not open transaction: {exc}") from exc
