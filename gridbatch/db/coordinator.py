from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Callable, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from ..errors import DbConnectionError, StatementError, ValidationError
from .metrics import observe_batch
from .models import BatchRequest, BatchResult, ErrorKind
from .statements import Statement, StatementBuilder
from .tx import DbFactory, DbTx


logger = logging.getLogger(__name__)


class CoordinatorState(str, Enum):
    IDLE = "idle"
    TRANSACTION_OPEN = "transaction_open"
    APPLYING = "applying"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


def _db_message(exc: SQLAlchemyError) -> str:
    """Database error text without SQLAlchemy's statement/background decoration."""
    orig = getattr(exc, "orig", None)
    return str(orig) if orig is not None else str(exc)


class TransactionCoordinator:
    """
    Executes a BatchRequest as one all-or-nothing transaction.

    Statements run sequentially on a single connection in a fixed order:
    updates, inserts, deletes. The first failing statement rolls back the
    whole batch. Nothing is retried.

    Errors never escape execute_batch as exceptions; they are reported as
    a failed BatchResult carrying the ErrorKind and the database's own
    message. Validation failures are detected before a connection is taken.

    There is no conflict detection between batches against the same table:
    the last batch to commit wins.

    Usage:
        coordinator = TransactionCoordinator(engine)
        result = coordinator.execute_batch(request)
        if not result.success:
            show(result.error)
    """

    def __init__(
        self,
        engine: Engine,
        builder: Optional[StatementBuilder] = None,
        factory: Optional[DbFactory] = None,
        on_transition: Optional[Callable[[CoordinatorState], None]] = None,
    ) -> None:
        self.engine = engine
        self.factory = factory or DbFactory(engine)
        self.builder = builder or StatementBuilder(engine.dialect)
        self.on_transition = on_transition
        # Per-thread so concurrent batches on other tables do not share state
        self._local = threading.local()

    @property
    def state(self) -> CoordinatorState:
        return getattr(self._local, "state", CoordinatorState.IDLE)

    def _transition(self, state: CoordinatorState) -> None:
        self._local.state = state
        if self.on_transition is not None:
            self.on_transition(state)

    def execute_batch(self, request: BatchRequest) -> BatchResult:
        start_time = time.monotonic()
        result = self._execute(request)

        status = "success" if result.success else result.error_kind.value
        try:
            observe_batch(str(request.target), status, time.monotonic() - start_time)
        except Exception:
            logger.debug("Failed to emit batch metrics", exc_info=True)
        return result

    def _execute(self, request: BatchRequest) -> BatchResult:
        table = str(request.target)

        if request.is_empty():
            logger.warning("Rejected empty batch for %s", table)
            return BatchResult.failure(
                ErrorKind.VALIDATION,
                "Batch is empty: nothing to update, insert or delete",
            )

        try:
            statements = self.builder.build(request)
        except ValidationError as exc:
            logger.warning("Rejected invalid batch for %s: %s", table, exc)
            return BatchResult.failure(ErrorKind.VALIDATION, str(exc))

        logger.info(
            "Executing batch on %s: %d updates, %d inserts, %d deletes (%d statements)",
            table,
            len(request.updates),
            len(request.inserts),
            len(request.deletes),
            len(statements),
        )

        try:
            tx = self.factory.begin()
        except DbConnectionError as exc:
            logger.error("Batch on %s failed before start: %s", table, exc)
            return BatchResult.failure(ErrorKind.CONNECTION, str(exc))

        self._transition(CoordinatorState.TRANSACTION_OPEN)
        try:
            return self._run(tx, table, statements)
        finally:
            self._transition(CoordinatorState.IDLE)

    def _run(self, tx: DbTx, table: str, statements: list[Statement]) -> BatchResult:
        try:
            total = self._apply(tx, statements)
        except StatementError as exc:
            self._rollback(tx, table, exc)
            return BatchResult.failure(ErrorKind.STATEMENT, str(exc), exc.statement_index)
        except DbConnectionError as exc:
            self._rollback(tx, table, exc)
            return BatchResult.failure(
                ErrorKind.CONNECTION, str(exc), exc.statement_index
            )
        except BaseException as exc:
            self._rollback(tx, table, exc)
            raise

        try:
            tx.commit()
        except SQLAlchemyError as exc:
            # commit() already attempted the rollback
            self._transition(CoordinatorState.ROLLED_BACK)
            message = f"Commit failed: {_db_message(exc)}. All changes were rolled back"
            logger.error("Batch on %s failed: %s", table, message)
            return BatchResult.failure(ErrorKind.COMMIT, message)

        self._transition(CoordinatorState.COMMITTED)
        logger.info("Batch on %s committed, %d rows affected", table, total)
        return BatchResult.ok(total)

    def _apply(self, tx: DbTx, statements: list[Statement]) -> int:
        self._transition(CoordinatorState.APPLYING)
        total = 0
        count = len(statements)

        for index, stmt in enumerate(statements):
            logger.debug("Statement %d/%d: %s", index + 1, count, stmt.sql)
            try:
                rowcount = tx.execute(stmt)
            except DBAPIError as exc:
                message = (
                    f"{stmt.op_type.value} statement {index + 1} of {count} failed: "
                    f"{_db_message(exc)}. All changes were rolled back"
                )
                if exc.connection_invalidated:
                    raise DbConnectionError(message, statement_index=index) from exc
                raise StatementError(message, statement_index=index, sql=stmt.sql) from exc
            except (SQLAlchemyError, RuntimeError) as exc:
                message = (
                    f"{stmt.op_type.value} statement {index + 1} of {count} failed: "
                    f"{exc}. All changes were rolled back"
                )
                raise StatementError(message, statement_index=index, sql=stmt.sql) from exc

            logger.debug("Statement %d/%d affected %d rows", index + 1, count, rowcount)
            total += rowcount

        return total

    def _rollback(self, tx: DbTx, table: str, reason: BaseException) -> None:
        logger.error("Batch on %s failed: %s", table, reason)
        try:
            tx.rollback()
        except SQLAlchemyError:
            # Connection already gone; the server discards the transaction
            logger.warning("Rollback of batch on %s failed", table, exc_info=True)
        self._transition(CoordinatorState.ROLLED_BACK)
        logger.info("Batch on %s rolled back", table)
