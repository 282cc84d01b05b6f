from __future__ import annotations

from ..metrics.registry import (
    GRID_BATCH_LATENCY_SECONDS,
    GRID_BATCH_TOTAL,
    GRID_ROWS_AFFECTED_TOTAL,
    GRID_STATEMENT_TOTAL,
)


def observe_batch(table: str, status: str, latency_s: float) -> None:
    """
    Record one execute_batch call.

    status is "success" or the ErrorKind value of the failure.
    """
    GRID_BATCH_TOTAL.labels(table=table, status=status).inc()
    GRID_BATCH_LATENCY_SECONDS.labels(table=table).observe(latency_s)


def observe_statement(table: str, op_type: str, status: str, rowcount: int = 0) -> None:
    GRID_STATEMENT_TOTAL.labels(table=table, op_type=op_type, status=status).inc()
    if status == "success" and rowcount > 0:
        GRID_ROWS_AFFECTED_TOTAL.labels(table=table, op_type=op_type).inc(rowcount)
