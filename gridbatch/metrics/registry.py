from prometheus_client import Counter, Histogram


GRID_BATCH_TOTAL = Counter(
    "gridbatch_batch_total",
    "Batches executed, by outcome",
    ["table", "status"],
)

GRID_BATCH_LATENCY_SECONDS = Histogram(
    "gridbatch_batch_latency_seconds",
    "Wall time of execute_batch, from validation to commit or rollback",
    ["table"],
)

GRID_STATEMENT_TOTAL = Counter(
    "gridbatch_statement_total",
    "Statements executed inside a batch transaction",
    ["table", "op_type", "status"],
)

GRID_ROWS_AFFECTED_TOTAL = Counter(
    "gridbatch_rows_affected_total",
    "Rows changed by committed batches",
    ["table", "op_type"],
)
