from __future__ import annotations


class GridBatchError(Exception):
    """Base exception for gridbatch errors."""


class ValidationError(GridBatchError):
    """Batch content rejected before any database interaction."""


class DbConnectionError(GridBatchError):
    """A transaction could not be opened, or the connection was lost mid-batch."""

    def __init__(self, message: str, statement_index: int | None = None) -> None:
        super().__init__(message)
        self.statement_index = statement_index


class StatementError(GridBatchError):
    """The database rejected one statement of a batch."""

    def __init__(
        self,
        message: str,
        statement_index: int | None = None,
        sql: str | None = None,
    ) -> None:
        super().__init__(message)
        self.statement_index = statement_index
        self.sql = sql


class CommitError(GridBatchError):
    """The final COMMIT of a batch failed."""


class PageLoadError(GridBatchError):
    """A page of rows could not be read from the source table."""
