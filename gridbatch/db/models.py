from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from ..errors import (
    CommitError,
    DbConnectionError,
    StatementError,
    ValidationError,
)


Row = Dict[str, Any]
# Projection of an existing row onto its primary-key columns, in key order.
RowKey = Tuple[Any, ...]


class RowOrigin(str, Enum):
    EXISTING = "existing"
    NEW = "new"
    REMOVED = "removed"


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    CONNECTION = "connection"
    STATEMENT = "statement"
    COMMIT = "commit"


@dataclass(frozen=True)
class NewRowId:
    """Tracker-issued identity of a row that does not exist server-side yet."""
    n: int


RowId = Union[RowKey, NewRowId]


@dataclass(frozen=True)
class ColumnDescriptor:
    name: str
    type: str = ""
    nullable: bool = True
    is_primary_key: bool = False
    # Value used to populate new rows
    default: Any = None
    # The database fills this column when an insert leaves it out
    has_server_default: bool = False


@dataclass(frozen=True)
class TableRef:
    database: str
    schema: Optional[str]
    table: str

    def __str__(self) -> str:
        if self.schema:
            return f"{self.schema}.{self.table}"
        return self.table


@dataclass
class MutationRecord:
    """
    Pending diff for one existing row.

    Every column in `changes` differs from its value in `original`.
    """
    original: Row
    changes: Row = field(default_factory=dict)


@dataclass
class RowUpdate:
    primary_key: Row
    changes: Row

    def to_dict(self) -> dict[str, Any]:
        return {"primaryKey": dict(self.primary_key), "changes": dict(self.changes)}


@dataclass
class BatchRequest:
    """
    One atomic unit of updates, inserts and deletes against a single table.
    """
    target: TableRef
    updates: list[RowUpdate] = field(default_factory=list)
    inserts: list[Row] = field(default_factory=list)
    deletes: list[Row] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.updates or self.inserts or self.deletes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "database": self.target.database,
            "schema": self.target.schema,
            "table": self.target.table,
            "updates": [u.to_dict() for u in self.updates],
            "inserts": [dict(r) for r in self.inserts],
            "deletes": [dict(pk) for pk in self.deletes],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BatchRequest":
        """
        Parse the wire shape produced by to_dict().

        Raises:
            ValidationError: If a required key is missing or a row is not a mapping
        """
        try:
            target = TableRef(
                database=data["database"],
                schema=data.get("schema"),
                table=data["table"],
            )
            updates = [
                RowUpdate(primary_key=dict(u["primaryKey"]), changes=dict(u["changes"]))
                for u in data.get("updates") or []
            ]
            inserts = [dict(r) for r in data.get("inserts") or []]
            deletes = [dict(pk) for pk in data.get("deletes") or []]
        except KeyError as exc:
            raise ValidationError(f"batch request is missing {exc.args[0]!r}") from exc
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"malformed batch request: {exc}") from exc

        return cls(target=target, updates=updates, inserts=inserts, deletes=deletes)


_ERROR_TYPES = {
    ErrorKind.VALIDATION: ValidationError,
    ErrorKind.CONNECTION: DbConnectionError,
    ErrorKind.STATEMENT: StatementError,
    ErrorKind.COMMIT: CommitError,
}


@dataclass
class BatchResult:
    success: bool
    rows_affected: int = 0
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    # Position of the failing statement in execution order, when known
    statement_index: Optional[int] = None

    @classmethod
    def ok(cls, rows_affected: int) -> "BatchResult":
        return cls(success=True, rows_affected=rows_affected)

    @classmethod
    def failure(
        cls,
        kind: ErrorKind,
        message: str,
        statement_index: Optional[int] = None,
    ) -> "BatchResult":
        return cls(
            success=False,
            rows_affected=0,
            error=message,
            error_kind=kind,
            statement_index=statement_index,
        )

    def raise_for_error(self) -> None:
        """Raise the exception matching error_kind if the batch failed."""
        if self.success:
            return
        exc_type = _ERROR_TYPES.get(self.error_kind, StatementError)
        if exc_type is StatementError:
            raise StatementError(self.error or "", statement_index=self.statement_index)
        raise exc_type(self.error or "")

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "success": self.success,
            "rowsAffected": self.rows_affected,
        }
        if self.error is not None:
            out["error"] = self.error
        if self.error_kind is not None:
            out["errorKind"] = self.error_kind.value
        if self.statement_index is not None:
            out["statementIndex"] = self.statement_index
        return out


@dataclass
class Page:
    columns: list[ColumnDescriptor]
    rows: list[Row]
    total_rows: int
    page: int = 0
    page_size: int = 100

    @property
    def primary_keys(self) -> list[str]:
        return [c.name for c in self.columns if c.is_primary_key]

    @property
    def max_page(self) -> int:
        if self.total_rows <= 0:
            return 0
        return (self.total_rows - 1) // self.page_size
