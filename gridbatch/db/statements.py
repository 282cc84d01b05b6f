from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Sequence

from sqlalchemy.engine import Dialect

from ..errors import ValidationError
from .formatting import format_value, qualified_table, quote_identifier
from .models import BatchRequest, RowUpdate, TableRef


class StatementType(str, Enum):
    UPDATE = "update"
    INSERT = "insert"
    DELETE = "delete"


@dataclass(frozen=True)
class Statement:
    """A single data-mutation statement with its values rendered inline."""
    sql: str
    op_type: StatementType
    table: str


class StatementBuilder:
    """
    Translates a BatchRequest into UPDATE / INSERT / DELETE statements.

    Output is deterministic: SET columns follow the order of the changes
    mapping, WHERE columns follow the order of the primary-key mapping and
    INSERT columns follow the first row.

    Every method raises ValidationError for malformed input; nothing here
    touches the database.

    Usage:
        builder = StatementBuilder(engine.dialect)
        for stmt in builder.build(request):
            tx.execute(stmt.sql)
    """

    def __init__(self, dialect: Optional[Dialect] = None) -> None:
        self.dialect = dialect

    def _column(self, name: str) -> str:
        return quote_identifier(name, self.dialect)

    def _assignments(self, values: Mapping[str, Any], separator: str) -> str:
        return separator.join(
            f"{self._column(col)} = {format_value(val)}" for col, val in values.items()
        )

    def build_update(self, target: TableRef, update: RowUpdate) -> Statement:
        if not update.changes:
            raise ValidationError("Update has no changed columns")
        if not update.primary_key:
            raise ValidationError("Update has an empty primary key")

        sql = (
            f"UPDATE {qualified_table(target, self.dialect)} "
            f"SET {self._assignments(update.changes, ', ')} "
            f"WHERE {self._assignments(update.primary_key, ' AND ')}"
        )
        return Statement(sql=sql, op_type=StatementType.UPDATE, table=str(target))

    def build_insert(self, target: TableRef, rows: Sequence[Mapping[str, Any]]) -> Statement:
        """
        Build one multi-row INSERT.

        All rows must carry exactly the same set of columns.
        """
        if not rows:
            raise ValidationError("Insert has no rows")

        columns = list(rows[0].keys())
        if not columns:
            raise ValidationError("Insert row 0 has no columns")

        expected = set(columns)
        for i, row in enumerate(rows[1:], start=1):
            if set(row.keys()) != expected:
                missing = sorted(expected - set(row.keys()))
                extra = sorted(set(row.keys()) - expected)
                raise ValidationError(
                    f"Insert row {i} column set does not match row 0 "
                    f"(missing={missing}, extra={extra})"
                )

        col_sql = ", ".join(self._column(c) for c in columns)
        tuples = ", ".join(
            "(" + ", ".join(format_value(row[c]) for c in columns) + ")" for row in rows
        )
        sql = f"INSERT INTO {qualified_table(target, self.dialect)} ({col_sql}) VALUES {tuples}"
        return Statement(sql=sql, op_type=StatementType.INSERT, table=str(target))

    def build_delete(self, target: TableRef, primary_key: Mapping[str, Any]) -> Statement:
        if not primary_key:
            raise ValidationError("Delete has an empty primary key")

        sql = (
            f"DELETE FROM {qualified_table(target, self.dialect)} "
            f"WHERE {self._assignments(primary_key, ' AND ')}"
        )
        return Statement(sql=sql, op_type=StatementType.DELETE, table=str(target))

    def build(self, request: BatchRequest) -> list[Statement]:
        """
        Build every statement of a batch in execution order:
        updates, then the insert, then deletes.

        Raises:
            ValidationError: If the batch is empty or any entry is malformed
        """
        if request.is_empty():
            raise ValidationError("Batch is empty: nothing to update, insert or delete")

        target = request.target
        statements = [self.build_update(target, u) for u in request.updates]
        if request.inserts:
            statements.append(self.build_insert(target, request.inserts))
        statements.extend(self.build_delete(target, pk) for pk in request.deletes)
        return statements
