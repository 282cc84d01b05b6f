"""
Inline literal rendering for batch statements.

Batch statements carry their values inline rather than as bound parameters.
The guarantee made here is limited to correct quoting of the supported
scalar kinds:

- None            -> NULL
- bool            -> true / false
- int, float,
  Decimal         -> plain decimal digits, no exponent, no separators
- str             -> single-quoted, embedded single quotes doubled

Values outside that set are rendered as quoted text (JSON for dicts and
lists, str() for everything else) except bytes-like values, which are
rejected.
"""
from __future__ import annotations

import json
import math
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.engine import Dialect
from sqlalchemy.engine.default import DefaultDialect

from ..errors import ValidationError
from .models import TableRef


NULL_LITERAL = "NULL"

_DEFAULT_DIALECT = DefaultDialect()


def format_text(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def format_number(value: int | float | Decimal) -> str:
    """
    Render a number as plain decimal digits.

    Raises:
        ValidationError: If the value is NaN or infinite
    """
    if isinstance(value, int):
        return str(value)

    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValidationError(f"Cannot format non-finite number {value!r}")
        text = repr(value)
        if "e" in text or "E" in text:
            # 1e+16 -> 10000000000000000
            return format(Decimal(text), "f")
        return text

    if not value.is_finite():
        raise ValidationError(f"Cannot format non-finite number {value!r}")
    return format(value, "f")


def format_value(value: Any) -> str:
    """
    Render a Python value as an SQL literal.

    Args:
        value: The scalar to render

    Returns:
        The literal text, ready to embed in a statement

    Raises:
        ValidationError: If the value cannot be represented

    Example:
        >>> format_value("O'Brien")
        "'O''Brien'"
        >>> format_value(None)
        'NULL'
    """
    if value is None:
        return NULL_LITERAL
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, Decimal)):
        return format_number(value)
    if isinstance(value, str):
        return format_text(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        raise ValidationError(
            f"Cannot format binary value of type {type(value).__name__}; "
            "pass it as pre-formatted text"
        )
    if isinstance(value, (dict, list, tuple)):
        try:
            return format_text(json.dumps(value, default=str))
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Cannot format value as JSON: {exc}") from exc
    return format_text(str(value))


def values_equal(a: Any, b: Any) -> bool:
    """
    Strict equality used to decide whether an edit reverts a cell.

    None only equals None and booleans only equal booleans, so True never
    matches 1. Numbers compare by value.
    """
    if a is None or b is None:
        return a is None and b is None
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    a_num = isinstance(a, (int, float, Decimal))
    b_num = isinstance(b, (int, float, Decimal))
    if a_num or b_num:
        return a_num and b_num and a == b
    return a == b


def quote_identifier(name: str, dialect: Optional[Dialect] = None) -> str:
    """
    Quote a table or column name for the given dialect.

    Names are always quoted, and embedded quote characters are escaped by
    the dialect's identifier preparer.

    Raises:
        ValidationError: If name is not a non-empty string
    """
    if not isinstance(name, str) or not name:
        raise ValidationError(f"Invalid identifier {name!r}: must be a non-empty string")
    preparer = (dialect or _DEFAULT_DIALECT).identifier_preparer
    return preparer.quote_identifier(name)


def qualified_table(target: TableRef, dialect: Optional[Dialect] = None) -> str:
    table = quote_identifier(target.table, dialect)
    if target.schema:
        return f"{quote_identifier(target.schema, dialect)}.{table}"
    return table
