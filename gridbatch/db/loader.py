from __future__ import annotations

import logging
import re
from decimal import Decimal
from typing import Any, Protocol

from sqlalchemy import Column, MetaData, Table, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ..errors import PageLoadError
from .models import ColumnDescriptor, Page, TableRef
from .session import DbSession


logger = logging.getLogger(__name__)

# 'text', optionally followed by a PostgreSQL cast such as ::character varying
_QUOTED_DEFAULT = re.compile(r"^'((?:[^']|'')*)'(?:::[\w\s\"]+)?$")
_INTEGER_DEFAULT = re.compile(r"^[+-]?\d+$")
_DECIMAL_DEFAULT = re.compile(r"^[+-]?(\d+\.\d*|\.\d+)$")


def server_default_value(column: Column) -> Any:
    """
    Translate a reflected server default into a Python value for new rows.

    Only literal defaults are translated: quoted strings, integers and
    decimals, possibly wrapped in parentheses. Expressions such as
    CURRENT_TIMESTAMP or nextval(...) yield None and are left to the
    database.
    """
    default = column.server_default
    if default is None:
        return None
    arg = getattr(default, "arg", None)
    if isinstance(arg, str):
        # Declared in Python rather than reflected; already a plain value
        return arg
    text = getattr(arg, "text", None)
    if not isinstance(text, str):
        return None

    text = text.strip()
    while text.startswith("(") and text.endswith(")"):
        text = text[1:-1].strip()

    match = _QUOTED_DEFAULT.match(text)
    if match:
        return match.group(1).replace("''", "'")
    if _INTEGER_DEFAULT.match(text):
        return int(text)
    if _DECIMAL_DEFAULT.match(text):
        return Decimal(text)
    if text.upper() == "NULL":
        return None
    logger.debug("Leaving server default %r of column %s to the database", text, column.name)
    return None


class PageLoader(Protocol):
    def load_page(self, target: TableRef, page: int, page_size: int) -> Page:
        """Return column descriptors, one page of rows and the total row count."""
        ...


class SqlAlchemyPageLoader:
    """
    Reads pages of a table through SQLAlchemy reflection.

    Rows are ordered by the primary key when the table has one, so that
    page boundaries are stable between reloads.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def _reflect(self, session: DbSession, target: TableRef) -> Table:
        return Table(
            target.table,
            MetaData(),
            schema=target.schema or None,
            autoload_with=session.connection,
        )

    def load_page(self, target: TableRef, page: int, page_size: int) -> Page:
        """
        Raises:
            ValueError: If page is negative or page_size is not positive
            PageLoadError: If the table cannot be reflected or read
        """
        if page < 0:
            raise ValueError("page must be >= 0")
        if page_size <= 0:
            raise ValueError("page_size must be > 0")

        try:
            with DbSession(self.engine) as session:
                table = self._reflect(session, target)
                columns = [
                    ColumnDescriptor(
                        name=col.name,
                        type=str(col.type),
                        nullable=bool(col.nullable),
                        is_primary_key=bool(col.primary_key),
                        default=server_default_value(col),
                        has_server_default=col.server_default is not None,
                    )
                    for col in table.columns
                ]

                query = select(table)
                pk_cols = list(table.primary_key.columns)
                if pk_cols:
                    query = query.order_by(*pk_cols)
                query = query.limit(page_size).offset(page * page_size)

                rows = session.fetch_all(query)
                total = session.execute_scalar(select(func.count()).select_from(table))
        except SQLAlchemyError as exc:
            logger.error("Failed to load page %d of %s: %s", page, target, exc)
            raise PageLoadError(f"Could not load {target}: {exc}") from exc

        logger.debug("Loaded %d rows of %s (page %d, total %s)", len(rows), target, page, total)
        return Page(
            columns=columns,
            rows=rows,
            total_rows=int(total or 0),
            page=page,
            page_size=page_size,
        )
