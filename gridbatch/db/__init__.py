from .coordinator import CoordinatorState, TransactionCoordinator
from .formatting import format_value, quote_identifier
from .loader import PageLoader, SqlAlchemyPageLoader
from .models import (
    BatchRequest,
    BatchResult,
    ColumnDescriptor,
    ErrorKind,
    MutationRecord,
    NewRowId,
    Page,
    RowOrigin,
    RowUpdate,
    TableRef,
)
from .session import DbSession
from .statements import Statement, StatementBuilder, StatementType
from .tx import DbFactory, DbTransaction, DbTx

__all__ = [
    "BatchRequest",
    "BatchResult",
    "ColumnDescriptor",
    "CoordinatorState",
    "DbFactory",
    "DbSession",
    "DbTransaction",
    "DbTx",
    "ErrorKind",
    "MutationRecord",
    "NewRowId",
    "Page",
    "PageLoader",
    "RowOrigin",
    "RowUpdate",
    "SqlAlchemyPageLoader",
    "Statement",
    "StatementBuilder",
    "StatementType",
    "TableRef",
    "TransactionCoordinator",
    "format_value",
    "quote_identifier",
]
