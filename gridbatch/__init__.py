from .db.coordinator import TransactionCoordinator
from .db.models import BatchRequest, BatchResult, TableRef
from .grid.session import GridSession
from .grid.tracker import EditTracker

__all__ = [
    "BatchRequest",
    "BatchResult",
    "EditTracker",
    "GridSession",
    "TableRef",
    "TransactionCoordinator",
]
