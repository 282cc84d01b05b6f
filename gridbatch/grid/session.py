from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from ..config import GridConfig
from ..db.coordinator import TransactionCoordinator
from ..db.loader import PageLoader
from ..db.models import BatchResult, ColumnDescriptor, NewRowId, Page, Row, RowId, TableRef
from ..errors import PageLoadError
from .tracker import EditTracker, ModificationStats


logger = logging.getLogger(__name__)


class GridSession:
    """
    State of one open table in the grid: the current page, its EditTracker,
    and the save / discard / paging actions that reload it.

    Loading any page replaces the tracker, so unsaved edits are dropped on
    refresh, page change and discard.

    Usage:
        grid = GridSession(SqlAlchemyPageLoader(engine), TransactionCoordinator(engine))
        grid.open_table("app", None, "users")
        grid.update_cell((1,), "name", "Alice")
        result = grid.save()
    """

    def __init__(
        self,
        loader: PageLoader,
        coordinator: TransactionCoordinator,
        config: Optional[GridConfig] = None,
    ) -> None:
        self.loader = loader
        self.coordinator = coordinator
        self.config = config or GridConfig()
        self.target: Optional[TableRef] = None
        self.page = 0
        self.page_size = self.config.page_size
        self.total_rows = 0
        self.current_page: Optional[Page] = None
        self.tracker: Optional[EditTracker] = None
        self.error: Optional[str] = None

    def _load(self) -> None:
        assert self.target is not None
        page = self.loader.load_page(self.target, self.page, self.page_size)
        self.current_page = page
        self.total_rows = page.total_rows
        self.tracker = EditTracker.from_page(self.target, page, on_reload_required=self.refresh)
        self.error = None

    def open_table(self, database: str, schema: Optional[str], table: str) -> None:
        self.target = TableRef(database=database, schema=schema, table=table)
        self.page = 0
        self._load()
        logger.info("Opened %s (%d rows, editable=%s)", self.target, self.total_rows, self.can_edit)

    def refresh(self) -> None:
        if self.target is None:
            return
        self._load()

    @property
    def max_page(self) -> int:
        return self.current_page.max_page if self.current_page is not None else 0

    def set_page(self, page: int) -> bool:
        """Move to another page; out-of-range pages are ignored."""
        if self.target is None or page < 0 or page > self.max_page:
            return False
        self.page = page
        self._load()
        return True

    def set_page_size(self, page_size: int) -> bool:
        if self.target is None or page_size <= 0 or page_size > self.config.max_page_size:
            return False
        self.page_size = page_size
        self.page = 0
        self._load()
        return True

    def close(self) -> None:
        self.target = None
        self.tracker = None
        self.current_page = None
        self.page = 0
        self.total_rows = 0
        self.error = None

    # Delegation to the tracker

    @property
    def can_edit(self) -> bool:
        return self.tracker is not None and self.tracker.can_edit

    @property
    def columns(self) -> list[ColumnDescriptor]:
        return list(self.tracker.columns) if self.tracker is not None else []

    def rows(self) -> list[tuple[RowId, Row]]:
        return self.tracker.rows() if self.tracker is not None else []

    def update_cell(self, row_id: Any, column: str, value: Any) -> bool:
        if self.tracker is None:
            return False
        return self.tracker.record_cell_change(row_id, column, value)

    def add_row(self) -> Optional[NewRowId]:
        if self.tracker is None:
            return None
        return self.tracker.add_row()

    def delete_rows(self, row_ids: Iterable[Any]) -> int:
        if self.tracker is None:
            return 0
        return self.tracker.mark_rows_deleted(row_ids)

    def stats(self) -> ModificationStats:
        if self.tracker is None:
            return ModificationStats(0, 0, 0)
        return self.tracker.compute_stats()

    @property
    def has_unsaved_changes(self) -> bool:
        return self.stats().has_pending_changes

    def discard(self) -> None:
        if self.tracker is None:
            return
        self.tracker.discard()

    def save(self) -> Optional[BatchResult]:
        """
        Submit every pending change as one batch.

        On success the page is reloaded. On failure the pending changes stay
        in place and the error is kept on self.error.

        If the batch commits but the reload fails, the committed result is
        still returned, the rows are cleared rather than left showing
        pre-edit values, and the reload error is kept on self.error.

        Returns:
            The BatchResult, or None if there was nothing to save
        """
        if self.tracker is None:
            return None
        request = self.tracker.build_batch_request()
        if request is None:
            return None

        result = self.coordinator.execute_batch(request)
        try:
            self.tracker.reconcile(result)
        except PageLoadError as exc:
            logger.warning("Saved %s but could not reload it: %s", self.target, exc)
            self.tracker = EditTracker(
                self.tracker.target, self.tracker.columns, on_reload_required=self.refresh
            )
            self.error = f"Changes were saved but the table could not be reloaded: {exc}"
            return result
        self.error = result.error
        return result
