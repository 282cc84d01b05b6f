from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from ..db.formatting import values_equal
from ..db.models import (
    BatchRequest,
    BatchResult,
    ColumnDescriptor,
    MutationRecord,
    NewRowId,
    Page,
    Row,
    RowId,
    RowKey,
    RowOrigin,
    RowUpdate,
    TableRef,
)
from ..errors import ValidationError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModificationStats:
    updated: int
    inserted: int
    deleted: int

    @property
    def total(self) -> int:
        return self.updated + self.inserted + self.deleted

    @property
    def has_pending_changes(self) -> bool:
        return self.total > 0


@dataclass
class TrackedRow:
    row_id: RowId
    origin: RowOrigin
    # Displayed values, edits included
    values: Row


class EditTracker:
    """
    In-memory overlay of pending edits on top of one loaded page.

    Rows are keyed by a stable identity rather than their display position:
    existing rows by their primary-key tuple, new rows by a NewRowId issued
    here. Every row is in exactly one of three states (RowOrigin):

    - EXISTING: loaded from the table; edits create a MutationRecord
    - NEW: added locally; edits go straight into its values
    - REMOVED: existing row marked for deletion; no longer editable

    Nothing here touches the database. Edits to REMOVED rows and references
    to identities that are not on the page are ignored. A table without a
    primary key is read-only and every mutating call is ignored.

    Usage:
        tracker = EditTracker.from_page(target, page)
        tracker.record_cell_change((1,), "name", "Alice")
        new_id = tracker.add_row()
        tracker.record_cell_change(new_id, "id", 10)
        request = tracker.build_batch_request()
    """

    def __init__(
        self,
        target: TableRef,
        columns: Sequence[ColumnDescriptor],
        rows: Iterable[Mapping[str, Any]] = (),
        on_reload_required: Optional[Callable[[], None]] = None,
    ) -> None:
        self.target = target
        self.columns = list(columns)
        self.primary_keys = [c.name for c in self.columns if c.is_primary_key]
        self.on_reload_required = on_reload_required
        self._column_names = {c.name for c in self.columns}
        self._rows: dict[RowId, TrackedRow] = {}
        self._records: dict[RowId, MutationRecord] = {}
        self._next_new_id = 0

        for position, row in enumerate(rows):
            values = dict(row)
            if self.primary_keys:
                row_id = self.key_of(values)
            else:
                # Read-only table; position is only used for display
                row_id = (position,)
            if row_id in self._rows:
                raise ValidationError(f"Duplicate primary key {row_id!r} in loaded page")
            self._rows[row_id] = TrackedRow(row_id, RowOrigin.EXISTING, values)

    @classmethod
    def from_page(
        cls,
        target: TableRef,
        page: Page,
        on_reload_required: Optional[Callable[[], None]] = None,
    ) -> "EditTracker":
        return cls(target, page.columns, page.rows, on_reload_required)

    @property
    def can_edit(self) -> bool:
        return bool(self.primary_keys)

    def key_of(self, row: Mapping[str, Any]) -> RowKey:
        """Project a row onto the primary-key columns."""
        return tuple(row.get(pk) for pk in self.primary_keys)

    def _normalize(self, row_id: Any) -> RowId:
        # Single-column keys may be passed as a bare value, composite keys as a list
        if isinstance(row_id, (NewRowId, tuple)):
            return row_id
        if isinstance(row_id, list):
            return tuple(row_id)
        return (row_id,)

    def _lookup(self, row_id: Any, action: str) -> Optional[TrackedRow]:
        row_id = self._normalize(row_id)
        tracked = self._rows.get(row_id)
        if tracked is None:
            logger.debug("Ignoring %s on unknown row %r of %s", action, row_id, self.target)
        return tracked

    # Mutations

    def record_cell_change(self, row_id: Any, column: str, new_value: Any) -> bool:
        """
        Record an edit to one cell.

        Returns:
            True if the edit was applied, False if it was ignored

        Raises:
            ValidationError: If column is not a column of this table
        """
        if not self.can_edit:
            logger.debug("Ignoring edit on read-only table %s", self.target)
            return False
        if column not in self._column_names:
            raise ValidationError(f"Unknown column {column!r} for {self.target}")

        tracked = self._lookup(row_id, "edit")
        if tracked is None:
            return False
        if tracked.origin is RowOrigin.REMOVED:
            logger.debug("Ignoring edit on removed row %r", tracked.row_id)
            return False

        if tracked.origin is RowOrigin.NEW:
            tracked.values[column] = new_value
            return True

        record = self._records.get(tracked.row_id)
        if record is None:
            record = MutationRecord(original=dict(tracked.values))
            self._records[tracked.row_id] = record
        tracked.values[column] = new_value

        if values_equal(record.original.get(column), new_value):
            record.changes.pop(column, None)
            if not record.changes:
                del self._records[tracked.row_id]
        else:
            record.changes[column] = new_value
        return True

    def add_row(self) -> Optional[NewRowId]:
        """
        Append a new row with every column set to its default.

        Returns:
            The identity of the new row, or None if the table is read-only
        """
        if not self.can_edit:
            logger.debug("Ignoring add_row on read-only table %s", self.target)
            return None

        row_id = NewRowId(self._next_new_id)
        self._next_new_id += 1
        values = {c.name: c.default for c in self.columns}
        self._rows[row_id] = TrackedRow(row_id, RowOrigin.NEW, values)
        return row_id

    def mark_rows_deleted(self, row_ids: Iterable[Any]) -> int:
        """
        Mark rows for deletion.

        New rows are dropped outright since they never existed server-side.
        Existing rows become REMOVED and lose any pending MutationRecord.

        Returns:
            Number of rows affected
        """
        if not self.can_edit:
            logger.debug("Ignoring delete on read-only table %s", self.target)
            return 0

        affected = 0
        for row_id in row_ids:
            tracked = self._lookup(row_id, "delete")
            if tracked is None or tracked.origin is RowOrigin.REMOVED:
                continue

            if tracked.origin is RowOrigin.NEW:
                del self._rows[tracked.row_id]
            else:
                record = self._records.pop(tracked.row_id, None)
                if record is not None:
                    tracked.values = dict(record.original)
                tracked.origin = RowOrigin.REMOVED
            affected += 1
        return affected

    def discard(self) -> None:
        """
        Drop every pending change and ask the owner to reload the page.
        """
        for row_id, record in self._records.items():
            self._rows[row_id].values = dict(record.original)
        self._records.clear()

        for row_id in [r for r, t in self._rows.items() if t.origin is RowOrigin.NEW]:
            del self._rows[row_id]
        for tracked in self._rows.values():
            tracked.origin = RowOrigin.EXISTING

        if self.on_reload_required is not None:
            self.on_reload_required()

    def reconcile(self, result: BatchResult) -> bool:
        """
        Apply the outcome of a batch.

        A committed batch clears the overlay and triggers a reload; a failed
        one leaves every pending change in place so the user can fix it.
        """
        if not result.success:
            logger.info("Keeping pending changes on %s after failed batch", self.target)
            return False
        self.discard()
        return True

    # Queries

    def compute_stats(self) -> ModificationStats:
        inserted = deleted = 0
        for tracked in self._rows.values():
            if tracked.origin is RowOrigin.NEW:
                inserted += 1
            elif tracked.origin is RowOrigin.REMOVED:
                deleted += 1
        return ModificationStats(updated=len(self._records), inserted=inserted, deleted=deleted)

    def origin_of(self, row_id: Any) -> Optional[RowOrigin]:
        tracked = self._rows.get(self._normalize(row_id))
        return tracked.origin if tracked is not None else None

    def is_row_modified(self, row_id: Any) -> bool:
        row_id = self._normalize(row_id)
        return row_id in self._records or self.origin_of(row_id) is RowOrigin.REMOVED

    def is_row_deleted(self, row_id: Any) -> bool:
        return self.origin_of(row_id) is RowOrigin.REMOVED

    def is_row_inserted(self, row_id: Any) -> bool:
        return self.origin_of(row_id) is RowOrigin.NEW

    def get_row_modification(self, row_id: Any) -> Optional[MutationRecord]:
        record = self._records.get(self._normalize(row_id))
        if record is None:
            return None
        return MutationRecord(original=dict(record.original), changes=dict(record.changes))

    def row(self, row_id: Any) -> Optional[Row]:
        tracked = self._rows.get(self._normalize(row_id))
        return dict(tracked.values) if tracked is not None else None

    def rows(self) -> list[tuple[RowId, Row]]:
        """Rows in display order: loaded rows first, then new rows."""
        return [(t.row_id, dict(t.values)) for t in self._rows.values()]

    def __len__(self) -> int:
        return len(self._rows)

    def _insert_columns(self, new_rows: list[Row]) -> list[str]:
        # One column set for every inserted row. A server-default column that
        # no new row has filled is left out so the database supplies its value.
        return [
            c.name
            for c in self.columns
            if not (
                c.has_server_default
                and c.default is None
                and all(values.get(c.name) is None for values in new_rows)
            )
        ]

    def build_batch_request(self) -> Optional[BatchRequest]:
        """
        Serialize the overlay.

        Update and delete keys come from the loaded snapshot, so an edited
        key column still targets the row it was loaded as.

        Returns:
            The BatchRequest, or None if nothing is pending
        """
        if not self.compute_stats().has_pending_changes:
            return None

        updates = [
            RowUpdate(
                primary_key={pk: record.original.get(pk) for pk in self.primary_keys},
                changes=dict(record.changes),
            )
            for record in self._records.values()
        ]

        new_rows = [t.values for t in self._rows.values() if t.origin is RowOrigin.NEW]
        column_names = self._insert_columns(new_rows)
        inserts = [{name: values.get(name) for name in column_names} for values in new_rows]
        deletes = [
            dict(zip(self.primary_keys, t.row_id))
            for t in self._rows.values()
            if t.origin is RowOrigin.REMOVED
        ]

        return BatchRequest(
            target=self.target,
            updates=updates,
            inserts=inserts,
            deletes=deletes,
        )
