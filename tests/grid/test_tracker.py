from __future__ import annotations

import pytest

from gridbatch.db.models import (
    BatchResult,
    ColumnDescriptor,
    ErrorKind,
    NewRowId,
    Page,
    RowOrigin,
    RowUpdate,
    TableRef,
)
from gridbatch.errors import ValidationError
from gridbatch.grid.tracker import EditTracker


TARGET = TableRef(database="app", schema="public", table="users")

COLUMNS = [
    ColumnDescriptor("id", "INTEGER", nullable=False, is_primary_key=True),
    ColumnDescriptor("name", "VARCHAR(64)"),
    ColumnDescriptor("active", "BOOLEAN", default=True),
]


def _rows():
    return [
        {"id": 1, "name": "alice", "active": True},
        {"id": 2, "name": "bob", "active": False},
        {"id": 3, "name": None, "active": True},
    ]


@pytest.fixture
def tracker() -> EditTracker:
    return EditTracker(TARGET, COLUMNS, _rows())


class TestCellChanges:
    def test_first_edit_creates_record_with_snapshot(self, tracker: EditTracker) -> None:
        """Test that the first edit of a row snapshots its loaded values."""
        assert tracker.record_cell_change((1,), "name", "ALICE")

        record = tracker.get_row_modification((1,))
        assert record is not None
        assert record.original == {"id": 1, "name": "alice", "active": True}
        assert record.changes == {"name": "ALICE"}
        assert tracker.row((1,))["name"] == "ALICE"
        assert tracker.is_row_modified((1,))

    def test_bare_value_identity_for_single_key(self, tracker: EditTracker) -> None:
        """Test that a single-column key may be passed as a bare value."""
        tracker.record_cell_change(2, "name", "robert")
        assert tracker.get_row_modification((2,)).changes == {"name": "robert"}

    def test_snapshot_is_kept_across_edits(self, tracker: EditTracker) -> None:
        """Test that later edits keep the first snapshot."""
        tracker.record_cell_change((1,), "name", "a1")
        tracker.record_cell_change((1,), "name", "a2")
        tracker.record_cell_change((1,), "active", False)

        record = tracker.get_row_modification((1,))
        assert record.original["name"] == "alice"
        assert record.changes == {"name": "a2", "active": False}

    @pytest.mark.parametrize(
        "edits",
        [
            ["x"],
            ["x", "y", "z"],
            [None, "", "alice "],
        ],
    )
    def test_reverting_to_original_drops_record(self, tracker: EditTracker, edits) -> None:
        """Test that editing a cell back to its original value clears the record."""
        for value in edits:
            tracker.record_cell_change((1,), "name", value)
        tracker.record_cell_change((1,), "name", "alice")

        assert tracker.get_row_modification((1,)) is None
        assert not tracker.is_row_modified((1,))
        assert tracker.compute_stats().updated == 0

    def test_reverting_one_column_keeps_others(self, tracker: EditTracker) -> None:
        """Test that reverting one column keeps the other pending changes."""
        tracker.record_cell_change((1,), "name", "x")
        tracker.record_cell_change((1,), "active", False)
        tracker.record_cell_change((1,), "name", "alice")

        assert tracker.get_row_modification((1,)).changes == {"active": False}

    def test_setting_same_value_creates_nothing(self, tracker: EditTracker) -> None:
        """Test that writing the loaded value creates no record."""
        tracker.record_cell_change((2,), "name", "bob")
        assert tracker.get_row_modification((2,)) is None

    def test_bool_edit_is_not_a_revert_to_number(self) -> None:
        """Test that True does not count as a revert to 1."""
        tracker = EditTracker(TARGET, COLUMNS, [{"id": 1, "name": "a", "active": 1}])
        tracker.record_cell_change((1,), "active", True)
        assert tracker.get_row_modification((1,)).changes == {"active": True}

    def test_unknown_column_raises(self, tracker: EditTracker) -> None:
        """Test that editing an unknown column raises ValidationError."""
        with pytest.raises(ValidationError, match="Unknown column"):
            tracker.record_cell_change((1,), "nope", 1)

    def test_unknown_row_is_noop(self, tracker: EditTracker) -> None:
        """Test that editing an unknown row is ignored."""
        assert not tracker.record_cell_change((99,), "name", "x")
        assert not tracker.compute_stats().has_pending_changes

    def test_removed_row_is_not_editable(self, tracker: EditTracker) -> None:
        """Test that edits to a removed row are ignored."""
        tracker.mark_rows_deleted([(2,)])

        assert not tracker.record_cell_change((2,), "name", "x")
        assert tracker.get_row_modification((2,)) is None
        assert tracker.row((2,))["name"] == "bob"

    def test_editing_key_column_keeps_identity(self, tracker: EditTracker) -> None:
        """Test that editing a key column keeps the row addressed by its loaded key."""
        tracker.record_cell_change((1,), "id", 100)

        request = tracker.build_batch_request()
        assert request.updates == [RowUpdate(primary_key={"id": 1}, changes={"id": 100})]
        assert tracker.origin_of((1,)) is RowOrigin.EXISTING


class TestNewRows:
    def test_add_row_uses_defaults(self, tracker: EditTracker) -> None:
        """Test that a new row starts from the column defaults."""
        row_id = tracker.add_row()

        assert isinstance(row_id, NewRowId)
        assert tracker.row(row_id) == {"id": None, "name": None, "active": True}
        assert tracker.is_row_inserted(row_id)
        assert tracker.origin_of(row_id) is RowOrigin.NEW

    def test_new_rows_follow_loaded_rows(self, tracker: EditTracker) -> None:
        """Test that new rows are listed after loaded rows."""
        a = tracker.add_row()
        b = tracker.add_row()
        assert [row_id for row_id, _ in tracker.rows()] == [(1,), (2,), (3,), a, b]
        assert a != b

    def test_edits_go_into_working_copy(self, tracker: EditTracker) -> None:
        """Test that edits to a new row change its values without a record."""
        row_id = tracker.add_row()
        tracker.record_cell_change(row_id, "id", 10)
        tracker.record_cell_change(row_id, "name", "new")

        assert tracker.row(row_id) == {"id": 10, "name": "new", "active": True}
        assert tracker.get_row_modification(row_id) is None
        assert tracker.compute_stats().updated == 0

    def test_new_row_ids_are_not_reused(self, tracker: EditTracker) -> None:
        """Test that a dropped new row's identity is never issued again."""
        first = tracker.add_row()
        tracker.mark_rows_deleted([first])
        assert tracker.add_row() != first


class TestDeletes:
    def test_new_row_is_dropped_not_deleted(self, tracker: EditTracker) -> None:
        """Test that deleting a new row removes it instead of marking it."""
        row_id = tracker.add_row()
        assert tracker.mark_rows_deleted([row_id]) == 1

        assert tracker.row(row_id) is None
        stats = tracker.compute_stats()
        assert stats.inserted == 0
        assert stats.deleted == 0
        assert tracker.build_batch_request() is None

    def test_existing_row_becomes_removed(self, tracker: EditTracker) -> None:
        """Test that deleting an existing row marks it REMOVED."""
        tracker.mark_rows_deleted([(3,)])

        assert tracker.is_row_deleted((3,))
        assert tracker.is_row_modified((3,))
        assert tracker.origin_of((3,)) is RowOrigin.REMOVED

    def test_delete_discards_pending_update(self, tracker: EditTracker) -> None:
        """Test that deleting an edited row drops its pending update."""
        tracker.record_cell_change((1,), "name", "changed")
        tracker.mark_rows_deleted([(1,)])

        request = tracker.build_batch_request()
        assert request.updates == []
        assert request.deletes == [{"id": 1}]
        assert tracker.row((1,))["name"] == "alice"

    def test_unknown_and_repeated_deletes_are_noops(self, tracker: EditTracker) -> None:
        """Test that unknown and already removed rows are not counted."""
        assert tracker.mark_rows_deleted([(2,), (2,), (42,), NewRowId(7)]) == 1
        assert tracker.compute_stats().deleted == 1


class TestStats:
    def test_counts(self, tracker: EditTracker) -> None:
        """Test update, insert and delete counts."""
        tracker.record_cell_change((1,), "name", "x")
        tracker.add_row()
        tracker.add_row()
        tracker.mark_rows_deleted([(3,)])

        stats = tracker.compute_stats()
        assert (stats.updated, stats.inserted, stats.deleted, stats.total) == (1, 2, 1, 4)
        assert stats.has_pending_changes

    def test_clean_tracker(self, tracker: EditTracker) -> None:
        """Test that a fresh tracker has nothing pending."""
        stats = tracker.compute_stats()
        assert stats.total == 0
        assert not stats.has_pending_changes


class TestBuildBatchRequest:
    def test_nothing_pending_returns_none(self, tracker: EditTracker) -> None:
        """Test that no request is built when nothing is pending."""
        assert tracker.build_batch_request() is None

    def test_serializes_overlay(self, tracker: EditTracker) -> None:
        """Test that updates, inserts and deletes are serialized from the overlay."""
        tracker.record_cell_change((2,), "name", "robert")
        tracker.record_cell_change((1,), "active", False)
        new_id = tracker.add_row()
        tracker.record_cell_change(new_id, "id", 4)
        tracker.mark_rows_deleted([(3,)])

        request = tracker.build_batch_request()

        assert request.target == TARGET
        assert request.updates == [
            RowUpdate({"id": 2}, {"name": "robert"}),
            RowUpdate({"id": 1}, {"active": False}),
        ]
        assert request.inserts == [{"id": 4, "name": None, "active": True}]
        assert request.deletes == [{"id": 3}]

    def test_inserts_share_one_column_set(self, tracker: EditTracker) -> None:
        """Test that every inserted row carries the same columns."""
        a = tracker.add_row()
        b = tracker.add_row()
        tracker.record_cell_change(a, "name", "only-a")
        tracker.record_cell_change(b, "id", 5)

        request = tracker.build_batch_request()
        assert [list(r) for r in request.inserts] == [["id", "name", "active"]] * 2

    def test_composite_keys(self) -> None:
        """Test update and delete keys for a composite primary key."""
        columns = [
            ColumnDescriptor("user_id", is_primary_key=True),
            ColumnDescriptor("role_id", is_primary_key=True),
            ColumnDescriptor("note"),
        ]
        tracker = EditTracker(
            TARGET,
            columns,
            [{"user_id": 1, "role_id": 2, "note": "a"}, {"user_id": 1, "role_id": 3, "note": "b"}],
        )
        tracker.record_cell_change((1, 2), "note", "z")
        tracker.mark_rows_deleted([(1, 3)])

        request = tracker.build_batch_request()
        assert request.updates == [RowUpdate({"user_id": 1, "role_id": 2}, {"note": "z"})]
        assert request.deletes == [{"user_id": 1, "role_id": 3}]

    def test_composite_key_passed_as_list(self) -> None:
        """Test that a composite identity in list form addresses the same row."""
        columns = [
            ColumnDescriptor("user_id", is_primary_key=True),
            ColumnDescriptor("role_id", is_primary_key=True),
            ColumnDescriptor("note"),
        ]
        tracker = EditTracker(TARGET, columns, [{"user_id": 1, "role_id": 2, "note": "a"}])

        assert tracker.record_cell_change([1, 2], "note", "z")
        assert not tracker.record_cell_change([9, 9], "note", "z")
        assert tracker.is_row_modified([1, 2])
        assert tracker.mark_rows_deleted([[1, 2]]) == 1
        assert tracker.is_row_deleted((1, 2))

    def test_untouched_server_default_columns_are_left_out(self) -> None:
        """Test that server-default columns no new row has set are omitted from inserts."""
        columns = [
            ColumnDescriptor("id", is_primary_key=True),
            ColumnDescriptor("status", default="active", has_server_default=True),
            ColumnDescriptor("created_at", has_server_default=True),
            ColumnDescriptor("updated_at", has_server_default=True),
        ]
        tracker = EditTracker(TARGET, columns)
        a = tracker.add_row()
        b = tracker.add_row()
        tracker.record_cell_change(a, "id", 1)
        tracker.record_cell_change(b, "id", 2)
        tracker.record_cell_change(b, "updated_at", "2024-01-01")

        request = tracker.build_batch_request()

        assert request.inserts == [
            {"id": 1, "status": "active", "updated_at": None},
            {"id": 2, "status": "active", "updated_at": "2024-01-01"},
        ]


class TestDiscardAndReconcile:
    def test_discard_clears_overlay_and_requests_reload(self) -> None:
        """Test that discard restores loaded values and asks for a reload."""
        reloads: list[bool] = []
        tracker = EditTracker(TARGET, COLUMNS, _rows(), on_reload_required=lambda: reloads.append(True))
        tracker.record_cell_change((1,), "name", "x")
        tracker.add_row()
        tracker.mark_rows_deleted([(2,)])

        tracker.discard()

        assert reloads == [True]
        assert not tracker.compute_stats().has_pending_changes
        assert tracker.row((1,))["name"] == "alice"
        assert tracker.origin_of((2,)) is RowOrigin.EXISTING
        assert len(tracker) == 3

    def test_successful_result_clears_overlay(self, tracker: EditTracker) -> None:
        """Test that a successful result clears every pending change."""
        tracker.record_cell_change((1,), "name", "x")
        assert tracker.reconcile(BatchResult.ok(1))
        assert tracker.build_batch_request() is None

    def test_failed_result_keeps_overlay(self, tracker: EditTracker) -> None:
        """Test that a failed result keeps every pending change."""
        tracker.record_cell_change((1,), "name", "x")
        assert not tracker.reconcile(BatchResult.failure(ErrorKind.STATEMENT, "boom"))
        assert tracker.get_row_modification((1,)).changes == {"name": "x"}


class TestReadOnlyTable:
    @pytest.fixture
    def readonly(self) -> EditTracker:
        columns = [ColumnDescriptor("a"), ColumnDescriptor("b")]
        return EditTracker(TARGET, columns, [{"a": 1, "b": 2}, {"a": 1, "b": 2}])

    def test_rows_without_key_are_still_listed(self, readonly: EditTracker) -> None:
        """Test that rows of a keyless table are listed by position."""
        assert not readonly.can_edit
        assert len(readonly.rows()) == 2

    def test_mutations_are_ignored(self, readonly: EditTracker) -> None:
        """Test that every mutation is ignored on a keyless table."""
        assert not readonly.record_cell_change((0,), "a", 5)
        assert readonly.add_row() is None
        assert readonly.mark_rows_deleted([(0,)]) == 0
        assert readonly.build_batch_request() is None


def test_duplicate_primary_key_in_page_is_rejected() -> None:
    """Test that a page with a repeated key raises ValidationError."""
    with pytest.raises(ValidationError, match="Duplicate primary key"):
        EditTracker(TARGET, COLUMNS, [{"id": 1, "name": "a"}, {"id": 1, "name": "b"}])


def test_from_page() -> None:
    """Test building a tracker from a loaded Page."""
    page = Page(columns=COLUMNS, rows=_rows(), total_rows=3)
    tracker = EditTracker.from_page(TARGET, page)
    assert tracker.primary_keys == ["id"]
    assert len(tracker) == 3
