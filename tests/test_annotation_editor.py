# =============================================================================
# tests/test_annotation_editor.py - Annotation Editor Tests
# =============================================================================
# Unit tests for the editor state container:
# - undo/redo history and its bound
# - selection, modes and display filters
# - pending change calculation against the server baseline
# =============================================================================

import pytest

from core.annotation import MAX_HISTORY, AnnotationEditor, calculate_detection_changes


def detection(id: str, label: str = "instar_1", status: str = "model_generated", **fields) -> dict:
    return {
        "id": id,
        "upload_id": "upload-1",
        "label": label,
        "confidence": fields.pop("confidence", 0.9),
        "x_min": 10.0,
        "y_min": 10.0,
        "x_max": 50.0,
        "y_max": 60.0,
        "status": status,
        **fields,
    }


@pytest.fixture
def editor():
    editor = AnnotationEditor()
    editor.set_detections([detection("a"), detection("b", label="pupa")])
    return editor


# =============================================================================
# History
# =============================================================================

class TestHistory:
    """Tests for undo/redo."""

    def test_update_then_undo_restores_previous_list(self, editor):
        # Arrange
        before = [dict(d) for d in editor.detections]

        # Act
        editor.update_detection("a", {"label": "instar_2"})
        editor.undo()

        # Assert
        assert editor.detections == before
        assert editor.can_redo()

    def test_redo_reapplies_change(self, editor):
        editor.update_detection("a", {"label": "instar_2"})
        editor.undo()

        editor.redo()

        assert editor.detections[0]["label"] == "instar_2"
        assert not editor.can_redo()

    def test_new_edit_clears_redo(self, editor):
        editor.update_detection("a", {"label": "instar_2"})
        editor.undo()

        editor.remove_detection("b")

        assert not editor.can_redo()

    def test_history_is_bounded(self):
        # Arrange
        editor = AnnotationEditor()
        editor.set_detections([detection("a")])

        # Act: one more edit than the history keeps
        for i in range(MAX_HISTORY + 5):
            editor.update_detection("a", {"x_max": 50.0 + i})

        # Assert
        assert len(editor.past) == MAX_HISTORY

    def test_snapshots_are_independent_of_later_edits(self, editor):
        editor.update_detection("a", {"label": "instar_2"})
        editor.detections[0]["label"] = "adult"

        editor.undo()

        assert editor.detections[0]["label"] == "instar_1"

    def test_drag_gesture_is_one_undo_step(self, editor):
        # Arrange
        editor.save_state_before_edit()

        # Act: a drag streams several updates without history
        editor.update_detection_no_history("a", {"x_min": 12.0})
        editor.update_detection_no_history("a", {"x_min": 14.0})
        editor.update_detection_no_history("a", {"x_min": 16.0})
        editor.undo()

        # Assert
        assert editor.detections[0]["x_min"] == 10.0
        assert not editor.can_undo()

    def test_undo_with_empty_history_is_noop(self, editor):
        editor.undo()

        assert len(editor.detections) == 2

    def test_unknown_ids_do_not_record_history(self, editor):
        editor.update_detection("missing", {"label": "pupa"})
        editor.remove_detection("missing")

        assert not editor.can_undo()


# =============================================================================
# Mutations
# =============================================================================

class TestMutations:
    """Tests for add / remove / verify."""

    def test_add_detection_assigns_id_and_selects(self, editor):
        new_id = editor.add_detection({"upload_id": "upload-1", "label": "adult",
                                       "x_min": 1, "y_min": 1, "x_max": 5, "y_max": 5})

        added = editor.detections[-1]
        assert added["id"] == new_id
        assert added["status"] == "user_created"
        assert editor.selected_detection_id == new_id

    def test_added_detection_is_always_user_created(self, editor):
        """A status sent with the new box is replaced."""
        editor.add_detection(detection("ignored", label="pupa", status="user_confirmed"))

        added = editor.detections[-1]
        assert added["status"] == "user_created"
        assert added["id"] != "ignored"

    def test_remove_selected_detection_clears_selection(self, editor):
        editor.select_detection("a", open_panel=True)

        editor.remove_detection("a")

        assert editor.selected_detection_id is None
        assert editor.is_panel_open is False

    def test_verify_all_is_single_step(self, editor):
        editor.verify_all_detections()

        assert {d["status"] for d in editor.detections} == {"user_confirmed"}

        editor.undo()
        assert {d["status"] for d in editor.detections} == {"model_generated"}

    def test_undo_drops_selection_of_vanished_detection(self, editor):
        new_id = editor.add_detection({"upload_id": "upload-1", "label": "adult",
                                       "x_min": 1, "y_min": 1, "x_max": 5, "y_max": 5})

        editor.undo()

        assert editor.selected_detection_id is None
        assert all(d["id"] != new_id for d in editor.detections)


# =============================================================================
# View state
# =============================================================================

class TestViewState:
    """Tests for modes, zoom and filters."""

    def test_draw_mode_turns_off_selection(self, editor):
        editor.select_detection("a")

        editor.set_draw_mode(True)

        assert editor.draw_mode is True
        assert editor.select_mode is False
        assert editor.selected_detection_id is None

    def test_transform_scale_must_be_positive(self, editor):
        with pytest.raises(ValueError):
            editor.set_transform_scale(0)

    def test_unknown_display_filter_rejected(self, editor):
        with pytest.raises(ValueError):
            editor.set_display_filter("everything")

    def test_visible_detections_follow_filter(self, editor):
        editor.update_detection("a", {"status": "user_confirmed"})

        editor.set_display_filter("verified")
        verified = [d["id"] for d in editor.visible_detections()]
        editor.set_display_filter("unverified")
        unverified = [d["id"] for d in editor.visible_detections()]

        assert verified == ["a"]
        assert unverified == ["b"]


# =============================================================================
# Baseline & pending changes
# =============================================================================

class TestPendingChanges:
    """Tests for the diff against the server baseline."""

    def test_no_edits_means_no_changes(self, editor):
        assert not editor.has_changes()
        assert editor.pending_changes("upload-1") == {"added": [], "modified": [], "deleted": []}

    def test_reset_discards_edits(self, editor):
        editor.remove_detection("a")

        editor.reset_detections()

        assert not editor.has_changes()
        assert not editor.can_undo()

    def test_commit_adopts_working_set(self, editor):
        editor.update_detection("a", {"label": "pupa"})

        editor.commit_changes()

        assert not editor.has_changes()
        assert editor.original_detections[0]["label"] == "pupa"

    def test_pending_changes_classifies_edits(self, editor):
        # Arrange
        editor.update_detection("a", {"label": "instar_3"})
        editor.remove_detection("b")
        new_id = editor.add_detection({"upload_id": "upload-1", "label": "adult", "confidence": None,
                                       "x_min": 1, "y_min": 1, "x_max": 5, "y_max": 5})

        # Act
        changes = editor.pending_changes("upload-1")

        # Assert
        assert [m["id"] for m in changes["modified"]] == ["a"]
        assert changes["deleted"] == ["b"]
        assert len(changes["added"]) == 1
        assert new_id not in [m["id"] for m in changes["modified"]]


class TestCalculateDetectionChanges:
    """Tests for the standalone diff function."""

    def test_added_detection_copies_label_into_original(self):
        current = [detection("new", label="pupa", status="user_created", confidence=None)]

        changes = calculate_detection_changes(current, [], "upload-9")

        added = changes["added"][0]
        assert added["upload_id"] == "upload-9"
        assert added["original_label"] == "pupa"
        assert added["original_confidence"] is None
        assert "id" not in added

    def test_status_only_change_is_modified(self):
        original = [detection("a")]
        current = [detection("a", status="user_confirmed")]

        changes = calculate_detection_changes(current, original, "upload-1")

        assert changes["modified"][0]["status"] == "user_confirmed"

    def test_unchanged_detection_is_not_reported(self):
        original = [detection("a")]

        changes = calculate_detection_changes([detection("a")], original, "upload-1")

        assert changes == {"added": [], "modified": [], "deleted": []}
