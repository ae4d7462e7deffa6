# =============================================================================
# tests/test_detection_service.py - Detection Persistence Tests
# =============================================================================

import pytest

from app.exceptions import CaseNotFoundError, ImageNotFoundError
from core.models.detection import DetectionChanges
from core.services.detection_service import (
    DetectionService,
    oldest_stage,
    resolve_modified_status,
)
from lib.orm import Detection


class TestOldestStage:
    """Tests for the oldest immature stage helper."""

    def test_pupa_beats_instars(self):
        assert oldest_stage(["instar_1", "pupa", "instar_3"]) == "pupa"

    def test_adults_are_ignored(self):
        assert oldest_stage(["adult", "instar_2"]) == "instar_2"

    def test_only_adults_gives_none(self):
        assert oldest_stage(["adult", "adult"]) is None

    def test_empty_gives_none(self):
        assert oldest_stage([]) is None


class TestResolveModifiedStatus:
    """Tests for the status stored on modified detections."""

    @pytest.mark.parametrize(
        "was_edited, client_status, expected",
        [
            (True, "user_confirmed", "user_edited_confirmed"),
            (True, "model_generated", "user_edited"),
            (False, "user_confirmed", "user_confirmed"),
            (False, "model_generated", "user_edited"),
        ],
    )
    def test_status_matrix(self, was_edited, client_status, expected):
        assert resolve_modified_status(was_edited, client_status) == expected


class TestSaveDetections:
    """Tests for DetectionService.save_detections."""

    @pytest.fixture
    def setup(self, user, make_case, make_upload, make_detection, make_result):
        case = make_case(user)
        make_result(case, stage_used_for_calculation="instar_3")
        upload = make_upload(case)
        first = make_detection(upload, label="instar_3", confidence=0.85)
        second = make_detection(upload, label="instar_2", confidence=0.7)
        return case, upload, first, second

    def test_confirm_without_edit(self, db, user, setup):
        # Arrange
        case, upload, first, _ = setup
        changes = DetectionChanges(modified=[{
            "id": first.id, "label": "instar_3", "confidence": 0.85,
            "x_min": first.x_min, "y_min": first.y_min,
            "x_max": first.x_max, "y_max": first.y_max,
            "status": "user_confirmed",
        }])

        # Act
        DetectionService.save_detections(db, user.id, upload.id, case.id, changes)

        # Assert
        db.refresh(first)
        assert first.status == "user_confirmed"
        assert first.last_modified_by_id == user.id
        assert case.recalculation_needed is False

    def test_relabel_and_confirm(self, db, user, setup):
        case, upload, first, _ = setup
        changes = DetectionChanges(modified=[{
            "id": first.id, "label": "pupa", "confidence": 0.85,
            "x_min": first.x_min, "y_min": first.y_min,
            "x_max": first.x_max, "y_max": first.y_max,
            "status": "user_confirmed",
        }])

        DetectionService.save_detections(db, user.id, upload.id, case.id, changes)

        db.refresh(first)
        assert first.status == "user_edited_confirmed"
        assert first.label == "pupa"
        assert first.original_label == "instar_3"

    def test_new_oldest_stage_flags_recalculation(self, db, user, setup):
        # Arrange: add a pupa, older than the instar_3 the PMI used
        case, upload, _, _ = setup
        changes = DetectionChanges(added=[{
            "upload_id": upload.id, "label": "pupa",
            "x_min": 1, "y_min": 1, "x_max": 40, "y_max": 40,
        }])

        # Act
        DetectionService.save_detections(db, user.id, upload.id, case.id, changes)

        # Assert
        db.refresh(case)
        assert case.recalculation_needed is True

    def test_added_detection_defaults(self, db, user, setup):
        case, upload, _, _ = setup
        changes = DetectionChanges(added=[{
            "upload_id": upload.id, "label": "adult",
            "x_min": 1, "y_min": 1, "x_max": 40, "y_max": 40,
        }])

        saved = DetectionService.save_detections(db, user.id, upload.id, case.id, changes)

        added = [d for d in saved if d.label == "adult"][0]
        assert added.status == "user_created"
        assert added.original_label == "adult"
        assert added.created_by_id == user.id

    def test_delete_is_soft(self, db, user, setup):
        # Arrange
        case, upload, _, second = setup

        # Act
        saved = DetectionService.save_detections(
            db, user.id, upload.id, case.id, DetectionChanges(deleted=[second.id])
        )

        # Assert
        assert second.id not in [d.id for d in saved]
        row = db.get(Detection, second.id)
        db.refresh(row)
        assert row.deleted_at is not None

    def test_removing_oldest_stage_flags_recalculation(self, db, user, setup):
        case, upload, first, _ = setup

        DetectionService.save_detections(
            db, user.id, upload.id, case.id, DetectionChanges(deleted=[first.id])
        )

        db.refresh(case)
        assert case.recalculation_needed is True

    def test_modifying_deleted_detection_is_ignored(self, db, user, setup):
        """A stale editor cannot revive or relabel a soft-deleted box."""
        # Arrange
        case, upload, _, second = setup
        DetectionService.save_detections(
            db, user.id, upload.id, case.id, DetectionChanges(deleted=[second.id])
        )
        changes = DetectionChanges(modified=[{
            "id": second.id, "label": "pupa", "confidence": 0.7,
            "x_min": second.x_min, "y_min": second.y_min,
            "x_max": second.x_max, "y_max": second.y_max,
            "status": "user_confirmed",
        }])

        # Act
        saved = DetectionService.save_detections(db, user.id, upload.id, case.id, changes)

        # Assert
        row = db.get(Detection, second.id)
        db.refresh(row)
        assert second.id not in [d.id for d in saved]
        assert row.label == "instar_2"
        assert row.status == "model_generated"
        assert row.deleted_at is not None

    def test_case_without_result_always_flags(self, db, user, make_case, make_upload, make_detection):
        # Arrange: only adults, so there is no immature stage at all
        case = make_case(user)
        upload = make_upload(case)
        adult = make_detection(upload, label="adult")
        changes = DetectionChanges(modified=[{
            "id": adult.id, "label": "adult", "confidence": adult.confidence,
            "x_min": adult.x_min, "y_min": adult.y_min,
            "x_max": adult.x_max, "y_max": adult.y_max,
            "status": "user_confirmed",
        }])

        # Act
        DetectionService.save_detections(db, user.id, upload.id, case.id, changes)

        # Assert
        db.refresh(case)
        assert case.recalculation_needed is True

    def test_unchanged_stage_returns_false(self, db, user, setup):
        case, _, _, _ = setup

        assert DetectionService.update_recalculation_flag(db, case) is False
        assert case.recalculation_needed is False

    def test_draft_case_rejected(self, db, user, make_case, make_upload):
        case = make_case(user, case_name="Draft Case Alpha", status="draft")
        upload = make_upload(case)

        with pytest.raises(CaseNotFoundError):
            DetectionService.save_detections(db, user.id, upload.id, case.id, DetectionChanges())

    def test_image_from_other_case_rejected(self, db, user, setup, make_case, make_upload):
        case, _, _, _ = setup
        other = make_upload(make_case(user, case_name="Hillside Case 07"))

        with pytest.raises(ImageNotFoundError):
            DetectionService.save_detections(db, user.id, other.id, case.id, DetectionChanges())

    def test_other_users_case_rejected(self, db, setup, make_user):
        case, upload, _, _ = setup
        intruder = make_user(email="intruder@forensics.org")

        with pytest.raises(CaseNotFoundError):
            DetectionService.save_detections(db, intruder.id, upload.id, case.id, DetectionChanges())


class TestEditorImage:
    """Tests for DetectionService.get_editor_image."""

    def test_returns_siblings_and_active_detections(self, db, user, make_case, make_upload, make_detection):
        # Arrange
        case = make_case(user)
        first = make_upload(case)
        second = make_upload(case)
        make_detection(first, label="pupa")
        make_detection(first, label="adult", deleted_at=first.created_at)

        # Act
        data = DetectionService.get_editor_image(db, user.id, first.id)

        # Assert
        assert data["case_id"] == case.id
        assert data["image_ids"] == [first.id, second.id]
        assert [d.label for d in data["detections"]] == ["pupa"]

    def test_deleted_case_hides_image(self, db, user, make_case, make_upload):
        case = make_case(user, deleted_at=None)
        upload = make_upload(case)
        case.deleted_at = upload.created_at
        db.commit()

        with pytest.raises(ImageNotFoundError):
            DetectionService.get_editor_image(db, user.id, upload.id)
