# =============================================================================
# tests/test_analysis_service.py - Analysis Lifecycle Tests
# =============================================================================
# Covers the API-side submission, the worker-side result storage and the
# HTTP client for the analysis service (httpx.MockTransport).
# =============================================================================

import httpx
import pytest
from sqlalchemy import select

from app.exceptions import AnalysisServiceError, CaseNotFoundError, CaseStateError
from core.models.analysis import NO_DETECTIONS_EXPLANATION
from core.services.analysis_service import AnalysisService
from lib.analysis_client import MAX_ATTEMPTS, AnalysisClient
from lib.orm import AnalysisResult, Detection


def analysis_payload(**overrides) -> dict:
    payload = {
        "aggregated_results": {
            "total_counts": {"instar_3": 2, "pupa": 1},
            "oldest_stage_detected": "pupa",
        },
        "pmi_estimation": {
            "pmi_days": 2.5,
            "pmi_hours": 60.0,
            "pmi_minutes": 3600.0,
            "stage_used_for_calculation": "pupa",
            "temperature_provided": 28.5,
            "calculated_adh": 1020.0,
            "ldt_used": 10.0,
            "source_image_key": "uploads/u/c/scene-1.jpg",
        },
        "explanation": "Estimated from the oldest pupa.",
    }
    payload.update(overrides)
    return payload


class TestSubmit:
    """Tests for AnalysisService.submit_analysis."""

    def test_draft_becomes_active_with_pending_result(self, db, user, make_case, make_upload):
        # Arrange
        case = make_case(user, status="draft")
        make_upload(case)

        # Act
        result = AnalysisService.submit_analysis(db, user.id, case.id)

        # Assert
        assert case.status == "active"
        assert result.status == "pending"
        assert AnalysisService.get_analysis_status(db, user.id, case.id)["status"] == "pending"

    def test_case_without_images_rejected(self, db, user, make_case):
        case = make_case(user, status="draft")

        with pytest.raises(CaseStateError):
            AnalysisService.submit_analysis(db, user.id, case.id)

        assert case.status == "draft"

    def test_other_users_case(self, db, user, make_user, make_case):
        case = make_case(make_user(email="colleague@forensics.org"), status="draft")

        with pytest.raises(CaseNotFoundError):
            AnalysisService.submit_analysis(db, user.id, case.id)

    def test_already_active_case_rejected(self, db, user, make_case, make_upload, make_detection, make_result):
        """Re-submitting would reset the result and duplicate model detections."""
        # Arrange
        case = make_case(user)
        make_result(case)
        make_detection(make_upload(case))

        # Act
        with pytest.raises(CaseNotFoundError):
            AnalysisService.submit_analysis(db, user.id, case.id)

        # Assert
        assert db.get(AnalysisResult, case.id).status == "completed"
        assert len(db.scalars(select(Detection)).all()) == 1


class TestCancel:
    """Tests for AnalysisService.cancel_analysis."""

    def test_removes_result_and_detections(self, db, user, make_case, make_upload, make_detection, make_result):
        # Arrange
        case = make_case(user)
        make_result(case)
        make_detection(make_upload(case))

        # Act
        AnalysisService.cancel_analysis(db, user.id, case.id)

        # Assert
        assert case.analysis_result is None
        assert case.status == "draft"
        assert db.scalars(select(Detection)).all() == []

    def test_cancelled_case_can_be_resubmitted(self, db, user, make_case, make_upload):
        case = make_case(user, status="draft")
        make_upload(case)
        AnalysisService.submit_analysis(db, user.id, case.id)
        AnalysisService.cancel_analysis(db, user.id, case.id)

        result = AnalysisService.submit_analysis(db, user.id, case.id)

        assert result.status == "pending"
        assert case.status == "active"

    def test_worker_discards_output_after_cancel(self, db, user, make_case, make_upload):
        case = make_case(user, status="draft")
        make_upload(case)
        AnalysisService.submit_analysis(db, user.id, case.id)
        AnalysisService.cancel_analysis(db, user.id, case.id)

        assert AnalysisService.mark_processing(db, case.id) is False
        assert AnalysisService.store_result(db, case.id, analysis_payload()) is False


class TestStoreResult:
    """Tests for storing analysis service responses."""

    def test_stores_estimation(self, db, user, make_case, make_upload, make_result):
        # Arrange
        case = make_case(user)
        make_result(case, status="processing", pmi_hours=None, pmi_minutes=None)

        # Act
        stored = AnalysisService.store_result(db, case.id, analysis_payload())

        # Assert
        result = db.get(AnalysisResult, case.id)
        assert stored is True
        assert result.status == "completed"
        assert result.pmi_hours == 60.0
        assert result.oldest_stage_detected == "pupa"
        assert result.pmi_source_image_key == "uploads/u/c/scene-1.jpg"

    def test_no_detections_gets_fixed_explanation(self, db, user, make_case, make_result):
        case = make_case(user)
        make_result(case, status="processing")

        AnalysisService.store_result(db, case.id, {"aggregated_results": {"total_counts": {}}})

        result = db.get(AnalysisResult, case.id)
        assert result.status == "completed"
        assert result.explanation == NO_DETECTIONS_EXPLANATION
        assert result.pmi_hours is None
        assert result.oldest_stage_detected is None

    def test_detections_matched_by_id_or_key(self, db, user, make_case, make_upload, make_result):
        # Arrange
        case = make_case(user)
        make_result(case, status="processing")
        first = make_upload(case)
        second = make_upload(case)
        box = {"x_min": 1, "y_min": 2, "x_max": 30, "y_max": 40}
        detections = [
            {"upload_id": first.id, "label": "pupa", "confidence": 0.9, **box},
            {"image_key": second.key, "label": "instar_2", "confidence": 0.7, **box},
            {"image_key": "uploads/elsewhere.jpg", "label": "adult", "confidence": 0.6, **box},
        ]

        # Act
        AnalysisService.store_result(db, case.id, analysis_payload(detections=detections))

        # Assert
        stored = {d.upload_id: d for d in db.scalars(select(Detection))}
        assert set(stored) == {first.id, second.id}
        assert stored[second.id].original_label == "instar_2"
        assert stored[second.id].status == "model_generated"

    def test_mark_failed_keeps_reason(self, db, user, make_case, make_result):
        case = make_case(user)
        make_result(case, status="processing")

        AnalysisService.mark_failed(db, case.id, "timeout")

        result = db.get(AnalysisResult, case.id)
        assert result.status == "failed"
        assert "timeout" in result.explanation


class TestRecalculation:
    """Tests for recalculation requests and storage."""

    def test_request_requires_analysed_case(self, db, user, make_case):
        case = make_case(user)

        with pytest.raises(CaseStateError):
            AnalysisService.request_recalculation(db, user.id, case.id)

    def test_store_clears_flag(self, db, user, make_case, make_result):
        # Arrange
        case = make_case(user, recalculation_needed=True)
        make_result(case)

        # Act
        AnalysisService.store_recalculation(db, case.id, {
            "pmi_estimation": {"pmi_hours": 42.0, "pmi_minutes": 2520.0, "pmi_days": 1.75},
            "oldest_stage_detected": "instar_3",
        })

        # Assert
        result = db.get(AnalysisResult, case.id)
        assert case.recalculation_needed is False
        assert result.pmi_hours == 42.0
        assert result.oldest_stage_detected == "instar_3"

    def test_store_for_missing_result(self, db, user, make_case):
        case = make_case(user)

        assert AnalysisService.store_recalculation(db, case.id, {}) is False


class TestAnalysisClient:
    """Tests for the analysis service HTTP client."""

    def test_sends_api_key(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=analysis_payload())

        client = AnalysisClient(
            base_url="https://analysis.test/", api_key="k-123",
            transport=httpx.MockTransport(handler),
        )

        response = client.detect("case-1")

        assert response["aggregated_results"]["oldest_stage_detected"] == "pupa"
        assert seen[0].url == "https://analysis.test/v1/detect"
        assert seen[0].headers["X-Api-Key"] == "k-123"

    def test_retries_then_succeeds(self):
        # Arrange
        calls = []
        sleeps = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(503, text="warming up")
            return httpx.Response(200, json={"pmi_estimation": {}})

        client = AnalysisClient(
            base_url="https://analysis.test", api_key="k",
            sleep=sleeps.append, transport=httpx.MockTransport(handler),
        )

        # Act
        client.recalculate("case-1")

        # Assert
        assert len(calls) == 2
        assert sleeps == [2]

    def test_non_json_body_is_a_service_error(self):
        sleeps = []
        client = AnalysisClient(
            base_url="https://analysis.test", api_key="k", sleep=sleeps.append,
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>gateway</html>")),
        )

        with pytest.raises(AnalysisServiceError) as exc:
            client.detect("case-1")

        assert "invalid response" in exc.value.message
        assert sleeps == []

    def test_gives_up_after_max_attempts(self):
        sleeps = []
        client = AnalysisClient(
            base_url="https://analysis.test", api_key="k", sleep=sleeps.append,
            transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom")),
        )

        with pytest.raises(AnalysisServiceError):
            client.detect("case-1")

        assert sleeps == [2 ** attempt for attempt in range(1, MAX_ATTEMPTS)]
