# =============================================================================
# core/services/analysis_service.py - Case Analysis Lifecycle
# =============================================================================
# Submitting a case for analysis, cancelling it, and storing what the
# analysis service sends back.
#
# Flow:
#   submit_analysis()      draft -> active, result row "pending"
#   (worker) mark_processing -> store_result | mark_failed
#   request_recalculation() after human corrections
#
# Routers queue the Celery tasks once these calls have committed.
# =============================================================================

import logging
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.exceptions import CaseStateError
from core.models.analysis import NO_DETECTIONS_EXPLANATION, AnalysisStatus
from core.models.case import CaseStatus
from core.models.detection import DetectionStatus
from core.services.case_service import CaseService
from lib.orm import AnalysisResult, Case, Detection, Upload

logger = logging.getLogger(__name__)

_PMI_FIELDS = (
    "pmi_days",
    "pmi_hours",
    "pmi_minutes",
    "stage_used_for_calculation",
    "temperature_provided",
    "calculated_adh",
    "ldt_used",
)


class AnalysisService:
    """Service for analysis submission and result storage."""

    # -------------------------------------------------------------------------
    # API side
    # -------------------------------------------------------------------------

    @staticmethod
    def submit_analysis(db: Session, user_id: str, case_id: str) -> AnalysisResult:
        """
        Submit a draft case for analysis.

        Raises:
            CaseNotFoundError: If the case isn't the user's draft (an active
                case has already been submitted)
            CaseStateError: If the case has no images
        """
        case = CaseService.get_case(db, user_id, case_id, status=CaseStatus.DRAFT)

        if CaseService.count_images(db, case.id) == 0:
            raise CaseStateError("Please upload at least one image before submitting.", case.id)

        case.status = CaseStatus.ACTIVE.value
        case.recalculation_needed = False

        result = case.analysis_result
        if result is None:
            result = AnalysisResult(case_id=case.id)
            case.analysis_result = result
        result.status = AnalysisStatus.PENDING.value
        result.explanation = None

        db.commit()
        logger.info(f"Submitted case {case.id} for analysis")
        return result

    @staticmethod
    def cancel_analysis(db: Session, user_id: str, case_id: str) -> None:
        """
        Drop the analysis result and every detection, and return the case to
        draft so it can be edited and submitted again.

        A worker still running for this case notices the missing result row
        and discards its output.
        """
        case = CaseService.get_case(db, user_id, case_id)

        upload_ids = select(Upload.id).where(Upload.case_id == case.id)
        db.execute(delete(Detection).where(Detection.upload_id.in_(upload_ids)))
        db.execute(delete(AnalysisResult).where(AnalysisResult.case_id == case.id))
        case.status = CaseStatus.DRAFT.value
        case.recalculation_needed = False
        db.commit()
        db.expire(case)

        logger.info(f"Cancelled analysis for case {case.id}")

    @staticmethod
    def get_analysis_status(db: Session, user_id: str, case_id: str) -> dict[str, Any]:
        case = CaseService.get_case(db, user_id, case_id)
        result = case.analysis_result
        return {
            "case_id": case.id,
            "status": result.status if result else None,
            "recalculation_needed": case.recalculation_needed,
        }

    @staticmethod
    def get_analysis_result(db: Session, user_id: str, case_id: str) -> AnalysisResult | None:
        return CaseService.get_case(db, user_id, case_id).analysis_result

    @staticmethod
    def request_recalculation(db: Session, user_id: str, case_id: str) -> Case:
        """
        Check a case can be recalculated; the router queues the task.

        Raises:
            CaseStateError: If the case was never analysed
        """
        case = CaseService.get_case(db, user_id, case_id, status=CaseStatus.ACTIVE)
        if case.analysis_result is None:
            raise CaseStateError("This case has not been analysed yet.", case.id)
        return case

    # -------------------------------------------------------------------------
    # Worker side
    # -------------------------------------------------------------------------

    @staticmethod
    def mark_processing(db: Session, case_id: str) -> bool:
        """
        Returns:
            False if the analysis was cancelled before the worker started
        """
        result = db.get(AnalysisResult, case_id)
        if result is None:
            return False
        result.status = AnalysisStatus.PROCESSING.value
        db.commit()
        return True

    @staticmethod
    def mark_failed(db: Session, case_id: str, reason: str) -> None:
        result = db.get(AnalysisResult, case_id)
        if result is None:
            return
        result.status = AnalysisStatus.FAILED.value
        result.explanation = f"Analysis failed: {reason}"
        db.commit()

    @staticmethod
    def _insert_detections(db: Session, case_id: str, detections: list[dict[str, Any]]) -> int:
        """Store model detections, matching each to an image of this case."""
        rows = db.execute(select(Upload.id, Upload.key).where(Upload.case_id == case_id)).all()
        upload_ids = {row.id for row in rows}
        by_key = {row.key: row.id for row in rows}

        inserted = 0
        for item in detections:
            upload_id = item.get("upload_id")
            if upload_id not in upload_ids:
                upload_id = by_key.get(item.get("image_key"))
            if upload_id is None:
                logger.warning(f"Dropping detection for unknown image in case {case_id}")
                continue

            db.add(Detection(
                upload_id=upload_id,
                label=item["label"],
                original_label=item.get("original_label", item["label"]),
                confidence=item.get("confidence"),
                original_confidence=item.get("original_confidence", item.get("confidence")),
                x_min=item["x_min"],
                y_min=item["y_min"],
                x_max=item["x_max"],
                y_max=item["y_max"],
                status=DetectionStatus.MODEL_GENERATED.value,
            ))
            inserted += 1
        return inserted

    @staticmethod
    def store_result(db: Session, case_id: str, payload: dict[str, Any]) -> bool:
        """
        Persist an analysis service response.

        Args:
            db: Database session
            case_id: The analysed case
            payload: `{aggregated_results, pmi_estimation, explanation, detections?}`

        Returns:
            False if the analysis was cancelled meanwhile (nothing stored)
        """
        result = db.get(AnalysisResult, case_id)
        if result is None:
            logger.info(f"Analysis for case {case_id} was cancelled; discarding result")
            return False

        aggregated = payload.get("aggregated_results") or {}
        total_counts = aggregated.get("total_counts")
        oldest = aggregated.get("oldest_stage_detected")

        if not total_counts or not oldest:
            result.status = AnalysisStatus.COMPLETED.value
            result.total_counts = total_counts or {}
            result.oldest_stage_detected = None
            for field in _PMI_FIELDS:
                setattr(result, field, None)
            result.pmi_source_image_key = None
            result.explanation = NO_DETECTIONS_EXPLANATION
            db.commit()
            logger.info(f"Analysis for case {case_id} found no insect evidence")
            return True

        estimation = payload.get("pmi_estimation") or {}
        result.total_counts = total_counts
        result.oldest_stage_detected = oldest
        result.pmi_source_image_key = estimation.get("source_image_key")
        for field in _PMI_FIELDS:
            setattr(result, field, estimation.get(field))
        result.explanation = payload.get("explanation")
        result.status = AnalysisStatus.COMPLETED.value

        if payload.get("detections"):
            count = AnalysisService._insert_detections(db, case_id, payload["detections"])
            logger.info(f"Stored {count} detection(s) for case {case_id}")

        db.commit()
        logger.info(f"Stored analysis result for case {case_id}")
        return True

    @staticmethod
    def store_recalculation(db: Session, case_id: str, payload: dict[str, Any]) -> bool:
        """
        Persist a recalculated PMI and clear the recalculation flag.

        Returns:
            False if the case or its result no longer exists
        """
        case = db.get(Case, case_id)
        result = db.get(AnalysisResult, case_id)
        if case is None or result is None:
            return False

        aggregated = payload.get("aggregated_results") or payload
        estimation = payload.get("pmi_estimation") or {}

        if "total_counts" in aggregated:
            result.total_counts = aggregated["total_counts"]
        if "oldest_stage_detected" in aggregated:
            result.oldest_stage_detected = aggregated["oldest_stage_detected"]
        if estimation:
            result.pmi_source_image_key = estimation.get("source_image_key")
            for field in _PMI_FIELDS:
                setattr(result, field, estimation.get(field))
        if payload.get("explanation"):
            result.explanation = payload["explanation"]

        result.status = AnalysisStatus.COMPLETED.value
        case.recalculation_needed = False
        db.commit()

        logger.info(f"Stored recalculated PMI for case {case_id}")
        return True
