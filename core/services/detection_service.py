# =============================================================================
# core/services/detection_service.py - Detection Persistence
# =============================================================================
# Applies the annotation editor's diff to the database and keeps the case's
# "needs PMI recalculation" flag in sync with the oldest life stage found.
#
# Edits are last-write-wins; there is no versioning of detections.
# =============================================================================

import logging
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.exceptions import (
    DetectionSaveError,
    ImageNotFoundError,
    MortiScopeException,
)
from core.models.case import CaseStatus
from core.models.detection import (
    STAGE_HIERARCHY,
    DetectionChanges,
    DetectionStatus,
)
from core.services.case_service import CaseService
from lib.orm import Case, Detection, Upload, utcnow

logger = logging.getLogger(__name__)

_COORDINATES = ("x_min", "y_min", "x_max", "y_max")


def oldest_stage(labels: list[str]) -> str | None:
    """
    Oldest immature life stage among the labels.

    Adults and unknown labels are never "oldest".

    Example:
        >>> oldest_stage(["instar_1", "adult", "instar_3"])
        'instar_3'
    """
    best: str | None = None
    best_rank = 0
    for label in labels:
        rank = STAGE_HIERARCHY.get(label, 0)
        if rank > best_rank:
            best, best_rank = label, rank
    return best


def resolve_modified_status(was_edited: bool, client_status: str) -> str:
    """
    Status stored for a modified detection.

    edited + confirmed   -> user_edited_confirmed
    edited               -> user_edited
    unchanged + confirmed -> user_confirmed
    unchanged            -> user_edited
    """
    confirmed = client_status == DetectionStatus.USER_CONFIRMED.value
    if was_edited:
        return (
            DetectionStatus.USER_EDITED_CONFIRMED.value if confirmed
            else DetectionStatus.USER_EDITED.value
        )
    return DetectionStatus.USER_CONFIRMED.value if confirmed else DetectionStatus.USER_EDITED.value


class DetectionService:
    """Service for reading and saving detections."""

    @staticmethod
    def _active_detections(db: Session, upload_id: str) -> list[Detection]:
        return list(db.scalars(
            select(Detection)
            .where(Detection.upload_id == upload_id, Detection.deleted_at.is_(None))
            .order_by(Detection.created_at)
        ))

    @staticmethod
    def get_case_detections(db: Session, user_id: str, case_id: str) -> list[Detection]:
        """Non-deleted detections across every image of a case."""
        CaseService.get_case(db, user_id, case_id)
        return list(db.scalars(
            select(Detection)
            .join(Upload, Detection.upload_id == Upload.id)
            .where(Upload.case_id == case_id, Detection.deleted_at.is_(None))
            .order_by(Upload.created_at, Detection.created_at)
        ))

    @staticmethod
    def get_editor_image(db: Session, user_id: str, upload_id: str) -> dict[str, Any]:
        """
        Everything the annotation editor needs for one image.

        Returns:
            Dict with `upload`, `detections`, `case_id`, `case_name`,
            `case_status` and sibling `image_ids` (for next/previous)

        Raises:
            ImageNotFoundError: If the image isn't in one of the user's cases
        """
        upload = db.get(Upload, upload_id)
        if upload is None or upload.case_id is None or upload.user_id != user_id:
            raise ImageNotFoundError(upload_id)

        case = upload.case
        if case is None or case.deleted_at is not None:
            raise ImageNotFoundError(upload_id)

        return {
            "upload": upload,
            "detections": DetectionService._active_detections(db, upload_id),
            "case_id": case.id,
            "case_name": case.case_name,
            "case_status": case.status,
            "image_ids": [u.id for u in case.uploads],
        }

    @staticmethod
    def update_recalculation_flag(db: Session, case: Case) -> bool:
        """
        Flag the case when the oldest stage no longer matches the PMI basis.

        A case without an analysis result has no PMI basis, so any save flags it.

        Returns:
            True if the oldest stage differs from the one the PMI was computed from
        """
        labels = db.scalars(
            select(Detection.label)
            .join(Upload, Detection.upload_id == Upload.id)
            .where(Upload.case_id == case.id, Detection.deleted_at.is_(None))
        ).all()
        current = oldest_stage(list(labels))

        result = case.analysis_result
        used = result.stage_used_for_calculation if result else None
        changed = result is None or current != used
        if changed:
            case.recalculation_needed = True
            logger.info(f"Case {case.id} needs recalculation (oldest stage {used} -> {current})")
        return changed

    @staticmethod
    def save_detections(
        db: Session,
        user_id: str,
        upload_id: str,
        case_id: str,
        changes: DetectionChanges,
    ) -> list[Detection]:
        """
        Apply added / modified / deleted detections in one transaction.

        Args:
            db: Database session
            user_id: The annotator
            upload_id: Image being edited
            case_id: Case the image must belong to
            changes: Diff produced by the editor

        Returns:
            The image's non-deleted detections after the save

        Raises:
            CaseNotFoundError: If the case isn't the user's active case
            ImageNotFoundError: If the image isn't part of the case
            DetectionSaveError: On any unexpected failure
        """
        case = CaseService.get_case(db, user_id, case_id, status=CaseStatus.ACTIVE)

        upload = db.get(Upload, upload_id)
        if upload is None or upload.case_id != case.id:
            raise ImageNotFoundError(upload_id)

        try:
            now = utcnow()

            if changes.deleted:
                db.execute(
                    update(Detection)
                    .where(
                        Detection.id.in_(changes.deleted),
                        Detection.upload_id == upload_id,
                        Detection.deleted_at.is_(None),
                    )
                    .values(deleted_at=now, last_modified_by_id=user_id, updated_at=now)
                )

            for added in changes.added:
                db.add(Detection(
                    upload_id=upload_id,
                    label=added.label.value,
                    original_label=(added.original_label or added.label).value,
                    confidence=added.confidence,
                    original_confidence=(
                        added.original_confidence
                        if added.original_confidence is not None
                        else added.confidence
                    ),
                    x_min=added.x_min,
                    y_min=added.y_min,
                    x_max=added.x_max,
                    y_max=added.y_max,
                    status=added.status.value,
                    created_by_id=user_id,
                    last_modified_by_id=None,
                ))

            if changes.modified:
                existing = {
                    d.id: d
                    for d in db.scalars(
                        select(Detection).where(
                            Detection.id.in_([m.id for m in changes.modified]),
                            Detection.upload_id == upload_id,
                            Detection.deleted_at.is_(None),
                        )
                    )
                }
                for modified in changes.modified:
                    detection = existing.get(modified.id)
                    if detection is None:
                        logger.warning(f"Skipping unknown detection {modified.id} on upload {upload_id}")
                        continue

                    was_edited = detection.label != modified.label.value or any(
                        getattr(detection, c) != getattr(modified, c) for c in _COORDINATES
                    )

                    detection.label = modified.label.value
                    detection.confidence = modified.confidence
                    for c in _COORDINATES:
                        setattr(detection, c, getattr(modified, c))
                    detection.status = resolve_modified_status(was_edited, modified.status.value)
                    detection.last_modified_by_id = user_id

            db.flush()
            DetectionService.update_recalculation_flag(db, case)
            db.commit()

        except MortiScopeException:
            db.rollback()
            raise
        except Exception as e:
            db.rollback()
            logger.exception(f"Failed to save detections for upload {upload_id}: {e}")
            raise DetectionSaveError(str(e))

        logger.info(
            f"Saved detections for upload {upload_id}: "
            f"+{len(changes.added)} ~{len(changes.modified)} -{len(changes.deleted)}"
        )
        return DetectionService._active_detections(db, upload_id)
