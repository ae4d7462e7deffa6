# =============================================================================
# core/services/export_service.py - Export Jobs
# =============================================================================
# Records export requests and tracks their progress. Rendering happens in
# workers/exporters.py; the options (including any password) travel as task
# arguments and are never written to the database.
# =============================================================================

import logging
from typing import Any

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.exceptions import ExportNotFoundError, ImageNotFoundError
from core.models.export import ExportStatus, is_password_protected
from core.services.case_service import CaseService
from core.services.storage_service import StorageService
from lib.orm import Export, Upload

logger = logging.getLogger(__name__)

RECENT_EXPORTS_LIMIT = 10


class ExportService:
    """Service for export job bookkeeping."""

    @staticmethod
    def _create(
        db: Session,
        user_id: str,
        request: BaseModel,
        case_id: str | None = None,
        upload_id: str | None = None,
    ) -> Export:
        export = Export(
            user_id=user_id,
            case_id=case_id,
            upload_id=upload_id,
            format=request.format,
            status=ExportStatus.PENDING.value,
            password_protected=is_password_protected(request),
        )
        db.add(export)
        db.commit()

        logger.info(f"Queued {export.format} export {export.id} for user {user_id}")
        return export

    @staticmethod
    def request_results_export(db: Session, user_id: str, case_id: str, request: BaseModel) -> Export:
        """
        Record a whole-case export.

        Raises:
            CaseNotFoundError: If the case isn't the user's
        """
        case = CaseService.get_case(
            db, user_id, case_id, message="Case not found or permission denied."
        )
        return ExportService._create(db, user_id, request, case_id=case.id)

    @staticmethod
    def request_image_export(db: Session, user_id: str, upload_id: str, request: BaseModel) -> Export:
        """
        Record a single-image export.

        Raises:
            ImageNotFoundError: If the image isn't the user's
        """
        upload = db.get(Upload, upload_id)
        if (
            upload is None
            or upload.user_id != user_id
            or upload.case is None
            or upload.case.deleted_at is not None
        ):
            raise ImageNotFoundError(upload_id, message="Image not found or permission denied.")

        return ExportService._create(
            db, user_id, request, case_id=upload.case_id, upload_id=upload.id
        )

    @staticmethod
    def get_export(db: Session, user_id: str, export_id: str) -> Export:
        export = db.get(Export, export_id)
        if export is None or export.user_id != user_id:
            raise ExportNotFoundError(export_id)
        return export

    @staticmethod
    def get_export_status(db: Session, user_id: str, export_id: str) -> dict[str, Any]:
        """
        Status of an export; completed exports include a signed download URL.

        Raises:
            ExportNotFoundError: If the export isn't the user's
        """
        export = ExportService.get_export(db, user_id, export_id)

        url = None
        if export.status == ExportStatus.COMPLETED.value and export.storage_key:
            url = StorageService.get_signed_url(export.storage_key)

        return {
            "id": export.id,
            "status": export.status,
            "format": export.format,
            "case_id": export.case_id,
            "upload_id": export.upload_id,
            "failure_reason": export.failure_reason,
            "url": url,
            "created_at": export.created_at,
            "updated_at": export.updated_at,
        }

    @staticmethod
    def get_recent_exports(db: Session, user_id: str, limit: int = RECENT_EXPORTS_LIMIT) -> list[Export]:
        """Latest exports, newest first, failed ones left out."""
        return list(db.scalars(
            select(Export)
            .where(Export.user_id == user_id, Export.status != ExportStatus.FAILED.value)
            .order_by(Export.created_at.desc())
            .limit(limit)
        ))

    # -------------------------------------------------------------------------
    # Worker side
    # -------------------------------------------------------------------------

    @staticmethod
    def mark_processing(db: Session, export_id: str) -> Export | None:
        export = db.get(Export, export_id)
        if export is None:
            return None
        export.status = ExportStatus.PROCESSING.value
        db.commit()
        return export

    @staticmethod
    def mark_completed(db: Session, export_id: str, storage_key: str) -> None:
        export = db.get(Export, export_id)
        if export is None:
            return
        export.status = ExportStatus.COMPLETED.value
        export.storage_key = storage_key
        export.failure_reason = None
        db.commit()
        logger.info(f"Export {export_id} completed: {storage_key}")

    @staticmethod
    def mark_failed(db: Session, export_id: str, reason: str) -> None:
        export = db.get(Export, export_id)
        if export is None:
            return
        export.status = ExportStatus.FAILED.value
        export.failure_reason = reason
        db.commit()
        logger.warning(f"Export {export_id} failed: {reason}")
