# =============================================================================
# app/routers/exports.py - Export Endpoints
# =============================================================================
# Queue case/image exports and poll for the download link.
#
# Export options (including passwords) are handed to the Celery task as
# arguments and never stored.
# =============================================================================

import logging

from fastapi import APIRouter, Depends

from app.dependencies import DbDep, UserDep, limit_by_user
from core.models.export import (
    ExportCreatedResponse,
    ExportStatusResponse,
    ImageExportRequest,
    ResultsExportRequest,
)
from core.services.export_service import ExportService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/cases/{case_id}/exports",
    response_model=ExportCreatedResponse,
    status_code=202,
    dependencies=[Depends(limit_by_user("export"))],
)
async def request_results_export(case_id: str, request: ResultsExportRequest, db: DbDep, user: UserDep):
    """
    Export a whole case as raw data (CSV zip), labelled images or a PDF report.

    Poll GET /exports/{id} for the download URL.
    """
    from workers.tasks import generate_case_export

    export = ExportService.request_results_export(db, user.id, case_id, request)
    generate_case_export.delay(export.id, request.model_dump(mode="json"))
    return ExportCreatedResponse(export_id=export.id)


@router.post(
    "/uploads/{upload_id}/exports",
    response_model=ExportCreatedResponse,
    status_code=202,
    dependencies=[Depends(limit_by_user("export"))],
)
async def request_image_export(upload_id: str, request: ImageExportRequest, db: DbDep, user: UserDep):
    """Export a single image as raw data or a labelled image."""
    from workers.tasks import generate_image_export

    export = ExportService.request_image_export(db, user.id, upload_id, request)
    generate_image_export.delay(export.id, request.model_dump(mode="json"))
    return ExportCreatedResponse(export_id=export.id)


@router.get("/exports", response_model=list[ExportStatusResponse])
async def get_recent_exports(db: DbDep, user: UserDep):
    """Latest exports (failed ones are left out). No download URLs here."""
    return [
        ExportStatusResponse(
            id=e.id,
            status=e.status,
            format=e.format,
            case_id=e.case_id,
            upload_id=e.upload_id,
            failure_reason=e.failure_reason,
            created_at=e.created_at,
            updated_at=e.updated_at,
        )
        for e in ExportService.get_recent_exports(db, user.id)
    ]


@router.get("/exports/{export_id}", response_model=ExportStatusResponse)
async def get_export_status(export_id: str, db: DbDep, user: UserDep):
    return ExportStatusResponse(**ExportService.get_export_status(db, user.id, export_id))
