# =============================================================================
# app/routers/annotation.py - Annotation Editor Endpoints
# =============================================================================
# Loads an image with its detections for the editor and saves the editor's
# added / modified / deleted diff.
# =============================================================================

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.dependencies import DbDep, UserDep, limit_by_user
from core.models.detection import DetectionResponse, SaveDetectionsRequest
from core.models.upload import UploadResponse
from core.services.case_service import CaseService
from core.services.detection_service import DetectionService

router = APIRouter()


class EditorImageResponse(BaseModel):
    """An image plus what the editor needs to navigate its case."""

    upload: UploadResponse
    detections: list[DetectionResponse]
    case_id: str
    case_name: str
    case_status: str
    image_ids: list[str]


class SaveDetectionsResponse(BaseModel):
    detections: list[DetectionResponse]
    recalculation_needed: bool


@router.get("/cases/{case_id}/detections", response_model=list[DetectionResponse])
async def get_case_detections(case_id: str, db: DbDep, user: UserDep):
    return DetectionService.get_case_detections(db, user.id, case_id)


@router.get("/annotation/{upload_id}", response_model=EditorImageResponse)
async def get_editor_image(upload_id: str, db: DbDep, user: UserDep):
    data = DetectionService.get_editor_image(db, user.id, upload_id)
    return EditorImageResponse(
        upload=UploadResponse.model_validate(data["upload"]),
        detections=[DetectionResponse.model_validate(d) for d in data["detections"]],
        case_id=data["case_id"],
        case_name=data["case_name"],
        case_status=data["case_status"],
        image_ids=data["image_ids"],
    )


@router.post(
    "/annotation/{upload_id}/detections",
    response_model=SaveDetectionsResponse,
    dependencies=[Depends(limit_by_user("save_detections"))],
)
async def save_detections(upload_id: str, request: SaveDetectionsRequest, db: DbDep, user: UserDep):
    """
    Persist the editor's changes in a single transaction.

    Returns the image's detections after the save and whether the case's PMI
    now needs recalculation.
    """
    detections = DetectionService.save_detections(
        db, user.id, upload_id, request.case_id, request.changes
    )
    case = CaseService.get_case(db, user.id, request.case_id)
    return SaveDetectionsResponse(
        detections=[DetectionResponse.model_validate(d) for d in detections],
        recalculation_needed=case.recalculation_needed,
    )
