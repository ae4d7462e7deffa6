# =============================================================================
# app/routers/uploads.py - Image Upload Endpoints
# =============================================================================
# Presigned upload flow and image management. Image bytes go straight to
# storage; these endpoints only hand out URLs and record metadata.
# =============================================================================

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.dependencies import DbDep, UserDep, limit_by_user
from core.models.upload import (
    PresignUploadRequest,
    PresignUploadResponse,
    RenameUploadRequest,
    SaveUploadRequest,
    UpdateUploadRequest,
    UploadResponse,
)
from core.services.upload_service import UploadService

logger = logging.getLogger(__name__)

router = APIRouter()


class ImageUrlResponse(BaseModel):
    url: str


class DeleteImageResponse(BaseModel):
    recalculation_needed: bool


@router.post(
    "/uploads/presign",
    response_model=PresignUploadResponse,
    dependencies=[Depends(limit_by_user("upload"))],
)
async def create_presigned_upload(request: PresignUploadRequest, db: DbDep, user: UserDep):
    """
    Validate the file and return a signed URL to PUT it to.

    Call POST /uploads with the returned key once the PUT succeeds.
    """
    return PresignUploadResponse(**UploadService.create_upload(db, user.id, request))


@router.post(
    "/uploads",
    response_model=UploadResponse,
    status_code=201,
    dependencies=[Depends(limit_by_user("upload"))],
)
async def save_upload(request: SaveUploadRequest, db: DbDep, user: UserDep):
    return UploadService.save_upload(db, user.id, request)


@router.get("/cases/{case_id}/uploads", response_model=list[UploadResponse])
async def list_case_uploads(case_id: str, db: DbDep, user: UserDep):
    return UploadService.get_case_uploads(db, user.id, case_id)


@router.get("/uploads/{upload_id}", response_model=UploadResponse)
async def get_upload(upload_id: str, db: DbDep, user: UserDep):
    return UploadService.get_upload(db, user.id, upload_id)


@router.put("/uploads/{upload_id}", response_model=UploadResponse)
async def update_upload(upload_id: str, request: UpdateUploadRequest, db: DbDep, user: UserDep):
    """Swap in re-uploaded content (e.g. after a crop)."""
    return UploadService.update_upload(db, user.id, upload_id, request)


@router.put("/uploads/{upload_id}/name", response_model=UploadResponse)
async def rename_upload(upload_id: str, request: RenameUploadRequest, db: DbDep, user: UserDep):
    """Rename an image; the original file extension is kept."""
    return UploadService.rename_upload(db, user.id, upload_id, request.new_name)


@router.get("/uploads/{upload_id}/url", response_model=ImageUrlResponse)
async def get_image_url(upload_id: str, db: DbDep, user: UserDep):
    return ImageUrlResponse(url=UploadService.get_image_url(db, user.id, upload_id))


@router.delete("/uploads/{upload_id}", status_code=204)
async def delete_upload(upload_id: str, db: DbDep, user: UserDep):
    """Remove an image while the case is still a draft."""
    UploadService.delete_upload(db, user.id, upload_id)


@router.delete("/images/{upload_id}", response_model=DeleteImageResponse)
async def delete_image(upload_id: str, db: DbDep, user: UserDep):
    """
    Remove an image from an analysed case.

    The last image of a case cannot be deleted.
    """
    needed = UploadService.delete_image(db, user.id, upload_id)
    return DeleteImageResponse(recalculation_needed=needed)
