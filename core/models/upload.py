# =============================================================================
# core/models/upload.py - Upload / Image Schemas
# =============================================================================
# Request and response shapes for the presigned image upload flow:
#   1. POST /uploads/presign  -> signed URL + object key
#   2. client PUTs the bytes to the signed URL
#   3. POST /uploads          -> record the upload row
# =============================================================================

from datetime import datetime

from pydantic import BaseModel, Field


class PresignUploadRequest(BaseModel):
    """Metadata for the file the client is about to upload."""

    case_id: str = Field(..., min_length=1)
    file_name: str = Field(..., min_length=1, max_length=255)
    file_type: str = Field(..., examples=["image/jpeg"])
    file_size: int = Field(..., gt=0, description="Size in bytes")


class PresignUploadResponse(BaseModel):
    url: str
    key: str
    token: str = ""


class SaveUploadRequest(BaseModel):
    """Sent once the client finished the PUT to storage."""

    case_id: str = Field(..., min_length=1)
    key: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=255)
    size: int = Field(..., gt=0)
    type: str
    width: int = Field(default=0, ge=0)
    height: int = Field(default=0, ge=0)


class UpdateUploadRequest(BaseModel):
    """Replace an image's content after re-upload (e.g. crop/rotate)."""

    key: str = Field(..., min_length=1)
    size: int = Field(..., gt=0)
    type: str
    width: int = Field(default=0, ge=0)
    height: int = Field(default=0, ge=0)


class RenameUploadRequest(BaseModel):
    new_name: str = Field(..., min_length=1, max_length=255)


class UploadResponse(BaseModel):
    id: str
    key: str
    name: str
    url: str
    size: int
    type: str
    width: int
    height: int
    case_id: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}
