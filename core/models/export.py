# =============================================================================
# core/models/export.py - Export Request Schemas
# =============================================================================
# Export jobs render case results into downloadable files:
# - raw_data:        zip of CSV tables (optionally AES-encrypted)
# - labelled_images: zip of images with boxes drawn at a chosen resolution
# - pdf:             case report with optional password/permission security
# =============================================================================

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, model_validator

MIN_EXPORT_PASSWORD_LENGTH = 8


class ExportFormat(str, Enum):
    RAW_DATA = "raw_data"
    LABELLED_IMAGES = "labelled_images"
    PDF = "pdf"


class ExportStatus(str, Enum):
    """Flow: pending -> processing -> completed | failed"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


Resolution = Literal["1280x720", "1920x1080", "3840x2160"]
PageSize = Literal["a4", "letter", "legal"]
SecurityLevel = Literal["standard", "view_protected", "permissions_protected"]


def validate_password_protection(enabled: bool, password: str | None) -> bool:
    """Protection off always passes; on requires a password of at least 8 chars."""
    if not enabled:
        return True
    return bool(password) and len(password) >= MIN_EXPORT_PASSWORD_LENGTH


def parse_resolution(resolution: str) -> tuple[int, int]:
    """"1920x1080" -> (1920, 1080)"""
    width, height = resolution.split("x")
    return int(width), int(height)


class PasswordProtection(BaseModel):
    enabled: bool = False
    password: str | None = None

    @model_validator(mode="after")
    def check_password(self) -> "PasswordProtection":
        if not validate_password_protection(self.enabled, self.password):
            raise ValueError(
                f"Password must be at least {MIN_EXPORT_PASSWORD_LENGTH} characters."
            )
        return self


class PdfPermissions(BaseModel):
    """What a reader may do with a permissions-protected PDF."""

    printing: bool = True
    copying: bool = True
    annotations: bool = True
    form_filling: bool = True
    assembly: bool = True
    extraction: bool = True
    page_rotation: bool = True
    degraded_printing: bool = True
    screen_reader: bool = True
    metadata_modification: bool = True


# =============================================================================
# Case (results) exports
# =============================================================================

class RawDataExportRequest(BaseModel):
    format: Literal["raw_data"]
    password_protection: PasswordProtection = Field(default_factory=PasswordProtection)

    @property
    def password(self) -> str | None:
        return self.password_protection.password if self.password_protection.enabled else None


class LabelledImagesExportRequest(BaseModel):
    format: Literal["labelled_images"]
    resolution: Resolution
    password_protection: PasswordProtection = Field(default_factory=PasswordProtection)

    @property
    def password(self) -> str | None:
        return self.password_protection.password if self.password_protection.enabled else None


class PdfExportRequest(BaseModel):
    format: Literal["pdf"]
    page_size: PageSize = "a4"
    security_level: SecurityLevel = "standard"
    password: str | None = None
    permissions: PdfPermissions = Field(default_factory=PdfPermissions)
    include_images: bool = True

    @model_validator(mode="after")
    def check_security(self) -> "PdfExportRequest":
        if self.security_level != "standard" and not validate_password_protection(True, self.password):
            raise ValueError(
                f"A password of at least {MIN_EXPORT_PASSWORD_LENGTH} characters is "
                f"required for {self.security_level} PDFs."
            )
        return self


ResultsExportRequest = Annotated[
    Union[RawDataExportRequest, LabelledImagesExportRequest, PdfExportRequest],
    Field(discriminator="format"),
]

# Single images support the two archive formats only
ImageExportRequest = Annotated[
    Union[RawDataExportRequest, LabelledImagesExportRequest],
    Field(discriminator="format"),
]


def is_password_protected(request: BaseModel) -> bool:
    if isinstance(request, PdfExportRequest):
        return request.security_level != "standard" and bool(request.password)
    return request.password_protection.enabled


# =============================================================================
# Responses
# =============================================================================

class ExportCreatedResponse(BaseModel):
    export_id: str


class ExportStatusResponse(BaseModel):
    id: str
    status: ExportStatus
    format: ExportFormat
    case_id: str | None = None
    upload_id: str | None = None
    failure_reason: str | None = None
    url: str | None = None
    created_at: datetime
    updated_at: datetime
