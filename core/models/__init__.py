# =============================================================================
# core/models/ - Pydantic Data Models
# =============================================================================
# This package contains Pydantic schemas for data validation:
# - case.py: Case CRUD schemas, temperature and location
# - upload.py: Presigned upload flow schemas
# - detection.py: Life stages, detection statuses, annotation save payloads
# - analysis.py: Analysis result schemas
# - export.py: Export request/response schemas
# - dashboard.py: Dashboard metrics and chart schemas
# - account.py: Auth forms, password policy, sessions and profile
#
# These models define the "contract" between API and clients.
# =============================================================================

# -----------------------------------------------------------------------------
# Case Models
# -----------------------------------------------------------------------------
from .case import (
    CaseAuditEntry,
    CaseCreate,
    CaseNoteUpdate,
    CaseRename,
    CaseResponse,
    CaseStatus,
    CaseSummary,
    CaseUpdate,
    DeleteCasesRequest,
    Location,
    Temperature,
)

# -----------------------------------------------------------------------------
# Upload Models
# -----------------------------------------------------------------------------
from .upload import (
    PresignUploadRequest,
    PresignUploadResponse,
    RenameUploadRequest,
    SaveUploadRequest,
    UpdateUploadRequest,
    UploadResponse,
)

# -----------------------------------------------------------------------------
# Detection Models
# -----------------------------------------------------------------------------
from .detection import (
    LIFE_STAGE_ORDER,
    STAGE_HIERARCHY,
    VERIFIED_STATUSES,
    AddedDetection,
    BoundingBox,
    DetectionChanges,
    DetectionResponse,
    DetectionStatus,
    LifeStage,
    ModifiedDetection,
    SaveDetectionsRequest,
    is_verified,
)

# -----------------------------------------------------------------------------
# Analysis Models
# -----------------------------------------------------------------------------
from .analysis import (
    NO_DETECTIONS_EXPLANATION,
    AnalysisResultResponse,
    AnalysisStatus,
    AnalysisStatusResponse,
)

# -----------------------------------------------------------------------------
# Export Models
# -----------------------------------------------------------------------------
from .export import (
    ExportCreatedResponse,
    ExportFormat,
    ExportStatus,
    ExportStatusResponse,
    ImageExportRequest,
    LabelledImagesExportRequest,
    PasswordProtection,
    PdfExportRequest,
    PdfPermissions,
    RawDataExportRequest,
    ResultsExportRequest,
    validate_password_protection,
)

# -----------------------------------------------------------------------------
# Dashboard Models
# -----------------------------------------------------------------------------
from .dashboard import (
    CaseDataRow,
    ChartPoint,
    ConfidenceBucket,
    DashboardFilter,
    DashboardMetrics,
    DetectionBreakdown,
    StageConfidence,
    VerificationBreakdown,
    VerificationStatus,
)

# -----------------------------------------------------------------------------
# Account Models
# -----------------------------------------------------------------------------
from .account import (
    AuthTokenResponse,
    ChangePasswordRequest,
    EmailChangeRequest,
    ForgotPasswordRequest,
    PasswordConfirmation,
    ProfileResponse,
    ProfileUpdateRequest,
    RecoveryCodesResponse,
    RecoveryCodeStatus,
    RecoverySignInRequest,
    ResetPasswordRequest,
    SessionResponse,
    SignInRequest,
    SignUpRequest,
    TokenRequest,
    TwoFactorCodeRequest,
    TwoFactorSetupResponse,
    TwoFactorSignInRequest,
    validate_new_password,
)

__all__ = [
    # Case
    "CaseAuditEntry",
    "CaseCreate",
    "CaseNoteUpdate",
    "CaseRename",
    "CaseResponse",
    "CaseStatus",
    "CaseSummary",
    "CaseUpdate",
    "DeleteCasesRequest",
    "Location",
    "Temperature",
    # Upload
    "PresignUploadRequest",
    "PresignUploadResponse",
    "RenameUploadRequest",
    "SaveUploadRequest",
    "UpdateUploadRequest",
    "UploadResponse",
    # Detection
    "LIFE_STAGE_ORDER",
    "STAGE_HIERARCHY",
    "VERIFIED_STATUSES",
    "AddedDetection",
    "BoundingBox",
    "DetectionChanges",
    "DetectionResponse",
    "DetectionStatus",
    "LifeStage",
    "ModifiedDetection",
    "SaveDetectionsRequest",
    "is_verified",
    # Analysis
    "NO_DETECTIONS_EXPLANATION",
    "AnalysisResultResponse",
    "AnalysisStatus",
    "AnalysisStatusResponse",
    # Export
    "ExportCreatedResponse",
    "ExportFormat",
    "ExportStatus",
    "ExportStatusResponse",
    "ImageExportRequest",
    "LabelledImagesExportRequest",
    "PasswordProtection",
    "PdfExportRequest",
    "PdfPermissions",
    "RawDataExportRequest",
    "ResultsExportRequest",
    "validate_password_protection",
    # Dashboard
    "CaseDataRow",
    "ChartPoint",
    "ConfidenceBucket",
    "DashboardFilter",
    "DashboardMetrics",
    "DetectionBreakdown",
    "StageConfidence",
    "VerificationBreakdown",
    "VerificationStatus",
    # Account
    "AuthTokenResponse",
    "ChangePasswordRequest",
    "EmailChangeRequest",
    "ForgotPasswordRequest",
    "PasswordConfirmation",
    "ProfileResponse",
    "ProfileUpdateRequest",
    "RecoveryCodesResponse",
    "RecoveryCodeStatus",
    "RecoverySignInRequest",
    "ResetPasswordRequest",
    "SessionResponse",
    "SignInRequest",
    "SignUpRequest",
    "TokenRequest",
    "TwoFactorCodeRequest",
    "TwoFactorSetupResponse",
    "TwoFactorSignInRequest",
    "validate_new_password",
]
