# =============================================================================
# app/exceptions.py - Custom Exception Handlers
# =============================================================================
# Centralized exception handling for the API.
# Services raise these; main.py turns them into JSON error responses.
# =============================================================================

from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class MortiScopeException(Exception):
    """
    Base exception for the MortiScope API.

    All custom exceptions inherit from this class.
    Provides structured error responses with actionable suggestions.
    """

    def __init__(
        self,
        message: str,
        code: str = "MORTISCOPE_ERROR",
        status_code: int = 500,
        suggestion: str | None = None,
        details: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.suggestion = suggestion
        self.details = details or {}
        self.headers = headers

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response dict."""
        result = {
            "detail": self.message,
            "code": self.code,
        }
        if self.suggestion:
            result["suggestion"] = self.suggestion
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Auth Exceptions
# =============================================================================

class UnauthorizedError(MortiScopeException):
    """Raised when a request has no valid session."""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(
            message=message,
            code="UNAUTHORIZED",
            status_code=401,
            suggestion="Sign in again to obtain a fresh access token",
            headers={"WWW-Authenticate": "Bearer"},
        )


class InvalidCredentialsError(MortiScopeException):
    """Raised when an email/password pair or a 2FA code does not match."""

    def __init__(self, message: str = "Invalid email or password."):
        super().__init__(
            message=message,
            code="INVALID_CREDENTIALS",
            status_code=401,
        )


class EmailNotVerifiedError(MortiScopeException):
    """Raised when signing in before confirming the email address."""

    def __init__(self):
        super().__init__(
            message="Please verify your email before signing in.",
            code="EMAIL_NOT_VERIFIED",
            status_code=403,
            suggestion="Follow the link in the verification email we sent you",
        )


class InvalidTokenError(MortiScopeException):
    """Raised when a verification/reset/deletion token is unknown or expired."""

    def __init__(self, message: str = "Invalid or expired token."):
        super().__init__(
            message=message,
            code="INVALID_TOKEN",
            status_code=400,
            suggestion="Request a new link and try again",
        )


class EmailInUseError(MortiScopeException):
    """Raised when an email address already belongs to an account."""

    def __init__(self, message: str = "An account with this email already exists."):
        super().__init__(
            message=message,
            code="EMAIL_IN_USE",
            status_code=409,
        )


class TwoFactorError(MortiScopeException):
    """Raised for two-factor setup/verification problems."""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            code="TWO_FACTOR_ERROR",
            status_code=400,
        )


class RateLimitExceededError(MortiScopeException):
    """Raised when a caller exceeds the request budget for an action."""

    def __init__(self, action: str, retry_after: int):
        super().__init__(
            message="Too many requests. Please try again later.",
            code="RATE_LIMITED",
            status_code=429,
            suggestion=f"Wait {retry_after} seconds before retrying",
            details={"action": action, "retry_after": retry_after},
            headers={"Retry-After": str(retry_after)},
        )


# =============================================================================
# Validation Exceptions
# =============================================================================

class InvalidInputError(MortiScopeException):
    """Raised when input passes schema validation but breaks a business rule."""

    def __init__(self, message: str = "Invalid input.", details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            code="INVALID_INPUT",
            status_code=400,
            details=details,
        )


# =============================================================================
# Case Exceptions
# =============================================================================

class CaseNotFoundError(MortiScopeException):
    """Raised when a case doesn't exist or isn't owned by the caller."""

    def __init__(self, case_id: str, message: str = "Case not found or unauthorized."):
        super().__init__(
            message=message,
            code="CASE_NOT_FOUND",
            status_code=404,
            suggestion="Check that the case_id is correct and the case hasn't been deleted",
            details={"case_id": case_id},
        )


class DuplicateCaseNameError(MortiScopeException):
    """Raised when a user already owns a case with the requested name."""

    def __init__(self, case_name: str):
        super().__init__(
            message="A case with this name already exists.",
            code="DUPLICATE_CASE_NAME",
            status_code=409,
            suggestion="Choose a different case name",
            details={"case_name": case_name},
        )


class CaseStateError(MortiScopeException):
    """Raised when an operation is not allowed in the case's current state."""

    def __init__(self, message: str, case_id: str):
        super().__init__(
            message=message,
            code="INVALID_CASE_STATE",
            status_code=400,
            details={"case_id": case_id},
        )


# =============================================================================
# Image / Detection Exceptions
# =============================================================================

class ImageNotFoundError(MortiScopeException):
    """Raised when an upload doesn't exist or isn't reachable by the caller."""

    def __init__(self, upload_id: str, message: str = "Image not found."):
        super().__init__(
            message=message,
            code="IMAGE_NOT_FOUND",
            status_code=404,
            details={"upload_id": upload_id},
        )


class DuplicateFileNameError(MortiScopeException):
    """Raised when renaming an image to a name already used in the case."""

    def __init__(self, name: str):
        super().__init__(
            message="A file with this name already exists.",
            code="DUPLICATE_FILE_NAME",
            status_code=409,
            suggestion="Pick a different file name",
            details={"name": name},
        )


class DetectionSaveError(MortiScopeException):
    """Raised when persisting annotation changes fails unexpectedly."""

    def __init__(self, error: str):
        super().__init__(
            message="Failed to save detections.",
            code="DETECTION_SAVE_FAILED",
            status_code=500,
            suggestion="Try again later or contact support if the issue persists",
            details={"error": error},
        )


class ExportNotFoundError(MortiScopeException):
    """Raised when an export job doesn't exist or isn't owned by the caller."""

    def __init__(self, export_id: str):
        super().__init__(
            message="Export not found.",
            code="EXPORT_NOT_FOUND",
            status_code=404,
            details={"export_id": export_id},
        )


# =============================================================================
# Upload Exceptions
# =============================================================================

class InvalidFileTypeError(MortiScopeException):
    """Raised when uploaded file type is not allowed."""

    def __init__(self, filename: str, allowed: list[str]):
        super().__init__(
            message=f"Invalid file type: {filename}",
            code="INVALID_FILE_TYPE",
            status_code=400,
            suggestion=f"Only these file types are supported: {', '.join(allowed)}",
            details={"filename": filename, "allowed_types": allowed},
        )


class FileTooLargeError(MortiScopeException):
    """Raised when uploaded file exceeds size limit."""

    def __init__(self, size_mb: float, max_mb: int):
        super().__init__(
            message=f"File too large: {size_mb:.1f}MB (max: {max_mb}MB)",
            code="FILE_TOO_LARGE",
            status_code=413,
            suggestion=f"Upload a file smaller than {max_mb}MB",
            details={"size_mb": size_mb, "max_mb": max_mb},
        )


class StorageUploadError(MortiScopeException):
    """Raised when file upload to storage fails."""

    def __init__(self, error: str):
        super().__init__(
            message=f"Failed to upload file to storage: {error}",
            code="STORAGE_UPLOAD_ERROR",
            status_code=500,
            suggestion="Try again later or contact support if the issue persists",
            details={"error": error},
        )


class StorageDownloadError(MortiScopeException):
    """Raised when file download from storage fails."""

    def __init__(self, path: str, error: str):
        super().__init__(
            message=f"Failed to download file from storage: {error}",
            code="STORAGE_DOWNLOAD_ERROR",
            status_code=500,
            suggestion="Try again later or contact support if the issue persists",
            details={"path": path, "error": error},
        )


# =============================================================================
# External Service Exceptions
# =============================================================================

class WeatherServiceError(MortiScopeException):
    """Raised when the weather lookup cannot produce a temperature."""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            code="WEATHER_LOOKUP_FAILED",
            status_code=502,
            suggestion="Enter the temperature manually",
        )


class AnalysisServiceError(MortiScopeException):
    """Raised when the detection/PMI service call fails."""

    def __init__(self, error: str):
        super().__init__(
            message=f"Analysis service error: {error}",
            code="ANALYSIS_SERVICE_ERROR",
            status_code=502,
            details={"error": error},
        )


# =============================================================================
# Exception Handlers
# =============================================================================

async def mortiscope_exception_handler(
    request: Request,
    exc: MortiScopeException
) -> JSONResponse:
    """
    Convert MortiScopeException to JSON response.

    Returns structured error with:
    - detail: Human-readable message
    - code: Machine-readable error code
    - suggestion: How to fix (if available)
    - details: Additional context
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=exc.headers,
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """
    Handle request validation errors.

    Keeps the field-level errors so forms can highlight the offending inputs.
    """
    errors = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ())[1:]),
            "message": error.get("msg", ""),
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content={
            "detail": "Invalid input.",
            "code": "VALIDATION_ERROR",
            "errors": errors,
        }
    )
