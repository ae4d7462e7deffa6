# =============================================================================
# core/models/dashboard.py - Dashboard Schemas
# =============================================================================

from datetime import datetime, timezone

from pydantic import BaseModel, field_validator


class DashboardFilter(BaseModel):
    """Optional case_date window applied to every dashboard query."""

    start_date: datetime | None = None
    end_date: datetime | None = None

    @field_validator("start_date", "end_date")
    @classmethod
    def as_naive_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value


class DashboardMetrics(BaseModel):
    """Headline numbers for the dashboard cards."""

    verified: int = 0
    total_cases: int = 0
    total_images: int = 0
    verified_images: int = 0
    total_detections_count: int = 0
    verified_detections_count: int = 0
    average_pmi: float = 0.0
    average_confidence: float = 0.0
    correction_rate: float = 0.0


class ChartPoint(BaseModel):
    """One bar/slice in a dashboard chart."""

    name: str
    quantity: float


class ConfidenceBucket(BaseModel):
    name: str
    count: int


class StageConfidence(BaseModel):
    """Average model confidence for a life stage, in percent."""

    name: str
    confidence: float


class VerificationBreakdown(BaseModel):
    verified: int = 0
    unverified: int = 0
    in_progress: int = 0


class DetectionBreakdown(BaseModel):
    verified: int = 0
    unverified: int = 0


class VerificationStatus(BaseModel):
    cases: VerificationBreakdown
    images: VerificationBreakdown
    detections: DetectionBreakdown


class CaseDataRow(BaseModel):
    """Row of the dashboard case table (display-ready strings)."""

    case_id: str
    case_name: str
    case_date: datetime
    location: dict[str, str | None] | None = None
    temperature: str
    pmi_estimation: str
    oldest_stage: str
    image_count: int = 0
    detection_count: int = 0
    average_confidence: str
    verification_status: str
