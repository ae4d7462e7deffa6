# =============================================================================
# core/models/analysis.py - Analysis Result Schemas
# =============================================================================

from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class AnalysisStatus(str, Enum):
    """
    Progress of the detection + PMI computation for a case.

    Flow: pending -> processing -> completed | failed
    """
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


NO_DETECTIONS_EXPLANATION = (
    "Analysis complete. No insect evidence was detected in the provided images."
)


class AnalysisResultResponse(BaseModel):
    case_id: str
    status: AnalysisStatus
    total_counts: dict[str, int] | None = None
    oldest_stage_detected: str | None = None
    pmi_source_image_key: str | None = None
    pmi_days: float | None = None
    pmi_hours: float | None = None
    pmi_minutes: float | None = None
    stage_used_for_calculation: str | None = None
    temperature_provided: float | None = None
    calculated_adh: float | None = None
    ldt_used: float | None = None
    explanation: str | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class AnalysisStatusResponse(BaseModel):
    case_id: str
    status: AnalysisStatus | None = None
    recalculation_needed: bool = False
