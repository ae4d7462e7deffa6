# =============================================================================
# core/models/case.py - Case Schemas
# =============================================================================
# These models define the API contract for case operations:
# - CaseCreate / CaseUpdate: form input for the case details step
# - CaseResponse / CaseSummary: output for detail and list views
# - CaseStatus: draft (being assembled) or active (submitted for analysis)
# =============================================================================

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator


class CaseStatus(str, Enum):
    """
    Lifecycle of a case.

    - draft: details and images are being collected
    - active: submitted; analysis results exist or are being produced

    Flow: draft -> active
    """
    DRAFT = "draft"
    ACTIVE = "active"


# Accepted temperature ranges per unit (inclusive)
TEMPERATURE_RANGES: dict[str, tuple[float, float]] = {
    "C": (-50.0, 60.0),
    "F": (-58.0, 140.0),
}


class Temperature(BaseModel):
    """Ambient temperature as entered; stored in °C."""

    value: float = Field(..., description="Temperature reading")
    unit: Literal["C", "F"] = Field(default="C", description="Unit of `value`")

    @model_validator(mode="after")
    def check_range(self) -> "Temperature":
        low, high = TEMPERATURE_RANGES[self.unit]
        if not low <= self.value <= high:
            raise ValueError("Temperature must be within valid range.")
        return self


class Location(BaseModel):
    """
    Philippine address hierarchy.

    All four levels are required together; a case either has a full location
    or none at all.
    """

    region: str = Field(..., min_length=1, max_length=100)
    province: str = Field(..., min_length=1, max_length=100)
    city: str = Field(..., min_length=1, max_length=100)
    barangay: str = Field(..., min_length=1, max_length=100)


def _validate_case_name(value: str) -> str:
    value = value.strip()
    if len(value) < 8:
        raise ValueError("Case name must be at least 8 characters.")
    if len(value) > 256:
        raise ValueError("Case name cannot exceed 256 characters.")
    return value


def _not_in_future(value: datetime) -> datetime:
    now = datetime.now(timezone.utc)
    compare = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if compare > now:
        raise ValueError("Case date cannot be in the future.")
    return value.astimezone(timezone.utc).replace(tzinfo=None) if value.tzinfo else value


class CaseCreate(BaseModel):
    """
    Input for creating a case.

    Example:
        {
            "case_name": "Riverside Case 12",
            "case_date": "2025-03-14T09:30:00",
            "temperature": {"value": 86, "unit": "F"},
            "location": {"region": "Region IV-A", "province": "Laguna",
                         "city": "Calamba", "barangay": "Real"},
            "notes": "Found near the riverbank"
        }
    """

    case_name: str = Field(..., description="Unique (per user) case name")
    case_date: datetime = Field(..., description="Date and time the remains were examined")
    temperature: Temperature
    location: Location | None = None
    notes: str | None = Field(default=None, max_length=5000)

    @field_validator("case_name")
    @classmethod
    def check_name(cls, value: str) -> str:
        return _validate_case_name(value)

    @field_validator("case_date")
    @classmethod
    def check_date(cls, value: datetime) -> datetime:
        return _not_in_future(value)


class CaseUpdate(BaseModel):
    """
    Partial update of case details. Omitted fields are left unchanged.

    Sending `"location": null` explicitly clears the whole location.
    """

    case_name: str | None = None
    case_date: datetime | None = None
    temperature: Temperature | None = None
    location: Location | None = None
    notes: str | None = Field(default=None, max_length=5000)

    @field_validator("case_name")
    @classmethod
    def check_name(cls, value: str | None) -> str | None:
        if value is None:
            return value
        return _validate_case_name(value)

    @field_validator("case_date")
    @classmethod
    def check_date(cls, value: datetime | None) -> datetime | None:
        return _not_in_future(value) if value is not None else value


class CaseRename(BaseModel):
    case_name: str

    @field_validator("case_name")
    @classmethod
    def check_name(cls, value: str) -> str:
        return _validate_case_name(value)


class CaseNoteUpdate(BaseModel):
    notes: str = Field(default="", max_length=5000)


class DeleteCasesRequest(BaseModel):
    """Bulk deletion from the dashboard; re-confirms the user's password."""

    case_ids: list[str] = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class CaseResponse(BaseModel):
    """Full case details."""

    id: str
    case_name: str
    case_date: datetime
    temperature_celsius: float
    location: dict[str, str | None] | None = None
    notes: str | None = None
    status: CaseStatus
    recalculation_needed: bool = False
    created_at: datetime
    updated_at: datetime
    image_count: int = 0
    analysis: dict[str, Any] | None = None


class CaseSummary(BaseModel):
    """Row in the results list."""

    id: str
    case_name: str
    case_date: datetime
    status: CaseStatus
    location: dict[str, str | None] | None = None
    image_count: int = 0
    pmi_hours: float | None = None
    analysis_status: str | None = None
    recalculation_needed: bool = False
    created_at: datetime


class CaseAuditEntry(BaseModel):
    """One changed field in the case history view."""

    id: str
    field: str
    old_value: Any = None
    new_value: Any = None
    batch_id: str
    timestamp: datetime
    user_id: str
