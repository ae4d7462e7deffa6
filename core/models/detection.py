# =============================================================================
# core/models/detection.py - Detection Schemas
# =============================================================================
# Life stages, detection review statuses and the payloads exchanged by the
# annotation editor:
# - DetectionChanges: added / modified / deleted diff sent on save
# - DetectionResponse: a detection as returned to the editor
# =============================================================================

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, model_validator


class LifeStage(str, Enum):
    """
    Developmental stages of necrophagous flies, youngest first.

    The PMI estimate is anchored on the oldest immature stage found, so adults
    never count as "oldest".
    """
    INSTAR_1 = "instar_1"
    INSTAR_2 = "instar_2"
    INSTAR_3 = "instar_3"
    PUPA = "pupa"
    ADULT = "adult"


# Canonical display order
LIFE_STAGE_ORDER: list[str] = [stage.value for stage in LifeStage]

# Higher = older; unknown labels rank 0
STAGE_HIERARCHY: dict[str, int] = {
    LifeStage.INSTAR_1.value: 1,
    LifeStage.INSTAR_2.value: 2,
    LifeStage.INSTAR_3.value: 3,
    LifeStage.PUPA.value: 4,
}


class DetectionStatus(str, Enum):
    """
    Review state of a detection.

    - model_generated: produced by the detector, untouched
    - user_created: drawn by an annotator
    - user_confirmed: model output accepted as-is
    - user_edited: label or box changed, not yet confirmed
    - user_edited_confirmed: changed and confirmed
    """
    MODEL_GENERATED = "model_generated"
    USER_CREATED = "user_created"
    USER_CONFIRMED = "user_confirmed"
    USER_EDITED = "user_edited"
    USER_EDITED_CONFIRMED = "user_edited_confirmed"


VERIFIED_STATUSES = frozenset({
    DetectionStatus.USER_CONFIRMED.value,
    DetectionStatus.USER_EDITED_CONFIRMED.value,
})


def is_verified(status: str) -> bool:
    return status in VERIFIED_STATUSES


# =============================================================================
# Payloads
# =============================================================================

class BoundingBox(BaseModel):
    """Pixel coordinates of a box in the original image."""

    x_min: float = Field(..., ge=0)
    y_min: float = Field(..., ge=0)
    x_max: float = Field(..., ge=0)
    y_max: float = Field(..., ge=0)

    @model_validator(mode="after")
    def check_ordering(self) -> "BoundingBox":
        if self.x_max < self.x_min or self.y_max < self.y_min:
            raise ValueError("Box max coordinates must not be smaller than min coordinates")
        return self


class AddedDetection(BoundingBox):
    """A detection created in the editor (not yet persisted)."""

    upload_id: str
    label: LifeStage
    original_label: LifeStage | None = None
    confidence: float | None = Field(default=None, ge=0)
    original_confidence: float | None = Field(default=None, ge=0)
    status: DetectionStatus = DetectionStatus.USER_CREATED


class ModifiedDetection(BoundingBox):
    """New values for an existing detection."""

    id: str
    label: LifeStage
    confidence: float | None = Field(default=None, ge=0)
    status: DetectionStatus


class DetectionChanges(BaseModel):
    """
    Diff between the editor's working set and the server baseline.

    Example:
        {
            "added": [{"upload_id": "...", "label": "pupa", "x_min": 10, ...}],
            "modified": [{"id": "...", "label": "instar_3", "status": "user_confirmed", ...}],
            "deleted": ["..."]
        }
    """

    added: list[AddedDetection] = Field(default_factory=list)
    modified: list[ModifiedDetection] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.modified or self.deleted)


class SaveDetectionsRequest(BaseModel):
    """Body of POST /annotation/{upload_id}/detections."""

    case_id: str = Field(..., min_length=1)
    changes: DetectionChanges


class DetectionResponse(BaseModel):
    """A persisted detection."""

    id: str
    upload_id: str
    label: str
    original_label: str
    confidence: float | None = None
    original_confidence: float | None = None
    x_min: float
    y_min: float
    x_max: float
    y_max: float
    status: str
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}
