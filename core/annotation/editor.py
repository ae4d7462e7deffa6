# =============================================================================
# core/annotation/editor.py - Annotation Editor State
# =============================================================================
# Working state for reviewing one image's detections:
# - the detection list being edited and the server baseline it came from
# - bounded undo/redo history of detection snapshots
# - selection, draw/select mode, zoom, display filter and lock flags
#
# Every mutating operation pushes a snapshot of the current list onto `past`
# and clears `future`. Snapshots are deep copies, so later edits never leak
# into history.
# =============================================================================

from __future__ import annotations

import copy
import logging
import uuid
from typing import Any, Literal

from core.annotation.changes import calculate_detection_changes
from core.models.detection import DetectionStatus, is_verified

logger = logging.getLogger(__name__)

# Snapshots kept for undo; the oldest is dropped beyond this
MAX_HISTORY = 50

DisplayFilter = Literal["all", "verified", "unverified"]

Detection = dict[str, Any]


class AnnotationEditor:
    """
    Undo/redo-capable container for the detections of one image.

    Detections are plain dicts shaped like DetectionResponse
    (id, upload_id, label, confidence, x_min..y_max, status, ...).

    Example:
        editor = AnnotationEditor()
        editor.set_detections(server_detections)
        editor.update_detection(det_id, {"label": "pupa"})
        editor.undo()
        changes = editor.pending_changes(upload_id)
    """

    def __init__(self, max_history: int = MAX_HISTORY):
        self.max_history = max_history

        self.detections: list[Detection] = []
        self.original_detections: list[Detection] = []
        self.past: list[list[Detection]] = []
        self.future: list[list[Detection]] = []

        self.selected_detection_id: str | None = None
        self.is_panel_open: bool = False
        self.draw_mode: bool = False
        self.select_mode: bool = False
        self.transform_scale: float = 1.0
        self.display_filter: DisplayFilter = "all"
        self.is_locked: bool = False

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    def _push_history(self) -> None:
        """Record the current list before a mutation and invalidate redo."""
        self.past.append(copy.deepcopy(self.detections))
        if len(self.past) > self.max_history:
            self.past.pop(0)
        self.future = []

    def save_state_before_edit(self) -> None:
        """
        Push the current list without changing it.

        Used at the start of a drag/resize that then streams changes through
        update_detection_no_history(), so the whole gesture is one undo step.
        """
        self._push_history()

    def can_undo(self) -> bool:
        return bool(self.past)

    def can_redo(self) -> bool:
        return bool(self.future)

    def undo(self) -> None:
        if not self.past:
            return
        self.future.insert(0, copy.deepcopy(self.detections))
        self.detections = self.past.pop()
        self._drop_stale_selection()

    def redo(self) -> None:
        if not self.future:
            return
        self.past.append(copy.deepcopy(self.detections))
        self.detections = self.future.pop(0)
        self._drop_stale_selection()

    def _drop_stale_selection(self) -> None:
        if self.selected_detection_id and self._find(self.selected_detection_id) is None:
            self.clear_selection()

    # -------------------------------------------------------------------------
    # Baseline
    # -------------------------------------------------------------------------

    def set_detections(self, detections: list[Detection]) -> None:
        """Load detections from the server as both working set and baseline."""
        self.detections = copy.deepcopy(detections)
        self.original_detections = copy.deepcopy(detections)
        self.past = []
        self.future = []

    def reset_detections(self) -> None:
        """Discard every unsaved edit."""
        self.detections = copy.deepcopy(self.original_detections)
        self.past = []
        self.future = []
        self._drop_stale_selection()

    def has_changes(self) -> bool:
        return self.detections != self.original_detections

    def commit_changes(self) -> None:
        """Adopt the working set as the new baseline (after a successful save)."""
        self.original_detections = copy.deepcopy(self.detections)
        self.past = []
        self.future = []

    def pending_changes(self, upload_id: str) -> dict[str, list]:
        """Added / modified / deleted diff against the baseline."""
        return calculate_detection_changes(self.detections, self.original_detections, upload_id)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def _find(self, detection_id: str) -> Detection | None:
        return next((d for d in self.detections if d["id"] == detection_id), None)

    def add_detection(self, data: Detection) -> str:
        """
        Add a user-drawn detection and select it.

        Returns:
            The id assigned to the new detection
        """
        self._push_history()

        detection = copy.deepcopy(data)
        detection["id"] = str(uuid.uuid4())
        detection["status"] = DetectionStatus.USER_CREATED.value
        self.detections.append(detection)

        self.selected_detection_id = detection["id"]
        logger.debug(f"Added detection {detection['id']} ({detection.get('label')})")
        return detection["id"]

    def update_detection(self, detection_id: str, changes: Detection) -> None:
        """Apply changes to one detection as a single undo step."""
        if self._find(detection_id) is None:
            return
        self._push_history()
        self._apply(detection_id, changes)

    def update_detection_no_history(self, detection_id: str, changes: Detection) -> None:
        """Apply changes without recording history (live drag updates)."""
        self._apply(detection_id, changes)

    def _apply(self, detection_id: str, changes: Detection) -> None:
        self.detections = [
            {**d, **changes, "id": d["id"]} if d["id"] == detection_id else d
            for d in self.detections
        ]

    def remove_detection(self, detection_id: str) -> None:
        if self._find(detection_id) is None:
            return
        self._push_history()
        self.detections = [d for d in self.detections if d["id"] != detection_id]

        if self.selected_detection_id == detection_id:
            self.clear_selection()

    def verify_all_detections(self) -> None:
        """Mark every detection user_confirmed in one undo step."""
        self._push_history()
        self.detections = [
            {**d, "status": DetectionStatus.USER_CONFIRMED.value} for d in self.detections
        ]

    # -------------------------------------------------------------------------
    # Selection & view state
    # -------------------------------------------------------------------------

    def select_detection(self, detection_id: str | None, open_panel: bool = False) -> None:
        self.selected_detection_id = detection_id
        if detection_id is not None:
            self.select_mode = True
            self.draw_mode = False
            if open_panel:
                self.is_panel_open = True

    def clear_selection(self) -> None:
        self.selected_detection_id = None
        self.select_mode = False
        self.is_panel_open = False

    def open_panel(self) -> None:
        self.is_panel_open = True

    def set_draw_mode(self, enabled: bool) -> None:
        self.draw_mode = enabled
        if enabled:
            self.select_mode = False
            self.selected_detection_id = None

    def set_select_mode(self, enabled: bool) -> None:
        self.select_mode = enabled
        if enabled:
            self.draw_mode = False

    def set_transform_scale(self, scale: float) -> None:
        if scale <= 0:
            raise ValueError("Transform scale must be positive")
        self.transform_scale = scale

    def set_display_filter(self, display_filter: DisplayFilter) -> None:
        if display_filter not in ("all", "verified", "unverified"):
            raise ValueError(f"Unknown display filter: {display_filter}")
        self.display_filter = display_filter

    def set_is_locked(self, locked: bool) -> None:
        self.is_locked = locked

    def visible_detections(self) -> list[Detection]:
        """Detections passing the current display filter."""
        if self.display_filter == "verified":
            return [d for d in self.detections if is_verified(d.get("status", ""))]
        if self.display_filter == "unverified":
            return [d for d in self.detections if not is_verified(d.get("status", ""))]
        return list(self.detections)
