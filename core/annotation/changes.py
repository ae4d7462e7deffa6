# =============================================================================
# core/annotation/changes.py - Editor Diff
# =============================================================================
# Turns the editor's working set + server baseline into the
# added / modified / deleted payload accepted by save_detections.
# =============================================================================

from typing import Any

COORDINATE_FIELDS = ("x_min", "y_min", "x_max", "y_max")

# Fields whose difference makes a detection "modified"
_COMPARED_FIELDS = ("label", "confidence", *COORDINATE_FIELDS, "status")


def _coordinates(detection: dict[str, Any]) -> dict[str, Any]:
    return {field: detection[field] for field in COORDINATE_FIELDS}


def calculate_detection_changes(
    current: list[dict[str, Any]],
    original: list[dict[str, Any]],
    upload_id: str,
) -> dict[str, list]:
    """
    Diff the current detections against the baseline.

    Args:
        current: Detections as they are in the editor now
        original: Detections as last loaded from / saved to the server
        upload_id: Image the new detections belong to

    Returns:
        {"added": [...], "modified": [...], "deleted": [ids]}

    Example:
        >>> calculate_detection_changes([], [{"id": "a", ...}], "u1")
        {'added': [], 'modified': [], 'deleted': ['a']}
    """
    original_by_id = {d["id"]: d for d in original}
    current_ids = {d["id"] for d in current}

    added = []
    modified = []

    for detection in current:
        baseline = original_by_id.get(detection["id"])

        if baseline is None:
            added.append({
                "upload_id": upload_id,
                "label": detection["label"],
                "original_label": detection["label"],
                "confidence": detection.get("confidence"),
                "original_confidence": detection.get("confidence"),
                **_coordinates(detection),
                "status": detection["status"],
            })
            continue

        if any(detection.get(f) != baseline.get(f) for f in _COMPARED_FIELDS):
            modified.append({
                "id": detection["id"],
                "label": detection["label"],
                "confidence": detection.get("confidence"),
                **_coordinates(detection),
                "status": detection["status"],
            })

    deleted = [d["id"] for d in original if d["id"] not in current_ids]

    return {"added": added, "modified": modified, "deleted": deleted}
