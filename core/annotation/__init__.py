# =============================================================================
# core/annotation/__init__.py - Annotation Editor
# =============================================================================

from core.annotation.changes import calculate_detection_changes
from core.annotation.editor import MAX_HISTORY, AnnotationEditor

__all__ = ["AnnotationEditor", "MAX_HISTORY", "calculate_detection_changes"]
