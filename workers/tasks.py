# =============================================================================
# workers/tasks.py - Celery Task Definitions
# =============================================================================
# Background work queued by the API:
# - run_case_analysis: detection + PMI estimation for a submitted case
# - recalculate_case_pmi: PMI from human-corrected detections
# - generate_case_export / generate_image_export: render and upload exports
# - purge_due_account_deletions / delete_account: scheduled account removal
#
# Database access is kept to short session_scope() blocks; HTTP calls and
# rendering happen outside them.
# =============================================================================

import logging
from typing import Any

from celery import shared_task

from app.exceptions import AnalysisServiceError
from core.services.account_service import AccountService
from core.services.analysis_service import AnalysisService
from core.services.export_service import ExportService
from core.services.storage_service import StorageService
from lib.analysis_client import AnalysisClient
from lib.database import session_scope
from lib.mailer import Mailer
from workers.exporters import load_case_snapshot, render_export

logger = logging.getLogger(__name__)


# =============================================================================
# Analysis
# =============================================================================

@shared_task(bind=True, name="workers.tasks.run_case_analysis")
def run_case_analysis(self, case_id: str) -> dict[str, Any]:
    """
    Run detection and PMI estimation for a case.

    The analysis client retries with backoff itself; a final failure marks the
    result `failed`. If the user cancels while the call is in flight the
    response is discarded.

    Returns:
        Dict with `case_id` and `status` (completed / failed / cancelled)
    """
    with session_scope() as db:
        if not AnalysisService.mark_processing(db, case_id):
            logger.info(f"Analysis for case {case_id} was cancelled before it started")
            return {"case_id": case_id, "status": "cancelled"}

    try:
        payload = AnalysisClient().detect(case_id)
    except AnalysisServiceError as e:
        logger.error(f"Analysis failed for case {case_id}: {e.message}")
        with session_scope() as db:
            AnalysisService.mark_failed(db, case_id, e.message)
        return {"case_id": case_id, "status": "failed", "error": e.message}

    try:
        with session_scope() as db:
            stored = AnalysisService.store_result(db, case_id, payload)
    except Exception as e:
        reason = f"invalid analysis response ({type(e).__name__}: {e})"
        logger.exception(f"Could not store analysis result for case {case_id}: {reason}")
        with session_scope() as db:
            AnalysisService.mark_failed(db, case_id, reason)
        return {"case_id": case_id, "status": "failed", "error": reason}

    return {"case_id": case_id, "status": "completed" if stored else "cancelled"}


@shared_task(bind=True, name="workers.tasks.recalculate_case_pmi")
def recalculate_case_pmi(self, case_id: str) -> dict[str, Any]:
    """
    Recompute the PMI after detections were corrected.

    On failure the case keeps `recalculation_needed` so the user can retry.
    """
    try:
        payload = AnalysisClient().recalculate(case_id)
    except AnalysisServiceError as e:
        logger.error(f"PMI recalculation failed for case {case_id}: {e.message}")
        return {"case_id": case_id, "status": "failed", "error": e.message}

    try:
        with session_scope() as db:
            stored = AnalysisService.store_recalculation(db, case_id, payload)
    except Exception as e:
        logger.exception(f"Could not store recalculated PMI for case {case_id}: {e}")
        return {"case_id": case_id, "status": "failed", "error": f"{type(e).__name__}: {e}"}

    return {"case_id": case_id, "status": "completed" if stored else "skipped"}


# =============================================================================
# Exports
# =============================================================================

def _run_export(export_id: str, options: dict[str, Any]) -> dict[str, Any]:
    with session_scope() as db:
        export = ExportService.mark_processing(db, export_id)
        if export is None:
            logger.warning(f"Export {export_id} no longer exists")
            return {"export_id": export_id, "status": "missing"}
        user_id = export.user_id
        snapshot = load_case_snapshot(db, export.case_id, export.upload_id)

    try:
        rendered = render_export(snapshot, options, StorageService.download_bytes)
        key = f"exports/{user_id}/{export_id}/{rendered.filename}"
        StorageService.upload_bytes(key, rendered.content, rendered.content_type)
    except Exception as e:
        logger.exception(f"Export {export_id} failed: {e}")
        with session_scope() as db:
            ExportService.mark_failed(db, export_id, str(e))
        return {"export_id": export_id, "status": "failed", "error": str(e)}

    with session_scope() as db:
        ExportService.mark_completed(db, export_id, key)

    return {"export_id": export_id, "status": "completed", "key": key}


@shared_task(bind=True, name="workers.tasks.generate_case_export")
def generate_case_export(self, export_id: str, options: dict[str, Any]) -> dict[str, Any]:
    """
    Render a whole-case export and upload it.

    Args:
        export_id: The Export row to fill in
        options: The export request as sent to the API (may include a password)
    """
    return _run_export(export_id, options)


@shared_task(bind=True, name="workers.tasks.generate_image_export")
def generate_image_export(self, export_id: str, options: dict[str, Any]) -> dict[str, Any]:
    """Render a single-image export (the Export row names the image)."""
    return _run_export(export_id, options)


# =============================================================================
# Account deletion
# =============================================================================

@shared_task(bind=True, name="workers.tasks.delete_account")
def delete_account(self, user_id: str) -> dict[str, Any]:
    """Permanently remove one account whose grace period has ended."""
    with session_scope() as db:
        deleted = AccountService.delete_account(db, user_id)

    if deleted is None:
        return {"user_id": user_id, "status": "skipped"}

    email, keys = deleted
    StorageService.delete_files(keys)
    Mailer.send_goodbye_email(email)
    return {"user_id": user_id, "status": "deleted"}


@shared_task(bind=True, name="workers.tasks.purge_due_account_deletions")
def purge_due_account_deletions(self) -> dict[str, Any]:
    """Periodic: queue deletion of every account past its grace period."""
    with session_scope() as db:
        user_ids = AccountService.get_due_deletions(db)

    for user_id in user_ids:
        delete_account.delay(user_id)

    if user_ids:
        logger.info(f"Queued deletion of {len(user_ids)} account(s)")
    return {"queued": len(user_ids)}
