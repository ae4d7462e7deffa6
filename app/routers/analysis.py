# =============================================================================
# app/routers/analysis.py - Analysis Endpoints
# =============================================================================
# Submit a case for detection + PMI estimation, cancel it, poll its status
# and request a PMI recalculation after corrections.
#
# The heavy lifting runs in Celery (workers/tasks.py); these endpoints only
# update state and queue tasks.
# =============================================================================

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.dependencies import DbDep, UserDep, limit_by_user
from core.models.analysis import AnalysisResultResponse, AnalysisStatusResponse
from core.services.analysis_service import AnalysisService

logger = logging.getLogger(__name__)

router = APIRouter()


class TaskQueuedResponse(BaseModel):
    case_id: str
    task_id: str | None = None
    status: str = "pending"


@router.post(
    "/{case_id}/analysis",
    response_model=TaskQueuedResponse,
    status_code=202,
    dependencies=[Depends(limit_by_user("analysis"))],
)
async def submit_analysis(case_id: str, db: DbDep, user: UserDep):
    """
    Submit a draft case for analysis.

    Poll GET /cases/{id}/analysis/status until it is completed or failed.
    """
    from workers.tasks import run_case_analysis

    AnalysisService.submit_analysis(db, user.id, case_id)
    task = run_case_analysis.delay(case_id)

    logger.info(f"Queued analysis task {task.id} for case {case_id}")
    return TaskQueuedResponse(case_id=case_id, task_id=task.id)


@router.delete("/{case_id}/analysis", status_code=204)
async def cancel_analysis(case_id: str, db: DbDep, user: UserDep):
    """Discard the result and every detection; a running task drops its output."""
    AnalysisService.cancel_analysis(db, user.id, case_id)


@router.get("/{case_id}/analysis/status", response_model=AnalysisStatusResponse)
async def get_analysis_status(case_id: str, db: DbDep, user: UserDep):
    return AnalysisStatusResponse(**AnalysisService.get_analysis_status(db, user.id, case_id))


@router.get("/{case_id}/analysis", response_model=AnalysisResultResponse | None)
async def get_analysis_result(case_id: str, db: DbDep, user: UserDep):
    return AnalysisService.get_analysis_result(db, user.id, case_id)


@router.post(
    "/{case_id}/analysis/recalculate",
    response_model=TaskQueuedResponse,
    status_code=202,
    dependencies=[Depends(limit_by_user("analysis"))],
)
async def recalculate_pmi(case_id: str, db: DbDep, user: UserDep):
    """Recompute the PMI from the current (corrected) detections."""
    from workers.tasks import recalculate_case_pmi

    case = AnalysisService.request_recalculation(db, user.id, case_id)
    task = recalculate_case_pmi.delay(case.id)

    logger.info(f"Queued PMI recalculation task {task.id} for case {case.id}")
    return TaskQueuedResponse(case_id=case.id, task_id=task.id, status="processing")
