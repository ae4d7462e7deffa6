# =============================================================================
# app/routers/dashboard.py - Dashboard Endpoints
# =============================================================================
# Read-only statistics over the user's analysed cases. Every endpoint takes
# optional start_date / end_date query parameters filtering on case_date.
# =============================================================================

from typing import Annotated

from fastapi import APIRouter, Depends

from app.dependencies import DbDep, UserDep
from core.models.dashboard import (
    CaseDataRow,
    ChartPoint,
    ConfidenceBucket,
    DashboardFilter,
    DashboardMetrics,
    StageConfidence,
    VerificationStatus,
)
from core.services.dashboard_service import DashboardService

router = APIRouter()

FilterDep = Annotated[DashboardFilter, Depends()]


@router.get("/metrics", response_model=DashboardMetrics)
async def get_dashboard_metrics(db: DbDep, user: UserDep, window: FilterDep):
    return DashboardMetrics(
        **DashboardService.get_dashboard_metrics(db, user.id, window.start_date, window.end_date)
    )


@router.get("/life-stages", response_model=list[ChartPoint])
async def get_life_stage_distribution(db: DbDep, user: UserDep, window: FilterDep):
    return DashboardService.get_life_stage_distribution(db, user.id, window.start_date, window.end_date)


@router.get("/pmi-distribution", response_model=list[ChartPoint])
async def get_pmi_distribution(db: DbDep, user: UserDep, window: FilterDep):
    return DashboardService.get_pmi_distribution(db, user.id, window.start_date, window.end_date)


@router.get("/sampling-density", response_model=list[ChartPoint])
async def get_sampling_density(db: DbDep, user: UserDep, window: FilterDep):
    return DashboardService.get_sampling_density(db, user.id, window.start_date, window.end_date)


@router.get("/confidence-distribution", response_model=list[ConfidenceBucket])
async def get_confidence_score_distribution(db: DbDep, user: UserDep, window: FilterDep):
    return DashboardService.get_confidence_score_distribution(
        db, user.id, window.start_date, window.end_date
    )


@router.get("/model-performance", response_model=list[StageConfidence])
async def get_model_performance_metrics(db: DbDep, user: UserDep, window: FilterDep):
    return DashboardService.get_model_performance_metrics(db, user.id, window.start_date, window.end_date)


@router.get("/correction-ratio", response_model=list[ChartPoint])
async def get_user_correction_ratio(db: DbDep, user: UserDep, window: FilterDep):
    return DashboardService.get_user_correction_ratio(db, user.id, window.start_date, window.end_date)


@router.get("/verification-status", response_model=VerificationStatus)
async def get_verification_status(db: DbDep, user: UserDep, window: FilterDep):
    return DashboardService.get_verification_status(db, user.id, window.start_date, window.end_date)


@router.get("/cases", response_model=list[CaseDataRow])
async def get_case_data(db: DbDep, user: UserDep, window: FilterDep):
    """Rows for the dashboard case table (cases with detections only)."""
    return DashboardService.get_case_data(db, user.id, window.start_date, window.end_date)
