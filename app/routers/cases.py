# =============================================================================
# app/routers/cases.py - Case Endpoints
# =============================================================================
# Case creation and details, the results list, audit history, notes,
# deletion and the historical-temperature helper for the case form.
# =============================================================================

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from app.dependencies import DbDep, UserDep, limit_by_user
from core.models.case import (
    CaseAuditEntry,
    CaseCreate,
    CaseNoteUpdate,
    CaseRename,
    CaseResponse,
    CaseSummary,
    CaseUpdate,
    DeleteCasesRequest,
)
from core.services.case_service import CaseService
from core.services.weather_service import WeatherService
from lib.orm import Case

router = APIRouter()


class CaseUpdateResponse(BaseModel):
    case: CaseResponse
    recalculation_triggered: bool = False


class DeleteCasesResponse(BaseModel):
    deleted: int


class TemperatureResponse(BaseModel):
    value: float
    unit: str


def case_response(db, case: Case) -> CaseResponse:
    result = case.analysis_result
    analysis = None
    if result is not None:
        analysis = {
            "status": result.status,
            "oldest_stage_detected": result.oldest_stage_detected,
            "pmi_days": result.pmi_days,
            "pmi_hours": result.pmi_hours,
            "pmi_minutes": result.pmi_minutes,
            "explanation": result.explanation,
        }

    return CaseResponse(
        id=case.id,
        case_name=case.case_name,
        case_date=case.case_date,
        temperature_celsius=case.temperature_celsius,
        location=case.location,
        notes=case.notes,
        status=case.status,
        recalculation_needed=case.recalculation_needed,
        created_at=case.created_at,
        updated_at=case.updated_at,
        image_count=CaseService.count_images(db, case.id),
        analysis=analysis,
    )


def case_summary(db, case: Case) -> CaseSummary:
    result = case.analysis_result
    return CaseSummary(
        id=case.id,
        case_name=case.case_name,
        case_date=case.case_date,
        status=case.status,
        location=case.location,
        image_count=CaseService.count_images(db, case.id),
        pmi_hours=result.pmi_hours if result else None,
        analysis_status=result.status if result else None,
        recalculation_needed=case.recalculation_needed,
        created_at=case.created_at,
    )


# =============================================================================
# Endpoints
# =============================================================================

@router.post(
    "",
    response_model=CaseResponse,
    status_code=201,
    dependencies=[Depends(limit_by_user("create_case"))],
)
async def create_case(request: CaseCreate, db: DbDep, user: UserDep):
    """
    Create a draft case.

    Images are attached with the upload endpoints; POST /cases/{id}/analysis
    submits it.
    """
    return case_response(db, CaseService.create_case(db, user.id, request))


@router.get("", response_model=list[CaseSummary])
async def list_cases(db: DbDep, user: UserDep):
    """Submitted cases, newest first."""
    return [case_summary(db, case) for case in CaseService.list_cases(db, user.id)]


@router.get("/draft", response_model=CaseResponse | None)
async def get_draft_case(db: DbDep, user: UserDep):
    """The draft currently being assembled, so the wizard can resume."""
    case = CaseService.get_draft_case(db, user.id)
    return case_response(db, case) if case else None


@router.get("/weather", response_model=TemperatureResponse, dependencies=[Depends(limit_by_user("weather"))])
async def get_historical_temperature(
    city: Annotated[str, Query(min_length=1, description="City name to geocode")],
    date: Annotated[datetime, Query(description="Date and time of the reading")],
    user: UserDep,
):
    """Hourly temperature nearest to the given time (Open-Meteo archive)."""
    return TemperatureResponse(**WeatherService().get_case_temperature(city, date))


@router.post("/delete", response_model=DeleteCasesResponse)
async def delete_selected_cases(request: DeleteCasesRequest, db: DbDep, user: UserDep):
    """Bulk delete from the dashboard; requires the current password."""
    deleted = CaseService.delete_selected_cases(db, user.id, request.case_ids, request.password)
    return DeleteCasesResponse(deleted=deleted)


@router.get("/{case_id}", response_model=CaseResponse)
async def get_case(case_id: str, db: DbDep, user: UserDep):
    return case_response(db, CaseService.get_case(db, user.id, case_id))


@router.patch(
    "/{case_id}",
    response_model=CaseUpdateResponse,
    dependencies=[Depends(limit_by_user("update_case"))],
)
async def update_case(case_id: str, request: CaseUpdate, db: DbDep, user: UserDep):
    """
    Update case details.

    `recalculation_triggered` is true when a temperature change means the PMI
    must be recalculated.
    """
    case, triggered = CaseService.update_case(db, user.id, case_id, request)
    return CaseUpdateResponse(case=case_response(db, case), recalculation_triggered=triggered)


@router.put("/{case_id}/name", response_model=CaseResponse)
async def rename_case(case_id: str, request: CaseRename, db: DbDep, user: UserDep):
    return case_response(db, CaseService.rename_case(db, user.id, case_id, request.case_name))


@router.put("/{case_id}/notes", response_model=CaseResponse)
async def update_case_note(case_id: str, request: CaseNoteUpdate, db: DbDep, user: UserDep):
    return case_response(db, CaseService.update_case_note(db, user.id, case_id, request.notes))


@router.get("/{case_id}/history", response_model=list[CaseAuditEntry])
async def get_case_history(case_id: str, db: DbDep, user: UserDep):
    """Field-level change log, newest first."""
    return [
        CaseAuditEntry(
            id=entry.id,
            field=entry.field,
            old_value=entry.old_value,
            new_value=entry.new_value,
            batch_id=entry.batch_id,
            timestamp=entry.timestamp,
            user_id=entry.user_id,
        )
        for entry in CaseService.get_case_history(db, user.id, case_id)
    ]


@router.delete("/{case_id}", status_code=204)
async def delete_case(case_id: str, db: DbDep, user: UserDep):
    CaseService.delete_case(db, user.id, case_id)
