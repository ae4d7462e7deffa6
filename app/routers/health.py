# =============================================================================
# app/routers/health.py - Health Check Endpoints
# =============================================================================
# Liveness for process supervisors, readiness for load balancers (checks the
# database and the storage bucket).
# =============================================================================

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import text

from app.config import settings
from lib.database import session_scope
from lib.orm import utcnow

logger = logging.getLogger(__name__)

router = APIRouter()

API_VERSION = "1.0.0"


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    environment: str
    version: str


class ReadinessResponse(BaseModel):
    status: str
    database: str
    storage: str
    timestamp: str


def _check_database() -> str:
    try:
        with session_scope() as db:
            db.execute(text("SELECT 1"))
        return "healthy"
    except Exception as e:
        logger.warning(f"Database readiness check failed: {e}")
        return f"unhealthy: {str(e)[:50]}"


def _check_storage() -> str:
    from lib.supabase_client import SupabaseClient

    try:
        SupabaseClient.bucket().list(options={"limit": 1})
        return "healthy"
    except Exception as e:
        logger.warning(f"Storage readiness check failed: {e}")
        return f"unhealthy: {str(e)[:50]}"


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """The process is up and serving requests."""
    return HealthResponse(
        status="healthy",
        timestamp=utcnow().isoformat(),
        environment=settings.ENVIRONMENT,
        version=API_VERSION,
    )


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check():
    """
    Whether dependencies are reachable.

    Responds 503 while either check fails so the instance is taken out of
    rotation.
    """
    result = ReadinessResponse(
        status="ready",
        database=_check_database(),
        storage=_check_storage(),
        timestamp=utcnow().isoformat(),
    )
    if result.database != "healthy" or result.storage != "healthy":
        result.status = "degraded"
        return JSONResponse(status_code=503, content=result.model_dump())
    return result
