# =============================================================================
# app/main.py - FastAPI Application Entry Point
# =============================================================================
# This is the main entry point for the MortiScope API.
# It configures the FastAPI application with middleware, routers, and handlers.
#
# Usage:
#   uvicorn app.main:app --reload
# =============================================================================

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.exceptions import (
    MortiScopeException,
    mortiscope_exception_handler,
    validation_exception_handler,
)
from app.routers import account, analysis, annotation, cases, dashboard, exports, health, uploads
from app.auth import routes as auth_routes
from lib.database import init_db

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    - Startup: make sure the schema exists
    - Shutdown: log only; connections are pooled per process
    """
    logger.info(f"Starting MortiScope API in {settings.ENVIRONMENT} mode")
    logger.info(f"CORS origins: {settings.cors_origins_list}")

    init_db()

    yield

    logger.info("Shutting down MortiScope API")


# Create FastAPI application
app = FastAPI(
    title="MortiScope API",
    description="""
## Forensic Entomology Case Management API

MortiScope estimates the post-mortem interval (PMI) from images of insect
evidence found on remains.

### How It Works

1. **Create a Case** - Name, date, location and ambient temperature
2. **Upload Images** - Presigned uploads straight to storage
3. **Submit for Analysis** - Life stages are detected and the PMI computed
4. **Review Detections** - Confirm or correct boxes in the annotation editor
5. **Recalculate & Export** - Refresh the PMI and export CSV, images or PDF

### Quick Start

```bash
# 1. Sign in
curl -X POST http://localhost:8000/api/v1/auth/signin \\
  -H "Content-Type: application/json" \\
  -d '{"email": "analyst@forensics.org", "password": "..."}'

# 2. Create a case
curl -X POST http://localhost:8000/api/v1/cases \\
  -H "Authorization: Bearer $TOKEN" -H "Content-Type: application/json" \\
  -d '{"case_name": "Riverside Case 12", "case_date": "2025-03-14T09:30:00",
       "temperature": {"value": 28.5, "unit": "C"}}'

# 3. Submit it once images are uploaded
curl -X POST http://localhost:8000/api/v1/cases/{id}/analysis \\
  -H "Authorization: Bearer $TOKEN"
```
""",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Auth", "description": "Sign-up, sign-in, 2FA challenge and password reset"},
        {"name": "Account", "description": "Profile, sessions, two-factor and account deletion"},
        {"name": "Cases", "description": "Create and manage forensic cases"},
        {"name": "Uploads", "description": "Upload and manage case images"},
        {"name": "Analysis", "description": "Detection, PMI estimation and recalculation"},
        {"name": "Annotation", "description": "Review and correct detections"},
        {"name": "Exports", "description": "Raw data, labelled image and PDF exports"},
        {"name": "Dashboard", "description": "Statistics over analysed cases"},
        {"name": "Health", "description": "API health and readiness checks"},
    ],
)


# =============================================================================
# Middleware
# =============================================================================

# CORS middleware - allows cross-origin requests
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list if settings.is_production else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Retry-After"],
)


# =============================================================================
# Exception Handlers
# =============================================================================

@app.exception_handler(MortiScopeException)
async def handle_mortiscope_exception(request: Request, exc: MortiScopeException):
    """Handle domain exceptions."""
    return await mortiscope_exception_handler(request, exc)


@app.exception_handler(RequestValidationError)
async def handle_validation_exception(request: Request, exc: RequestValidationError):
    return await validation_exception_handler(request, exc)


@app.exception_handler(Exception)
async def handle_general_exception(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.exception(f"Unexpected error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "An unexpected error occurred",
            "code": "INTERNAL_ERROR",
        }
    )


# =============================================================================
# Routers
# =============================================================================

app.include_router(auth_routes.router, prefix="/api/v1/auth", tags=["Auth"])
app.include_router(account.router, prefix="/api/v1/account", tags=["Account"])
app.include_router(cases.router, prefix="/api/v1/cases", tags=["Cases"])
app.include_router(analysis.router, prefix="/api/v1/cases", tags=["Analysis"])
app.include_router(uploads.router, prefix="/api/v1", tags=["Uploads"])
app.include_router(annotation.router, prefix="/api/v1", tags=["Annotation"])
app.include_router(exports.router, prefix="/api/v1", tags=["Exports"])
app.include_router(dashboard.router, prefix="/api/v1/dashboard", tags=["Dashboard"])
app.include_router(health.router, prefix="/api/v1", tags=["Health"])


# =============================================================================
# Root Endpoint
# =============================================================================

@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint - returns API info.
    """
    return {
        "name": "MortiScope API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/v1/health",
    }
