# =============================================================================
# core/ - Business Logic Package
# =============================================================================
# This package contains the domain logic:
# - models/: Pydantic schemas for request/response validation
# - annotation/: Annotation editor state machine and change diffing
# - services/: Case, upload, detection, analysis, export, dashboard and
#   account operations on top of the ORM (lib/orm.py)
#
# Code in this package should NOT import from FastAPI or Celery.
# Background work is queued by the routers after a service call succeeds.
# =============================================================================
