# =============================================================================
# app/routers/ - API Route Definitions
# =============================================================================
# This package contains FastAPI routers organized by feature:
# - health.py: Liveness and readiness checks
# - account.py: Profile, password, sessions, 2FA and account deletion
# - cases.py: Case CRUD, history, notes and temperature lookup
# - uploads.py: Presigned image uploads and image management
# - analysis.py: Submit/cancel analysis and PMI recalculation
# - annotation.py: Annotation editor load/save
# - exports.py: Case and image exports
# - dashboard.py: Dashboard statistics
#
# Each router is mounted in main.py with a URL prefix.
# =============================================================================

from . import health
from . import account
from . import cases
from . import uploads
from . import analysis
from . import annotation
from . import exports
from . import dashboard

__all__ = [
    "health",
    "account",
    "cases",
    "uploads",
    "analysis",
    "annotation",
    "exports",
    "dashboard",
]
