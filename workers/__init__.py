# =============================================================================
# workers/ - Celery Background Task Workers
# =============================================================================
# This package contains the Celery configuration and task definitions for
# background processing: case analysis, PMI recalculation, exports and
# scheduled account deletion.
#
# Components:
# - celery_app.py: Celery application configuration
# - config.py: Queues, routes and the beat schedule
# - tasks.py: Task definitions
# - exporters.py: CSV / labelled image / PDF rendering
#
# Usage:
#   # Start worker
#   celery -A workers.celery_app worker --loglevel=info
#
#   # Submit task (from API)
#   from workers.tasks import run_case_analysis
#   run_case_analysis.delay(case_id)
# =============================================================================

from .celery_app import celery_app
from . import tasks

__all__ = [
    "celery_app",
    "tasks",
]
