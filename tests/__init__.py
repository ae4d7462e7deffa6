# =============================================================================
# tests/ - Test Suite
# =============================================================================
# This package contains all tests for the MortiScope API:
# - test_models.py: Unit tests for Pydantic model validation
# - test_*_service.py: Service-layer tests against a per-test SQLite database
# - test_exporters.py / test_tasks.py: Export rendering and Celery tasks
# - test_api.py: Integration tests for API endpoints
#
# Run tests with: pytest
# =============================================================================
