# =============================================================================
# core/services/__init__.py - Service Layer Exports
# =============================================================================

from .storage_service import StorageService
from .case_service import CaseService
from .upload_service import UploadService
from .detection_service import DetectionService
from .analysis_service import AnalysisService
from .export_service import ExportService
from .dashboard_service import DashboardService
from .account_service import AccountService
from .weather_service import WeatherService

__all__ = [
    "StorageService",
    "CaseService",
    "UploadService",
    "DetectionService",
    "AnalysisService",
    "ExportService",
    "DashboardService",
    "AccountService",
    "WeatherService",
]
