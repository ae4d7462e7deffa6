# =============================================================================
# tests/test_export_service.py - Export Job Tests
# =============================================================================

import pytest
from pydantic import TypeAdapter, ValidationError

from app.exceptions import CaseNotFoundError, ExportNotFoundError, ImageNotFoundError
from core.models.export import (
    LabelledImagesExportRequest,
    PdfExportRequest,
    RawDataExportRequest,
    ResultsExportRequest,
)
from core.services.export_service import ExportService
from lib.orm import Export


class TestExportRequests:
    """Tests for export request validation."""

    def test_discriminated_by_format(self):
        adapter = TypeAdapter(ResultsExportRequest)

        request = adapter.validate_python({"format": "labelled_images", "resolution": "1920x1080"})

        assert isinstance(request, LabelledImagesExportRequest)

    def test_short_zip_password_rejected(self):
        with pytest.raises(ValidationError):
            RawDataExportRequest(
                format="raw_data", password_protection={"enabled": True, "password": "short"}
            )

    def test_disabled_protection_ignores_password(self):
        request = RawDataExportRequest(
            format="raw_data", password_protection={"enabled": False, "password": "x"}
        )

        assert request.password is None

    def test_secured_pdf_needs_password(self):
        with pytest.raises(ValidationError):
            PdfExportRequest(format="pdf", security_level="view_protected")

    def test_unknown_resolution_rejected(self):
        with pytest.raises(ValidationError):
            LabelledImagesExportRequest(format="labelled_images", resolution="800x600")


class TestRequestExport:
    """Tests for recording exports."""

    def test_results_export_is_pending(self, db, user, make_case):
        # Arrange
        case = make_case(user)
        request = RawDataExportRequest(
            format="raw_data",
            password_protection={"enabled": True, "password": "case-password"},
        )

        # Act
        export = ExportService.request_results_export(db, user.id, case.id, request)

        # Assert
        assert export.status == "pending"
        assert export.format == "raw_data"
        assert export.password_protected is True
        assert export.upload_id is None

    def test_results_export_for_foreign_case(self, db, user, make_user, make_case):
        case = make_case(make_user(email="colleague@forensics.org"))

        with pytest.raises(CaseNotFoundError):
            ExportService.request_results_export(
                db, user.id, case.id, RawDataExportRequest(format="raw_data")
            )

    def test_image_export_records_case_and_upload(self, db, user, make_case, make_upload):
        upload = make_upload(make_case(user))
        request = LabelledImagesExportRequest(format="labelled_images", resolution="1280x720")

        export = ExportService.request_image_export(db, user.id, upload.id, request)

        assert export.upload_id == upload.id
        assert export.case_id == upload.case_id
        assert export.password_protected is False

    def test_image_export_for_missing_image(self, db, user):
        with pytest.raises(ImageNotFoundError):
            ExportService.request_image_export(
                db, user.id, "missing", RawDataExportRequest(format="raw_data")
            )


class TestExportStatus:
    """Tests for status lookups and the worker-side transitions."""

    def test_url_only_when_completed(self, db, user, make_case):
        # Arrange
        export = ExportService.request_results_export(
            db, user.id, make_case(user).id, RawDataExportRequest(format="raw_data")
        )

        # Act
        ExportService.mark_processing(db, export.id)
        processing = ExportService.get_export_status(db, user.id, export.id)
        ExportService.mark_completed(db, export.id, "exports/u/e/case.zip")
        completed = ExportService.get_export_status(db, user.id, export.id)

        # Assert
        assert processing["status"] == "processing"
        assert processing["url"] is None
        assert completed["status"] == "completed"
        assert completed["url"] == "https://storage.test/signed/exports/u/e/case.zip"

    def test_failed_export_keeps_reason(self, db, user, make_case):
        export = ExportService.request_results_export(
            db, user.id, make_case(user).id, RawDataExportRequest(format="raw_data")
        )

        ExportService.mark_failed(db, export.id, "Image could not be read")

        status = ExportService.get_export_status(db, user.id, export.id)
        assert status["status"] == "failed"
        assert status["failure_reason"] == "Image could not be read"

    def test_other_users_export_not_found(self, db, user, make_user, make_case):
        export = ExportService.request_results_export(
            db, user.id, make_case(user).id, RawDataExportRequest(format="raw_data")
        )
        other = make_user(email="colleague@forensics.org")

        with pytest.raises(ExportNotFoundError):
            ExportService.get_export_status(db, other.id, export.id)

    def test_mark_processing_missing_export(self, db):
        assert ExportService.mark_processing(db, "missing") is None

    def test_recent_exports_skip_failed(self, db, user, make_case):
        # Arrange
        case = make_case(user)
        kept = ExportService.request_results_export(
            db, user.id, case.id, RawDataExportRequest(format="raw_data")
        )
        failed = ExportService.request_results_export(
            db, user.id, case.id, PdfExportRequest(format="pdf")
        )
        ExportService.mark_failed(db, failed.id, "boom")

        # Act
        recent = ExportService.get_recent_exports(db, user.id)

        # Assert
        assert [e.id for e in recent] == [kept.id]

    def test_recent_exports_limited(self, db, user, make_case):
        case = make_case(user)
        for _ in range(12):
            db.add(Export(user_id=user.id, case_id=case.id, format="raw_data"))
        db.commit()

        assert len(ExportService.get_recent_exports(db, user.id)) == 10
