# =============================================================================
# tests/test_exporters.py - Export Rendering Tests
# =============================================================================
# Renders real zip / image / PDF bytes from an in-memory case snapshot.
# =============================================================================

import io
from datetime import datetime

import pandas as pd
import pytest
import pyzipper
from fpdf.enums import AccessPermission
from PIL import Image

from workers.exporters import (
    CaseSnapshot,
    ExportImage,
    build_zip,
    fit_to_resolution,
    load_case_snapshot,
    pdf_permissions,
    render_export,
    render_labelled_image,
    slugify,
)

IMAGE_KEY = "uploads/u1/c1/scene.jpg"


def image_bytes(size=(400, 300), format="JPEG") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, (200, 200, 200)).save(buffer, format=format)
    return buffer.getvalue()


def fetch(key: str) -> bytes:
    return image_bytes()


@pytest.fixture
def snapshot():
    detection = {
        "id": "d1", "upload_id": "up1", "label": "pupa", "original_label": "instar_3",
        "confidence": 0.91, "original_confidence": 0.88,
        "x_min": 20.0, "y_min": 30.0, "x_max": 120.0, "y_max": 130.0,
        "status": "user_edited_confirmed",
        "created_at": datetime(2025, 3, 14, 10, 0), "updated_at": datetime(2025, 3, 14, 11, 0),
    }
    return CaseSnapshot(
        case={
            "id": "c1",
            "case_name": "Riverside Case #12",
            "case_date": datetime(2025, 3, 14, 9, 30),
            "temperature_celsius": 28.5,
            "location": {"region": "Region IV-A", "province": "Laguna",
                         "city": "Calamba", "barangay": "Real"},
            "notes": "Found near the riverbank",
        },
        analysis={
            "status": "completed",
            "oldest_stage_detected": "pupa",
            "stage_used_for_calculation": "pupa",
            "pmi_days": 2.5, "pmi_hours": 60.0, "pmi_minutes": 3600.0,
            "temperature_provided": 28.5, "calculated_adh": 1020.0, "ldt_used": 10.0,
            "total_counts": {"pupa": 1},
            "explanation": "Estimated from the oldest pupa.",
        },
        images=[ExportImage(
            upload_id="up1", name="scene.jpg", key=IMAGE_KEY, type="image/jpeg",
            width=400, height=300, detections=[detection],
        )],
    )


class TestHelpers:
    """Tests for small rendering helpers."""

    def test_slugify(self):
        assert slugify("Riverside Case #12") == "riverside-case-12"
        assert slugify("###") == "export"

    def test_fit_to_resolution_keeps_aspect_ratio(self):
        image = Image.new("RGB", (4000, 2000))

        resized, scale = fit_to_resolution(image, "1920x1080")

        assert resized.size == (1920, 960)
        assert scale == pytest.approx(0.48)

    def test_labelled_image_keeps_size_without_resolution(self):
        labelled = render_labelled_image(image_bytes(), [{
            "label": "instar_1", "confidence": None,
            "x_min": 0, "y_min": 0, "x_max": 50, "y_max": 50,
        }])

        assert labelled.size == (400, 300)
        assert labelled.mode == "RGB"

    def test_pdf_permissions_combine_flags(self):
        permissions = pdf_permissions({"printing": True, "copying": False, "annotations": True})

        assert permissions & AccessPermission.PRINT_HIGH_RES
        assert permissions & AccessPermission.ANNOTATION
        assert not permissions & AccessPermission.COPY


class TestZip:
    """Tests for build_zip."""

    def test_plain_zip(self):
        content = build_zip({"a.csv": b"x,y\n1,2\n"})

        with pyzipper.AESZipFile(io.BytesIO(content)) as archive:
            assert archive.read("a.csv") == b"x,y\n1,2\n"

    def test_password_zip_requires_password(self):
        content = build_zip({"a.csv": b"secret"}, password="case-password")

        with pyzipper.AESZipFile(io.BytesIO(content)) as archive:
            with pytest.raises(RuntimeError):
                archive.read("a.csv")
            archive.setpassword(b"case-password")
            assert archive.read("a.csv") == b"secret"


class TestRawData:
    """Tests for the CSV export."""

    def test_tables(self, snapshot):
        # Act
        rendered = render_export(snapshot, {"format": "raw_data"}, fetch)

        # Assert
        assert rendered.filename == "riverside-case-12-raw-data.zip"
        with pyzipper.AESZipFile(io.BytesIO(rendered.content)) as archive:
            assert sorted(archive.namelist()) == [
                "analysis_summary.csv", "case_details.csv", "detections.csv",
            ]
            detections = pd.read_csv(io.BytesIO(archive.read("detections.csv")))
            summary = pd.read_csv(io.BytesIO(archive.read("analysis_summary.csv")))

        assert detections.loc[0, "detection_id"] == "d1"
        assert detections.loc[0, "original_label"] == "instar_3"
        assert summary.loc[0, "count_pupa"] == 1

    def test_password_protected(self, snapshot):
        options = {"format": "raw_data",
                   "password_protection": {"enabled": True, "password": "case-password"}}

        rendered = render_export(snapshot, options, fetch)

        with pyzipper.AESZipFile(io.BytesIO(rendered.content)) as archive:
            archive.setpassword(b"case-password")
            assert archive.read("case_details.csv").startswith(b"case_id,")


class TestLabelledImages:
    """Tests for the labelled image export."""

    def test_images_resized_to_resolution(self, snapshot):
        # Act
        rendered = render_export(
            snapshot, {"format": "labelled_images", "resolution": "1280x720"}, fetch
        )

        # Assert
        with pyzipper.AESZipFile(io.BytesIO(rendered.content)) as archive:
            assert archive.namelist() == ["scene-labelled.jpg"]
            image = Image.open(io.BytesIO(archive.read("scene-labelled.jpg")))

        assert image.size == (960, 720)
        assert image.format == "JPEG"


class TestPdf:
    """Tests for the PDF report."""

    def test_standard_report(self, snapshot):
        rendered = render_export(snapshot, {"format": "pdf", "security_level": "standard"}, fetch)

        assert rendered.filename == "riverside-case-12-report.pdf"
        assert rendered.content.startswith(b"%PDF")
        assert b"/Encrypt" not in rendered.content

    def test_view_protected_report_is_encrypted(self, snapshot):
        options = {"format": "pdf", "security_level": "view_protected",
                   "password": "case-password", "include_images": False}

        rendered = render_export(snapshot, options, fetch)

        assert b"/Encrypt" in rendered.content

    def test_permissions_protected_report_is_encrypted(self, snapshot):
        options = {"format": "pdf", "security_level": "permissions_protected",
                   "password": "case-password",
                   "permissions": {"printing": True, "copying": False}}

        rendered = render_export(snapshot, options, fetch)

        assert b"/Encrypt" in rendered.content

    def test_unanalysed_case(self, snapshot):
        snapshot.analysis = None

        rendered = render_export(snapshot, {"format": "pdf", "include_images": False}, fetch)

        assert rendered.content.startswith(b"%PDF")


class TestSnapshot:
    """Tests for load_case_snapshot."""

    def test_single_image_snapshot(self, db, user, make_case, make_upload, make_detection, make_result):
        # Arrange
        case = make_case(user)
        make_result(case)
        first = make_upload(case)
        second = make_upload(case)
        make_detection(second, label="pupa")

        # Act
        snapshot = load_case_snapshot(db, case.id, second.id)

        # Assert
        assert [image.upload_id for image in snapshot.images] == [second.id]
        assert snapshot.images[0].detections[0]["label"] == "pupa"
        assert snapshot.analysis["pmi_hours"] == 30.0
        assert first.id not in [image.upload_id for image in snapshot.images]

    def test_missing_case(self, db):
        with pytest.raises(ValueError):
            load_case_snapshot(db, "missing-case")

    def test_unknown_format_rejected(self, snapshot):
        with pytest.raises(ValueError):
            render_export(snapshot, {"format": "docx"}, fetch)
