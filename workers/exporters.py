# =============================================================================
# workers/exporters.py - Export Rendering
# =============================================================================
# Turns a case snapshot into downloadable files:
# - raw_data:        CSV tables (pandas) in a zip
# - labelled_images: images with detection boxes drawn (Pillow) in a zip
# - pdf:             case report (fpdf2), optionally encrypted
#
# Zips are written with pyzipper so a password switches on AES encryption.
# load_case_snapshot() copies what an export needs out of the database; the
# render functions work on that plain data only.
# =============================================================================

import io
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable

import pandas as pd
import pyzipper
from fpdf import FPDF
from fpdf.enums import AccessPermission, EncryptionMethod, XPos, YPos
from PIL import Image, ImageDraw, ImageFont
from sqlalchemy import select
from sqlalchemy.orm import Session

from core.models.detection import LIFE_STAGE_ORDER
from core.models.export import ExportFormat, parse_resolution
from core.services.dashboard_service import format_pmi, format_stage
from lib.orm import Case, Detection, Upload

logger = logging.getLogger(__name__)

# Box colour per life stage (RGB)
STAGE_COLORS: dict[str, tuple[int, int, int]] = {
    "instar_1": (59, 130, 246),
    "instar_2": (16, 185, 129),
    "instar_3": (245, 158, 11),
    "pupa": (239, 68, 68),
    "adult": (139, 92, 246),
}
DEFAULT_COLOR = (107, 114, 128)

PDF_IMAGE_WIDTH_MM = 170

# PdfPermissions field -> PDF permission bit(s)
PDF_PERMISSION_FLAGS: dict[str, AccessPermission] = {
    "printing": AccessPermission.PRINT_HIGH_RES,
    "degraded_printing": AccessPermission.PRINT_LOW_RES,
    "copying": AccessPermission.COPY,
    "extraction": AccessPermission.COPY,
    "annotations": AccessPermission.ANNOTATION,
    "form_filling": AccessPermission.FILL_FORMS,
    "assembly": AccessPermission.ASSEMBLE,
    "page_rotation": AccessPermission.ASSEMBLE,
    "screen_reader": AccessPermission.COPY_FOR_ACCESSIBILITY,
    "metadata_modification": AccessPermission.MODIFY,
}


# =============================================================================
# Snapshot
# =============================================================================

@dataclass
class ExportImage:
    upload_id: str
    name: str
    key: str
    type: str
    width: int
    height: int
    detections: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class CaseSnapshot:
    """Plain-data copy of a case, safe to use after the session closes."""

    case: dict[str, Any]
    analysis: dict[str, Any] | None
    images: list[ExportImage]

    @property
    def slug(self) -> str:
        return slugify(self.case["case_name"])


@dataclass
class RenderedExport:
    filename: str
    content: bytes
    content_type: str


def slugify(value: str) -> str:
    """"Riverside Case #12" -> "riverside-case-12"."""
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-") or "export"


def load_case_snapshot(db: Session, case_id: str, upload_id: str | None = None) -> CaseSnapshot:
    """
    Read everything an export needs for a case (or one of its images).

    Args:
        db: Database session
        case_id: Case to export
        upload_id: Limit the export to this image
    """
    case = db.get(Case, case_id)
    if case is None:
        raise ValueError(f"Case {case_id} no longer exists")

    query = select(Upload).where(Upload.case_id == case_id).order_by(Upload.created_at)
    if upload_id:
        query = query.where(Upload.id == upload_id)

    images = []
    for upload in db.scalars(query):
        detections = db.scalars(
            select(Detection)
            .where(Detection.upload_id == upload.id, Detection.deleted_at.is_(None))
            .order_by(Detection.created_at)
        )
        images.append(ExportImage(
            upload_id=upload.id,
            name=upload.name,
            key=upload.key,
            type=upload.type,
            width=upload.width,
            height=upload.height,
            detections=[d.to_dict() for d in detections],
        ))

    result = case.analysis_result
    analysis = None
    if result is not None:
        analysis = {
            "status": result.status,
            "oldest_stage_detected": result.oldest_stage_detected,
            "stage_used_for_calculation": result.stage_used_for_calculation,
            "pmi_days": result.pmi_days,
            "pmi_hours": result.pmi_hours,
            "pmi_minutes": result.pmi_minutes,
            "temperature_provided": result.temperature_provided,
            "calculated_adh": result.calculated_adh,
            "ldt_used": result.ldt_used,
            "total_counts": result.total_counts or {},
            "explanation": result.explanation,
        }

    return CaseSnapshot(
        case={
            "id": case.id,
            "case_name": case.case_name,
            "case_date": case.case_date,
            "temperature_celsius": case.temperature_celsius,
            "location": case.location,
            "notes": case.notes,
        },
        analysis=analysis,
        images=images,
    )


# =============================================================================
# Zip archives
# =============================================================================

def build_zip(files: dict[str, bytes], password: str | None = None) -> bytes:
    """
    Pack files into a zip; with a password every entry is AES-256 encrypted.
    """
    buffer = io.BytesIO()
    encryption = pyzipper.WZ_AES if password else None
    with pyzipper.AESZipFile(
        buffer, "w", compression=pyzipper.ZIP_DEFLATED, encryption=encryption
    ) as archive:
        if password:
            archive.setpassword(password.encode("utf-8"))
        for name, content in files.items():
            archive.writestr(name, content)
    return buffer.getvalue()


# =============================================================================
# Raw data (CSV)
# =============================================================================

def build_tables(snapshot: CaseSnapshot) -> dict[str, pd.DataFrame]:
    """Case details, analysis summary and one row per detection."""
    location = snapshot.case["location"] or {}
    case_df = pd.DataFrame([{
        "case_id": snapshot.case["id"],
        "case_name": snapshot.case["case_name"],
        "case_date": snapshot.case["case_date"],
        "temperature_celsius": snapshot.case["temperature_celsius"],
        "region": location.get("region"),
        "province": location.get("province"),
        "city": location.get("city"),
        "barangay": location.get("barangay"),
        "notes": snapshot.case["notes"],
    }])

    analysis = snapshot.analysis or {}
    counts = analysis.get("total_counts") or {}
    analysis_df = pd.DataFrame([{
        "status": analysis.get("status"),
        "oldest_stage_detected": analysis.get("oldest_stage_detected"),
        "stage_used_for_calculation": analysis.get("stage_used_for_calculation"),
        "pmi_days": analysis.get("pmi_days"),
        "pmi_hours": analysis.get("pmi_hours"),
        "pmi_minutes": analysis.get("pmi_minutes"),
        "temperature_provided": analysis.get("temperature_provided"),
        "calculated_adh": analysis.get("calculated_adh"),
        "ldt_used": analysis.get("ldt_used"),
        **{f"count_{stage}": counts.get(stage, 0) for stage in LIFE_STAGE_ORDER},
    }])

    rows = [
        {"image_name": image.name, **detection}
        for image in snapshot.images
        for detection in image.detections
    ]
    detection_columns = [
        "image_name", "upload_id", "id", "label", "original_label", "confidence",
        "original_confidence", "x_min", "y_min", "x_max", "y_max", "status",
        "created_at", "updated_at",
    ]
    detections_df = pd.DataFrame(rows, columns=detection_columns).rename(columns={"id": "detection_id"})

    return {
        "case_details.csv": case_df,
        "analysis_summary.csv": analysis_df,
        "detections.csv": detections_df,
    }


def render_raw_data(snapshot: CaseSnapshot, password: str | None = None) -> RenderedExport:
    files = {
        name: df.to_csv(index=False).encode("utf-8")
        for name, df in build_tables(snapshot).items()
    }
    return RenderedExport(
        filename=f"{snapshot.slug}-raw-data.zip",
        content=build_zip(files, password),
        content_type="application/zip",
    )


# =============================================================================
# Labelled images (Pillow)
# =============================================================================

def draw_detections(image: Image.Image, detections: list[dict[str, Any]], scale: float = 1.0) -> Image.Image:
    """
    Draw boxes and "<Stage> <confidence>" tags onto a copy of the image.

    Args:
        image: Source image (any mode)
        detections: Detection dicts in original-image pixel coordinates
        scale: Factor between original coordinates and `image`
    """
    annotated = image.convert("RGB")
    draw = ImageDraw.Draw(annotated)
    font = ImageFont.load_default()
    line_width = max(2, round(min(annotated.size) / 300))

    for det in detections:
        x1, y1 = det["x_min"] * scale, det["y_min"] * scale
        x2, y2 = det["x_max"] * scale, det["y_max"] * scale
        color = STAGE_COLORS.get(det["label"], DEFAULT_COLOR)
        draw.rectangle([(x1, y1), (x2, y2)], outline=color, width=line_width)

        label = format_stage(det["label"])
        if det.get("confidence") is not None:
            label = f"{label} {det['confidence']:.0%}"

        left, top, right, bottom = draw.textbbox((0, 0), label, font=font)
        text_w, text_h = right - left, bottom - top
        tag_y = y1 - text_h - 6 if y1 - text_h - 6 >= 0 else y1 + 2
        draw.rectangle([(x1, tag_y), (x1 + text_w + 8, tag_y + text_h + 6)], fill=color)
        draw.text((x1 + 4, tag_y + 3), label, fill=(255, 255, 255), font=font)

    return annotated


def fit_to_resolution(image: Image.Image, resolution: str) -> tuple[Image.Image, float]:
    """
    Scale an image to fit inside the target resolution, keeping aspect ratio.

    Returns:
        (resized image, scale factor applied)
    """
    max_w, max_h = parse_resolution(resolution)
    scale = min(max_w / image.width, max_h / image.height)
    size = (max(1, round(image.width * scale)), max(1, round(image.height * scale)))
    return image.resize(size, Image.LANCZOS), scale


def render_labelled_image(content: bytes, detections: list[dict[str, Any]], resolution: str | None = None) -> Image.Image:
    image = Image.open(io.BytesIO(content))
    scale = 1.0
    if resolution:
        image, scale = fit_to_resolution(image, resolution)
    return draw_detections(image, detections, scale)


def _encode(image: Image.Image, mime_type: str) -> tuple[bytes, str]:
    buffer = io.BytesIO()
    if mime_type == "image/jpeg":
        image.save(buffer, format="JPEG", quality=92)
        return buffer.getvalue(), ".jpg"
    image.save(buffer, format="PNG")
    return buffer.getvalue(), ".png"


def render_labelled_images(
    snapshot: CaseSnapshot,
    fetch: Callable[[str], bytes],
    resolution: str,
    password: str | None = None,
) -> RenderedExport:
    """
    Args:
        snapshot: Case to render
        fetch: Returns an image's bytes given its storage key
        resolution: Target box, e.g. "1920x1080"
        password: Optional zip password
    """
    files: dict[str, bytes] = {}
    for image in snapshot.images:
        labelled = render_labelled_image(fetch(image.key), image.detections, resolution)
        content, ext = _encode(labelled, image.type)

        stem = slugify(image.name.rsplit(".", 1)[0])
        name = f"{stem}-labelled{ext}"
        suffix = 2
        while name in files:
            name = f"{stem}-labelled-{suffix}{ext}"
            suffix += 1
        files[name] = content

    return RenderedExport(
        filename=f"{snapshot.slug}-labelled-images.zip",
        content=build_zip(files, password),
        content_type="application/zip",
    )


# =============================================================================
# PDF report (fpdf2)
# =============================================================================

def pdf_permissions(flags: dict[str, bool]) -> AccessPermission:
    """Combine the allowed PdfPermissions fields into PDF permission bits."""
    permissions = AccessPermission(0)
    for name, allowed in flags.items():
        if allowed and name in PDF_PERMISSION_FLAGS:
            permissions |= PDF_PERMISSION_FLAGS[name]
    return permissions


def apply_pdf_security(pdf: FPDF, options: dict[str, Any]) -> None:
    """
    - standard: no encryption
    - view_protected: password needed to open
    - permissions_protected: opens freely; the password unlocks restricted actions
    """
    level = options.get("security_level", "standard")
    password = options.get("password")
    if level == "standard" or not password:
        return

    if level == "view_protected":
        pdf.set_encryption(
            owner_password=password,
            user_password=password,
            encryption_method=EncryptionMethod.RC4,
        )
    else:
        pdf.set_encryption(
            owner_password=password,
            user_password="",
            encryption_method=EncryptionMethod.RC4,
            permissions=pdf_permissions(options.get("permissions") or {}),
        )


def _latin1(text: Any) -> str:
    """Core PDF fonts only cover Latin-1."""
    return str(text).encode("latin-1", "replace").decode("latin-1")


def _row(pdf: FPDF, label: str, value: Any) -> None:
    pdf.set_font("Helvetica", "B", 10)
    pdf.cell(55, 7, label)
    pdf.set_font("Helvetica", "", 10)
    pdf.multi_cell(0, 7, _latin1(value), new_x=XPos.LMARGIN, new_y=YPos.NEXT)


def _heading(pdf: FPDF, text: str) -> None:
    pdf.ln(4)
    pdf.set_font("Helvetica", "B", 13)
    pdf.cell(0, 9, _latin1(text), new_x=XPos.LMARGIN, new_y=YPos.NEXT)


def render_pdf(
    snapshot: CaseSnapshot,
    options: dict[str, Any],
    fetch: Callable[[str], bytes] | None = None,
) -> RenderedExport:
    """
    Case report: details, PMI estimation, stage counts and (optionally) the
    labelled images.
    """
    pdf = FPDF(format=options.get("page_size", "a4"))
    pdf.set_title(f"MortiScope Report - {snapshot.case['case_name']}")
    pdf.set_author("MortiScope")
    pdf.set_auto_page_break(auto=True, margin=15)
    pdf.add_page()

    pdf.set_font("Helvetica", "B", 18)
    pdf.cell(0, 12, "Case Analysis Report", align="C", new_x=XPos.LMARGIN, new_y=YPos.NEXT)

    _heading(pdf, "Case Details")
    case = snapshot.case
    location = case["location"]
    _row(pdf, "Case name", case["case_name"])
    _row(pdf, "Case date", f"{case['case_date']:%Y-%m-%d %H:%M}")
    _row(pdf, "Temperature", f"{case['temperature_celsius']:g} °C")
    _row(pdf, "Location", ", ".join(
        location[k] for k in ("barangay", "city", "province", "region") if location.get(k)
    ) if location else "N/A")
    if case["notes"]:
        _row(pdf, "Notes", case["notes"])

    _heading(pdf, "PMI Estimation")
    analysis = snapshot.analysis
    if analysis is None:
        _row(pdf, "Status", "Not analysed")
    else:
        _row(pdf, "Estimated PMI", format_pmi(analysis["pmi_minutes"]))
        _row(pdf, "Oldest stage", format_stage(analysis["oldest_stage_detected"]))
        if analysis["calculated_adh"] is not None:
            _row(pdf, "Accumulated degree hours", f"{analysis['calculated_adh']:.2f}")
        if analysis["ldt_used"] is not None:
            _row(pdf, "Lower developmental threshold", f"{analysis['ldt_used']:g} °C")
        if analysis["explanation"]:
            _row(pdf, "Explanation", analysis["explanation"])

        _heading(pdf, "Detections by Life Stage")
        counts = analysis["total_counts"]
        for stage in LIFE_STAGE_ORDER:
            _row(pdf, format_stage(stage), counts.get(stage, 0))

    if options.get("include_images", True) and fetch is not None:
        for image in snapshot.images:
            pdf.add_page()
            _heading(pdf, image.name)
            labelled = render_labelled_image(fetch(image.key), image.detections)
            pdf.image(labelled, w=PDF_IMAGE_WIDTH_MM)

    apply_pdf_security(pdf, options)
    return RenderedExport(
        filename=f"{snapshot.slug}-report.pdf",
        content=bytes(pdf.output()),
        content_type="application/pdf",
    )


# =============================================================================
# Dispatch
# =============================================================================

def _zip_password(options: dict[str, Any]) -> str | None:
    protection = options.get("password_protection") or {}
    return protection.get("password") if protection.get("enabled") else None


def render_export(
    snapshot: CaseSnapshot,
    options: dict[str, Any],
    fetch: Callable[[str], bytes],
) -> RenderedExport:
    """
    Render an export from the request options sent by the API.

    Args:
        snapshot: Case (or single-image) data
        options: ResultsExportRequest / ImageExportRequest as a JSON dict
        fetch: Returns image bytes for a storage key
    """
    export_format = options["format"]
    logger.info(f"Rendering {export_format} export for case {snapshot.case['id']}")

    if export_format == ExportFormat.RAW_DATA.value:
        return render_raw_data(snapshot, _zip_password(options))
    if export_format == ExportFormat.LABELLED_IMAGES.value:
        return render_labelled_images(snapshot, fetch, options["resolution"], _zip_password(options))
    if export_format == ExportFormat.PDF.value:
        return render_pdf(snapshot, options, fetch)
    raise ValueError(f"Unsupported export format: {export_format}")
