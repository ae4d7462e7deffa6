# =============================================================================
# core/services/dashboard_service.py - Dashboard Aggregations
# =============================================================================
# Statistics over a user's analysed cases. Every query covers active,
# non-deleted cases, optionally limited to a case_date window, and only
# non-deleted detections.
#
# Rows are pulled once per call and aggregated with pandas.
# =============================================================================

import logging
from datetime import datetime

import pandas as pd
from sqlalchemy import select
from sqlalchemy.orm import Session

from core.models.case import CaseStatus
from core.models.detection import LIFE_STAGE_ORDER, VERIFIED_STATUSES, DetectionStatus
from lib.orm import AnalysisResult, Case, Detection, Upload

logger = logging.getLogger(__name__)

STAGE_DISPLAY_NAMES = {
    "instar_1": "First Instar",
    "instar_2": "Second Instar",
    "instar_3": "Third Instar",
    "pupa": "Pupa",
    "adult": "Adult",
}

# (label, lower bound inclusive); the last bucket is open-ended
PMI_BUCKETS = [
    ("less_than_12h", 0),
    ("12_to_24h", 12),
    ("24_to_36h", 24),
    ("36_to_48h", 36),
    ("48_to_60h", 48),
    ("60_to_72h", 60),
    ("more_than_72h", 72),
]

# Images per case; cases with more than 20 images fall outside every bucket
SAMPLING_BUCKETS = [
    ("1_to_4", 1),
    ("5_to_8", 5),
    ("9_to_12", 9),
    ("13_to_16", 13),
    ("17_to_20", 17),
]
SAMPLING_MAX = 20

CONFIDENCE_BUCKET_NAMES = [f"{i * 10}-{(i + 1) * 10}%" for i in range(10)]

_CASE_COLUMNS = [
    "case_id", "case_name", "case_date", "temperature_celsius",
    "location_region", "location_province", "location_city", "location_barangay",
    "pmi_hours", "pmi_minutes", "oldest_stage_detected",
]
_UPLOAD_COLUMNS = ["upload_id", "case_id"]
_DETECTION_COLUMNS = [
    "detection_id", "upload_id", "case_id", "label", "original_label",
    "confidence", "original_confidence", "status",
]


# =============================================================================
# Formatting
# =============================================================================

def format_stage(label: str | None) -> str:
    """"instar_3" -> "Third Instar"; unknown labels are title-cased."""
    if not label:
        return "No detections"
    return STAGE_DISPLAY_NAMES.get(label, label.replace("_", " ").title())


def format_pmi(minutes: float | None) -> str:
    """
    Human-readable PMI.

    Example:
        >>> format_pmi(1530)
        '1 day, 1 hour, 30 minutes'
    """
    if minutes is None or pd.isna(minutes):
        return "No estimation"

    total = int(round(minutes))
    days, remainder = divmod(total, 1440)
    hours, mins = divmod(remainder, 60)

    parts = []
    for value, unit in ((days, "day"), (hours, "hour"), (mins, "minute")):
        if value:
            parts.append(f"{value} {unit}{'s' if value != 1 else ''}")
    return ", ".join(parts) or "0 minutes"


def verification_state(statuses: pd.Series) -> str:
    """verified if all are verified, unverified if none, else in_progress."""
    if statuses.empty:
        return "no_detections"
    verified = statuses.isin(VERIFIED_STATUSES)
    if verified.all():
        return "verified"
    if not verified.any():
        return "unverified"
    return "in_progress"


def _bucket(values: pd.Series, buckets: list[tuple[str, float]], upper: float | None = None) -> pd.Series:
    """Count values into half-open [lower, next_lower) buckets."""
    names = [name for name, _ in buckets]
    edges = [lower for _, lower in buckets] + [upper if upper is not None else float("inf")]
    binned = pd.cut(values, bins=edges, right=False, labels=names)
    return binned.value_counts().reindex(names, fill_value=0)


# =============================================================================
# Service
# =============================================================================

class DashboardService:
    """Service for dashboard statistics."""

    @staticmethod
    def _case_query(user_id: str, start_date: datetime | None, end_date: datetime | None):
        query = select(Case.id).where(
            Case.user_id == user_id,
            Case.status == CaseStatus.ACTIVE.value,
            Case.deleted_at.is_(None),
        )
        if start_date is not None:
            query = query.where(Case.case_date >= start_date)
        if end_date is not None:
            query = query.where(Case.case_date <= end_date)
        return query

    @staticmethod
    def load_frames(
        db: Session,
        user_id: str,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> tuple[pd.DataFrame, pd.DataFrame, pd.DataFrame]:
        """
        Fetch cases, uploads and detections in scope.

        Returns:
            (cases, uploads, detections) DataFrames; empty frames keep their columns
        """
        case_ids = DashboardService._case_query(user_id, start_date, end_date)

        case_rows = db.execute(
            select(
                Case.id, Case.case_name, Case.case_date, Case.temperature_celsius,
                Case.location_region, Case.location_province,
                Case.location_city, Case.location_barangay,
                AnalysisResult.pmi_hours, AnalysisResult.pmi_minutes,
                AnalysisResult.oldest_stage_detected,
            )
            .outerjoin(AnalysisResult, AnalysisResult.case_id == Case.id)
            .where(Case.id.in_(case_ids))
            .order_by(Case.case_date.desc())
        ).all()

        upload_rows = db.execute(
            select(Upload.id, Upload.case_id).where(Upload.case_id.in_(case_ids))
        ).all()

        detection_rows = db.execute(
            select(
                Detection.id, Detection.upload_id, Upload.case_id,
                Detection.label, Detection.original_label,
                Detection.confidence, Detection.original_confidence, Detection.status,
            )
            .join(Upload, Detection.upload_id == Upload.id)
            .where(Upload.case_id.in_(case_ids), Detection.deleted_at.is_(None))
        ).all()

        cases = pd.DataFrame([tuple(r) for r in case_rows], columns=_CASE_COLUMNS)
        uploads = pd.DataFrame([tuple(r) for r in upload_rows], columns=_UPLOAD_COLUMNS)
        detections = pd.DataFrame([tuple(r) for r in detection_rows], columns=_DETECTION_COLUMNS)

        for column in ("confidence", "original_confidence"):
            detections[column] = pd.to_numeric(detections[column], errors="coerce")
        for column in ("pmi_hours", "pmi_minutes", "temperature_celsius"):
            cases[column] = pd.to_numeric(cases[column], errors="coerce")

        return cases, uploads, detections

    # -------------------------------------------------------------------------
    # Metrics
    # -------------------------------------------------------------------------

    @staticmethod
    def get_dashboard_metrics(db: Session, user_id: str, start_date=None, end_date=None) -> dict:
        """
        Headline numbers over cases that have at least one detection.

        correction_rate is the share (percent, 2 decimals) of detections that
        were drawn by a user or relabelled.
        """
        cases, _, detections = DashboardService.load_frames(db, user_id, start_date, end_date)

        if detections.empty:
            return {
                "verified": 0,
                "total_cases": 0,
                "total_images": 0,
                "verified_images": 0,
                "total_detections_count": 0,
                "verified_detections_count": 0,
                "average_pmi": 0.0,
                "average_confidence": 0.0,
                "correction_rate": 0.0,
            }

        detections = detections.assign(verified=detections["status"].isin(VERIFIED_STATUSES))
        per_case = detections.groupby("case_id")["verified"].all()
        per_image = detections.groupby("upload_id")["verified"].all()

        pmi = cases.loc[cases["case_id"].isin(per_case.index), "pmi_hours"].dropna()
        confidence = detections["confidence"].dropna()

        corrected = (detections["status"] == DetectionStatus.USER_CREATED.value) | (
            detections["label"] != detections["original_label"]
        )

        return {
            "verified": int(per_case.sum()),
            "total_cases": int(len(per_case)),
            "total_images": int(len(per_image)),
            "verified_images": int(per_image.sum()),
            "total_detections_count": int(len(detections)),
            "verified_detections_count": int(detections["verified"].sum()),
            "average_pmi": float(pmi.mean()) if not pmi.empty else 0.0,
            "average_confidence": float(confidence.mean()) if not confidence.empty else 0.0,
            "correction_rate": round(float(corrected.mean()) * 100, 2),
        }

    # -------------------------------------------------------------------------
    # Charts
    # -------------------------------------------------------------------------

    @staticmethod
    def get_life_stage_distribution(db: Session, user_id: str, start_date=None, end_date=None) -> list[dict]:
        """Detections per life stage in canonical order; other labels are ignored."""
        _, _, detections = DashboardService.load_frames(db, user_id, start_date, end_date)
        counts = detections["label"].value_counts()
        return [{"name": stage, "quantity": int(counts.get(stage, 0))} for stage in LIFE_STAGE_ORDER]

    @staticmethod
    def get_pmi_distribution(db: Session, user_id: str, start_date=None, end_date=None) -> list[dict]:
        """Cases per PMI interval (hours). Missing or negative PMIs are ignored."""
        cases, _, _ = DashboardService.load_frames(db, user_id, start_date, end_date)
        hours = cases["pmi_hours"].dropna()
        counts = _bucket(hours[hours >= 0], PMI_BUCKETS)
        return [{"name": name, "quantity": int(count)} for name, count in counts.items()]

    @staticmethod
    def get_sampling_density(db: Session, user_id: str, start_date=None, end_date=None) -> list[dict]:
        """Cases per images-per-case interval."""
        _, uploads, _ = DashboardService.load_frames(db, user_id, start_date, end_date)
        per_case = uploads.groupby("case_id").size()
        counts = _bucket(per_case, SAMPLING_BUCKETS, upper=SAMPLING_MAX + 1)
        return [{"name": name, "quantity": int(count)} for name, count in counts.items()]

    @staticmethod
    def get_confidence_score_distribution(db: Session, user_id: str, start_date=None, end_date=None) -> list[dict]:
        """
        Model confidence (as originally predicted) in ten 10% buckets.

        Scores above 1 are treated as percentages; 1.0 / 100 land in 90-100%.
        """
        _, _, detections = DashboardService.load_frames(db, user_id, start_date, end_date)
        scores = detections["original_confidence"].dropna()
        scores = scores.where(scores <= 1, scores / 100)

        indexes = (scores * 10).astype(int).clip(lower=0, upper=9)
        counts = indexes.value_counts()
        return [
            {"name": name, "count": int(counts.get(i, 0))}
            for i, name in enumerate(CONFIDENCE_BUCKET_NAMES)
        ]

    @staticmethod
    def get_model_performance_metrics(db: Session, user_id: str, start_date=None, end_date=None) -> list[dict]:
        """Average original confidence per originally predicted stage, in percent."""
        _, _, detections = DashboardService.load_frames(db, user_id, start_date, end_date)
        scored = detections.dropna(subset=["original_confidence"])
        means = scored.groupby("original_label")["original_confidence"].mean()
        return [
            {"name": stage, "confidence": round(float(means.get(stage, 0.0)) * 100, 1)}
            for stage in LIFE_STAGE_ORDER
        ]

    @staticmethod
    def get_user_correction_ratio(db: Session, user_id: str, start_date=None, end_date=None) -> list[dict]:
        """Model predictions confirmed as-is vs confirmed after correction."""
        _, _, detections = DashboardService.load_frames(db, user_id, start_date, end_date)
        counts = detections["status"].value_counts()
        return [
            {
                "name": "verified_prediction",
                "quantity": int(counts.get(DetectionStatus.USER_CONFIRMED.value, 0)),
            },
            {
                "name": "corrected_prediction",
                "quantity": int(counts.get(DetectionStatus.USER_EDITED_CONFIRMED.value, 0)),
            },
        ]

    @staticmethod
    def get_verification_status(db: Session, user_id: str, start_date=None, end_date=None) -> dict:
        """Verified / unverified / in-progress breakdown for cases, images and detections."""
        _, _, detections = DashboardService.load_frames(db, user_id, start_date, end_date)

        def breakdown(key: str) -> dict[str, int]:
            states = detections.groupby(key)["status"].apply(verification_state)
            counts = states.value_counts()
            return {
                "verified": int(counts.get("verified", 0)),
                "unverified": int(counts.get("unverified", 0)),
                "in_progress": int(counts.get("in_progress", 0)),
            }

        verified = int(detections["status"].isin(VERIFIED_STATUSES).sum())
        return {
            "cases": breakdown("case_id"),
            "images": breakdown("upload_id"),
            "detections": {"verified": verified, "unverified": int(len(detections)) - verified},
        }

    # -------------------------------------------------------------------------
    # Table
    # -------------------------------------------------------------------------

    @staticmethod
    def get_case_data(db: Session, user_id: str, start_date=None, end_date=None) -> list[dict]:
        """Display rows for cases with at least one detection, newest case date first."""
        cases, uploads, detections = DashboardService.load_frames(db, user_id, start_date, end_date)

        image_counts = uploads.groupby("case_id").size()
        grouped = dict(tuple(detections.groupby("case_id")))

        rows = []
        for case in cases.itertuples(index=False):
            case_detections = grouped.get(case.case_id)
            if case_detections is None or case_detections.empty:
                continue

            confidence = case_detections["confidence"].dropna()
            location = None
            if case.location_region:
                location = {
                    "region": case.location_region,
                    "province": case.location_province,
                    "city": case.location_city,
                    "barangay": case.location_barangay,
                }

            rows.append({
                "case_id": case.case_id,
                "case_name": case.case_name,
                "case_date": case.case_date,
                "location": location,
                "temperature": (
                    "N/A" if pd.isna(case.temperature_celsius)
                    else f"{case.temperature_celsius:g} °C"
                ),
                "pmi_estimation": format_pmi(case.pmi_minutes),
                "oldest_stage": (
                    format_stage(case.oldest_stage_detected)
                    if not pd.isna(case.pmi_minutes) or case.oldest_stage_detected
                    else "No detections"
                ),
                "image_count": int(image_counts.get(case.case_id, 0)),
                "detection_count": int(len(case_detections)),
                "average_confidence": (
                    f"{confidence.mean() * 100:.2f}%" if not confidence.empty else "N/A"
                ),
                "verification_status": verification_state(case_detections["status"]),
            })

        logger.debug(f"Built {len(rows)} dashboard row(s) for user {user_id}")
        return rows
