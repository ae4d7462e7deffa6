# =============================================================================
# core/services/case_service.py - Case Business Logic
# =============================================================================
# Case CRUD, audit history and bulk deletion.
#
# Case names are unique per user among non-deleted cases.
# Changes to an active case are recorded field by field in case_audit_logs,
# one batch id per save.
# =============================================================================

import logging
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.exceptions import CaseNotFoundError, DuplicateCaseNameError, InvalidCredentialsError
from core.models.case import CaseCreate, CaseStatus, CaseUpdate
from core.services.storage_service import StorageService
from lib.orm import Case, CaseAuditLog, Upload, User, utcnow
from lib.utils import to_celsius

logger = logging.getLogger(__name__)

_LOCATION_COLUMNS = ("region", "province", "city", "barangay")


def _audit_value(value: Any) -> Any:
    """JSON-safe form of a field value for the audit log."""
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class CaseService:
    """Service for case management operations."""

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    @staticmethod
    def get_case(
        db: Session,
        user_id: str,
        case_id: str,
        status: CaseStatus | None = None,
        message: str | None = None,
    ) -> Case:
        """
        Get a non-deleted case owned by the user.

        Args:
            db: Database session
            user_id: Requesting user
            case_id: The case id
            status: If provided, the case must also be in this status
            message: Override for the not-found message

        Raises:
            CaseNotFoundError: If the case doesn't exist, isn't owned by the
                user, is deleted or is in another status
        """
        case = db.get(Case, case_id)

        # Don't reveal that someone else's case exists
        if (
            case is None
            or case.user_id != user_id
            or case.deleted_at is not None
            or (status is not None and case.status != status.value)
        ):
            if message:
                raise CaseNotFoundError(case_id, message=message)
            raise CaseNotFoundError(case_id)

        return case

    @staticmethod
    def _ensure_unique_name(
        db: Session,
        user_id: str,
        case_name: str,
        exclude_case_id: str | None = None,
    ) -> None:
        query = select(Case.id).where(
            Case.user_id == user_id,
            Case.case_name == case_name,
            Case.deleted_at.is_(None),
        )
        if exclude_case_id:
            query = query.where(Case.id != exclude_case_id)

        if db.execute(query).first() is not None:
            raise DuplicateCaseNameError(case_name)

    @staticmethod
    def list_cases(db: Session, user_id: str) -> list[Case]:
        """Active, non-deleted cases, newest first."""
        return list(db.scalars(
            select(Case)
            .where(
                Case.user_id == user_id,
                Case.status == CaseStatus.ACTIVE.value,
                Case.deleted_at.is_(None),
            )
            .order_by(Case.created_at.desc())
        ))

    @staticmethod
    def get_draft_case(db: Session, user_id: str) -> Case | None:
        """The user's most recent draft, if one is being assembled."""
        return db.scalars(
            select(Case)
            .where(
                Case.user_id == user_id,
                Case.status == CaseStatus.DRAFT.value,
                Case.deleted_at.is_(None),
            )
            .order_by(Case.created_at.desc())
            .limit(1)
        ).first()

    @staticmethod
    def count_images(db: Session, case_id: str) -> int:
        return db.scalar(select(func.count(Upload.id)).where(Upload.case_id == case_id)) or 0

    # -------------------------------------------------------------------------
    # Create / update
    # -------------------------------------------------------------------------

    @staticmethod
    def create_case(db: Session, user_id: str, data: CaseCreate) -> Case:
        """
        Create a draft case.

        Raises:
            DuplicateCaseNameError: If the user already has a case with this name
        """
        CaseService._ensure_unique_name(db, user_id, data.case_name)

        case = Case(
            user_id=user_id,
            case_name=data.case_name,
            case_date=data.case_date,
            temperature_celsius=to_celsius(data.temperature.value, data.temperature.unit),
            notes=data.notes,
            status=CaseStatus.DRAFT.value,
        )
        if data.location:
            for column in _LOCATION_COLUMNS:
                setattr(case, f"location_{column}", getattr(data.location, column))

        db.add(case)
        db.commit()

        logger.info(f"Created case: {case.id} for user: {user_id}")
        return case

    @staticmethod
    def update_case(
        db: Session,
        user_id: str,
        case_id: str,
        data: CaseUpdate,
    ) -> tuple[Case, bool]:
        """
        Apply a partial update of case details.

        Only fields present in the request are touched. A changed temperature
        on an active case flags the PMI for recalculation.

        Returns:
            (case, recalculation_triggered)

        Raises:
            CaseNotFoundError: If the case isn't the user's
            DuplicateCaseNameError: If the new name is taken
        """
        case = CaseService.get_case(db, user_id, case_id)
        provided = data.model_fields_set

        new_values: dict[str, Any] = {}
        if "case_name" in provided and data.case_name is not None:
            CaseService._ensure_unique_name(db, user_id, data.case_name, exclude_case_id=case.id)
            new_values["case_name"] = data.case_name
        if "case_date" in provided and data.case_date is not None:
            new_values["case_date"] = data.case_date
        if "temperature" in provided and data.temperature is not None:
            new_values["temperature_celsius"] = to_celsius(
                data.temperature.value, data.temperature.unit
            )
        if "notes" in provided:
            new_values["notes"] = data.notes

        changes: dict[str, tuple[Any, Any]] = {}
        for field, value in new_values.items():
            old = getattr(case, field)
            if old != value:
                changes[field] = (old, value)
                setattr(case, field, value)

        if "location" in provided:
            old_location = case.location
            new_location = data.location.model_dump() if data.location else None
            if old_location != new_location:
                changes["location"] = (old_location, new_location)
                for column in _LOCATION_COLUMNS:
                    setattr(
                        case,
                        f"location_{column}",
                        new_location[column] if new_location else None,
                    )

        recalculation_triggered = False
        if case.status == CaseStatus.ACTIVE.value:
            if "temperature_celsius" in changes:
                case.recalculation_needed = True
                recalculation_triggered = True

            if changes:
                batch_id = str(uuid.uuid4())
                for field, (old, new) in changes.items():
                    db.add(CaseAuditLog(
                        case_id=case.id,
                        user_id=user_id,
                        field=field,
                        old_value=_audit_value(old),
                        new_value=_audit_value(new),
                        batch_id=batch_id,
                    ))

        db.commit()

        if changes:
            logger.info(f"Updated case {case.id}: {', '.join(changes)}")
        return case, recalculation_triggered

    @staticmethod
    def rename_case(db: Session, user_id: str, case_id: str, new_name: str) -> Case:
        """Rename a case (results view)."""
        case, _ = CaseService.update_case(
            db, user_id, case_id, CaseUpdate(case_name=new_name)
        )
        return case

    @staticmethod
    def update_case_note(db: Session, user_id: str, case_id: str, notes: str) -> Case:
        case, _ = CaseService.update_case(db, user_id, case_id, CaseUpdate(notes=notes))
        return case

    @staticmethod
    def get_case_history(db: Session, user_id: str, case_id: str) -> list[CaseAuditLog]:
        """Audit entries for a case, newest first."""
        CaseService.get_case(db, user_id, case_id)
        return list(db.scalars(
            select(CaseAuditLog)
            .where(CaseAuditLog.case_id == case_id)
            .order_by(CaseAuditLog.timestamp.desc())
        ))

    # -------------------------------------------------------------------------
    # Delete
    # -------------------------------------------------------------------------

    @staticmethod
    def _soft_delete(case: Case) -> list[str]:
        """Mark a case deleted and return the storage keys of its images."""
        case.deleted_at = utcnow()
        return [upload.key for upload in case.uploads]

    @staticmethod
    def delete_case(db: Session, user_id: str, case_id: str) -> None:
        """
        Soft-delete a case and remove its images from storage.

        Raises:
            CaseNotFoundError: If the case isn't the user's
        """
        case = CaseService.get_case(db, user_id, case_id)
        keys = CaseService._soft_delete(case)
        db.commit()

        StorageService.delete_files(keys)
        logger.info(f"Deleted case: {case_id}")

    @staticmethod
    def delete_selected_cases(
        db: Session,
        user_id: str,
        case_ids: list[str],
        password: str,
    ) -> int:
        """
        Bulk-delete cases after re-checking the user's password.

        Ids that aren't the user's are ignored.

        Returns:
            Number of cases deleted

        Raises:
            InvalidCredentialsError: If the password is wrong
        """
        from app.auth.security import verify_password

        user = db.get(User, user_id)
        if user is None or not verify_password(password, user.password_hash):
            raise InvalidCredentialsError("Invalid password.")

        cases = list(db.scalars(
            select(Case).where(
                Case.id.in_(case_ids),
                Case.user_id == user_id,
                Case.deleted_at.is_(None),
            )
        ))

        keys: list[str] = []
        for case in cases:
            keys.extend(CaseService._soft_delete(case))
        db.commit()

        StorageService.delete_files(keys)
        logger.info(f"Deleted {len(cases)} case(s) for user: {user_id}")
        return len(cases)
