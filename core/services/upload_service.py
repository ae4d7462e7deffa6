# =============================================================================
# core/services/upload_service.py - Case Image Uploads
# =============================================================================
# Presigned upload flow and image management for cases.
#
# Object keys look like:
#   uploads/{user_id}/{case_id}/{sanitized-stem}-{suffix}{ext}
# so a key alone identifies the owner and case it belongs to.
# =============================================================================

import logging
import secrets

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.config import settings
from app.exceptions import (
    CaseStateError,
    DuplicateFileNameError,
    FileTooLargeError,
    ImageNotFoundError,
    InvalidFileTypeError,
    InvalidInputError,
)
from core.models.upload import PresignUploadRequest, SaveUploadRequest, UpdateUploadRequest
from core.services.case_service import CaseService
from core.services.storage_service import StorageService
from lib.orm import Upload
from lib.utils import sanitize_filename, split_extension

logger = logging.getLogger(__name__)


def key_prefix(user_id: str, case_id: str) -> str:
    return f"uploads/{user_id}/{case_id}/"


def build_object_key(user_id: str, case_id: str, file_name: str) -> str:
    """
    Unique storage key for a file.

    Example:
        build_object_key("u1", "c1", "Scene Photo.JPG")
        # "uploads/u1/c1/Scene-Photo-3fa9c1d2.jpg"
    """
    stem, ext = split_extension(sanitize_filename(file_name))
    return f"{key_prefix(user_id, case_id)}{stem}-{secrets.token_hex(4)}{ext}"


class UploadService:
    """Service for case image uploads."""

    @staticmethod
    def get_upload(db: Session, user_id: str, upload_id: str) -> Upload:
        """
        Raises:
            ImageNotFoundError: If the image doesn't exist or isn't the user's
        """
        upload = db.get(Upload, upload_id)
        if upload is None or upload.user_id != user_id:
            raise ImageNotFoundError(upload_id)
        if upload.case is not None and upload.case.deleted_at is not None:
            raise ImageNotFoundError(upload_id)
        return upload

    @staticmethod
    def get_case_uploads(db: Session, user_id: str, case_id: str) -> list[Upload]:
        case = CaseService.get_case(db, user_id, case_id)
        return list(case.uploads)

    @staticmethod
    def _ensure_unique_name(db: Session, case_id: str, name: str, exclude_id: str | None = None) -> None:
        query = select(Upload.id).where(
            Upload.case_id == case_id,
            func.lower(Upload.name) == name.lower(),
        )
        if exclude_id:
            query = query.where(Upload.id != exclude_id)
        if db.execute(query).first() is not None:
            raise DuplicateFileNameError(name)

    # -------------------------------------------------------------------------
    # Upload flow
    # -------------------------------------------------------------------------

    @staticmethod
    def create_upload(db: Session, user_id: str, data: PresignUploadRequest) -> dict[str, str]:
        """
        Validate a file and hand out a presigned upload URL.

        Returns:
            Dict with `url`, `key` and `token`

        Raises:
            CaseNotFoundError: If the case isn't the user's
            InvalidFileTypeError: If the MIME type isn't an allowed image type
            FileTooLargeError: If the file exceeds MAX_UPLOAD_SIZE_MB
            InvalidInputError: If the case already has the maximum number of images
        """
        case = CaseService.get_case(db, user_id, data.case_id)

        if data.file_type not in settings.allowed_image_types_list:
            raise InvalidFileTypeError(data.file_name, settings.allowed_image_types_list)

        if data.file_size > settings.max_upload_size_bytes:
            raise FileTooLargeError(data.file_size / (1024 * 1024), settings.MAX_UPLOAD_SIZE_MB)

        if CaseService.count_images(db, case.id) >= settings.MAX_IMAGES_PER_CASE:
            raise InvalidInputError(
                f"A case can have at most {settings.MAX_IMAGES_PER_CASE} images."
            )

        key = build_object_key(user_id, case.id, data.file_name)
        return StorageService.create_presigned_upload(key)

    @staticmethod
    def save_upload(db: Session, user_id: str, data: SaveUploadRequest) -> Upload:
        """
        Record an uploaded image. Saving the same key twice returns the
        existing row.

        Raises:
            CaseNotFoundError: If the case isn't the user's
            InvalidInputError: If the key wasn't issued for this user and case
        """
        case = CaseService.get_case(db, user_id, data.case_id)

        if not data.key.startswith(key_prefix(user_id, case.id)):
            raise InvalidInputError("Invalid upload key.")

        existing = db.scalars(select(Upload).where(Upload.key == data.key)).first()
        if existing is not None:
            return existing

        if data.type not in settings.allowed_image_types_list:
            raise InvalidFileTypeError(data.name, settings.allowed_image_types_list)

        upload = Upload(
            key=data.key,
            name=data.name,
            url=StorageService.public_url(data.key),
            size=data.size,
            type=data.type,
            width=data.width,
            height=data.height,
            user_id=user_id,
            case_id=case.id,
        )
        db.add(upload)
        db.commit()

        logger.info(f"Saved upload {upload.id} ({upload.name}) to case {case.id}")
        return upload

    @staticmethod
    def update_upload(db: Session, user_id: str, upload_id: str, data: UpdateUploadRequest) -> Upload:
        """Point an image at re-uploaded content and drop the old object."""
        upload = UploadService.get_upload(db, user_id, upload_id)

        if upload.case_id and not data.key.startswith(key_prefix(user_id, upload.case_id)):
            raise InvalidInputError("Invalid upload key.")

        old_key = upload.key
        upload.key = data.key
        upload.url = StorageService.public_url(data.key)
        upload.size = data.size
        upload.type = data.type
        upload.width = data.width
        upload.height = data.height
        db.commit()

        if old_key != data.key:
            StorageService.delete_files([old_key])
        return upload

    @staticmethod
    def rename_upload(db: Session, user_id: str, upload_id: str, new_name: str) -> Upload:
        """
        Rename an image. The original extension is always kept.

        Raises:
            DuplicateFileNameError: If another image in the case has the name
        """
        upload = UploadService.get_upload(db, user_id, upload_id)

        _, original_ext = split_extension(upload.name)
        stem, ext = split_extension(new_name.strip())
        if ext != original_ext:
            stem = new_name.strip()
        stem = stem.strip()
        if not stem:
            raise InvalidInputError("File name cannot be empty.")

        name = f"{stem}{original_ext}"
        if name == upload.name:
            return upload

        if upload.case_id:
            UploadService._ensure_unique_name(db, upload.case_id, name, exclude_id=upload.id)
            new_key = build_object_key(user_id, upload.case_id, name)
            StorageService.move(upload.key, new_key)
            upload.key = new_key
            upload.url = StorageService.public_url(new_key)

        upload.name = name
        db.commit()

        logger.info(f"Renamed upload {upload.id} to {name}")
        return upload

    # -------------------------------------------------------------------------
    # Delete
    # -------------------------------------------------------------------------

    @staticmethod
    def delete_upload(db: Session, user_id: str, upload_id: str) -> None:
        """Remove an image while the case is still being assembled."""
        upload = UploadService.get_upload(db, user_id, upload_id)
        key = upload.key

        db.delete(upload)
        db.commit()

        StorageService.delete_files([key])
        logger.info(f"Deleted upload: {upload_id}")

    @staticmethod
    def delete_image(db: Session, user_id: str, upload_id: str) -> bool:
        """
        Remove an image from an analysed case (results view).

        Returns:
            True if the case now needs PMI recalculation

        Raises:
            CaseStateError: If it is the case's last image
        """
        upload = UploadService.get_upload(db, user_id, upload_id)
        case = upload.case
        if case is None:
            raise ImageNotFoundError(upload_id)

        if CaseService.count_images(db, case.id) <= 1:
            raise CaseStateError("Cannot delete the last image of a case.", case.id)

        recalculation_needed = bool(upload.active_detections)
        if recalculation_needed:
            case.recalculation_needed = True

        key = upload.key
        db.delete(upload)
        db.commit()

        StorageService.delete_files([key])
        logger.info(f"Deleted image {upload_id} from case {case.id}")
        return recalculation_needed

    @staticmethod
    def get_image_url(db: Session, user_id: str, upload_id: str) -> str:
        """Short-lived signed download URL for an image."""
        upload = UploadService.get_upload(db, user_id, upload_id)
        return StorageService.get_signed_url(upload.key)
