# =============================================================================
# core/services/storage_service.py - Supabase Storage Operations
# =============================================================================
# Presigned upload/download URLs, uploads of generated files, moves and
# deletions for case images and exports.
# =============================================================================

import logging
from typing import Any

from lib.supabase_client import SupabaseClient
from app.config import settings
from app.exceptions import StorageUploadError, StorageDownloadError

logger = logging.getLogger(__name__)


def _signed_url(response: Any) -> str:
    """Pull the URL out of a storage response (key casing varies by client version)."""
    if isinstance(response, str):
        return response
    for key in ("signedUrl", "signedURL", "signed_url"):
        if response.get(key):
            return response[key]
    raise ValueError(f"No signed URL in storage response: {response}")


class StorageService:
    """
    Service for Supabase Storage operations.

    Image bytes never pass through the API: clients PUT directly to a signed
    upload URL and read through short-lived signed download URLs.
    """

    @staticmethod
    def create_presigned_upload(key: str) -> dict[str, str]:
        """
        Create a signed URL the browser can upload a file to.

        Args:
            key: Object key inside the bucket

        Returns:
            Dict with `url`, `token` and `key`

        Raises:
            StorageUploadError: If the URL cannot be created
        """
        try:
            response = SupabaseClient.bucket().create_signed_upload_url(key)
            logger.info(f"Created presigned upload URL for {key}")
            return {
                "url": _signed_url(response),
                "token": response.get("token", ""),
                "key": key,
            }
        except Exception as e:
            logger.error(f"Failed to create presigned upload URL for {key}: {e}")
            raise StorageUploadError(str(e))

    @staticmethod
    def get_signed_url(key: str, expires_in: int | None = None) -> str:
        """
        Create a short-lived download URL for an object.

        Args:
            key: Object key inside the bucket
            expires_in: Lifetime in seconds (defaults to PRESIGNED_URL_EXPIRE_SECONDS)

        Raises:
            StorageDownloadError: If the URL cannot be created
        """
        try:
            response = SupabaseClient.bucket().create_signed_url(
                key, expires_in or settings.PRESIGNED_URL_EXPIRE_SECONDS
            )
            return _signed_url(response)
        except Exception as e:
            logger.error(f"Failed to sign download URL for {key}: {e}")
            raise StorageDownloadError(key, str(e))

    @staticmethod
    def public_url(key: str) -> str:
        """Stable (unsigned) URL recorded on upload rows."""
        return SupabaseClient.bucket().get_public_url(key)

    @staticmethod
    def upload_bytes(key: str, content: bytes, content_type: str) -> str:
        """
        Upload generated content (exports, re-encoded images).

        Returns:
            The object key

        Raises:
            StorageUploadError: If upload fails
        """
        try:
            SupabaseClient.bucket().upload(
                path=key,
                file=content,
                file_options={"content-type": content_type, "upsert": "true"},
            )
            logger.info(f"Uploaded {len(content)} bytes to storage: {key}")
            return key
        except Exception as e:
            logger.error(f"Storage upload failed for {key}: {e}")
            raise StorageUploadError(str(e))

    @staticmethod
    def download_bytes(key: str) -> bytes:
        """
        Download raw object content.

        Raises:
            StorageDownloadError: If download fails
        """
        try:
            content = SupabaseClient.bucket().download(key)
            logger.info(f"Downloaded file from storage: {key}")
            return content
        except Exception as e:
            logger.error(f"Storage download failed for {key}: {e}")
            raise StorageDownloadError(key, str(e))

    @staticmethod
    def move(source_key: str, destination_key: str) -> str:
        """
        Move an object to a new key (used by renames).

        Raises:
            StorageUploadError: If the move fails
        """
        try:
            SupabaseClient.bucket().move(source_key, destination_key)
            logger.info(f"Moved storage object {source_key} -> {destination_key}")
            return destination_key
        except Exception as e:
            logger.error(f"Storage move failed for {source_key}: {e}")
            raise StorageUploadError(str(e))

    @staticmethod
    def delete_files(keys: list[str]) -> bool:
        """
        Delete objects from storage.

        Storage cleanup never blocks the database change that triggered it,
        so failures are logged and reported as False.

        Returns:
            True if deleted successfully
        """
        if not keys:
            return True

        try:
            SupabaseClient.bucket().remove(keys)
            logger.info(f"Deleted {len(keys)} file(s) from storage")
            return True
        except Exception as e:
            logger.error(f"Failed to delete files {keys}: {e}")
            return False
