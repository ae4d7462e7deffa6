# =============================================================================
# lib/supabase_client.py - Supabase Client Wrapper
# =============================================================================
# Singleton wrapper around the Supabase client. MortiScope uses Supabase for
# object storage only (case images and generated exports); relational data
# lives behind SQLAlchemy (see lib/database.py).
#
# Usage:
#   from lib.supabase_client import SupabaseClient
#   bucket = SupabaseClient.bucket()
#   bucket.upload(path="exports/x.zip", file=data)
# =============================================================================

from __future__ import annotations

import logging
from typing import Any

from supabase import create_client, Client

from app.config import settings

logger = logging.getLogger(__name__)


class SupabaseClientError(Exception):
    """
    Error during Supabase operations.

    Carries a code and an actionable suggestion alongside the message.
    """

    def __init__(
        self,
        message: str,
        code: str = "SUPABASE_ERROR",
        suggestion: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.details = details or {}

    def __str__(self) -> str:
        result = f"[{self.code}] {self.message}"
        if self.suggestion:
            result += f" Suggestion: {self.suggestion}"
        return result


class SupabaseClient:
    """
    Shared Supabase client.

    One client instance is reused across the process. All methods are class
    methods so callers never instantiate the wrapper.
    """

    _instance: Client | None = None

    @classmethod
    def get_client(cls) -> Client:
        """
        Get or create the singleton Supabase client.

        Uses the service_role key; storage policies are enforced by this API,
        not by the bucket.

        Returns:
            Client: Supabase client instance

        Raises:
            SupabaseClientError: If client creation fails
        """
        if cls._instance is None:
            try:
                cls._instance = create_client(
                    settings.SUPABASE_URL,
                    settings.SUPABASE_SERVICE_KEY
                )
                logger.info("Supabase client initialized successfully")
            except Exception as e:
                raise SupabaseClientError(
                    message=f"Failed to create Supabase client: {e}",
                    code="CLIENT_INIT_FAILED",
                    suggestion="Check SUPABASE_URL and SUPABASE_SERVICE_KEY in your .env file"
                )
        return cls._instance

    @classmethod
    def bucket(cls, name: str | None = None):
        """Return the storage file API for a bucket (defaults to STORAGE_BUCKET)."""
        return cls.get_client().storage.from_(name or settings.STORAGE_BUCKET)

    @classmethod
    def reset(cls) -> None:
        """Drop the cached client (used by tests)."""
        cls._instance = None
