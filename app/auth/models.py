# =============================================================================
# app/auth/models.py - Authentication Models
# =============================================================================

from pydantic import BaseModel, ConfigDict


class AuthUser(BaseModel):
    """
    Authenticated user resolved from an access token.

    `session_id` is the UserSession row behind the token, so routes can mark
    the current device in session lists or revoke it on sign-out.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    email: str | None = None
    session_id: str | None = None
