# =============================================================================
# app/auth/dependencies.py - FastAPI Auth Dependencies
# =============================================================================
# Resolves the Bearer access token into an AuthUser.
#
# A valid signature is not enough: the token's `sid` must point at a
# UserSession that is neither revoked nor expired, so signing out or revoking
# a device takes effect immediately.
#
# Usage:
#   from app.auth import get_current_user, AuthUser
#
#   @router.get("/protected")
#   def protected(user: AuthUser = Depends(get_current_user)):
#       return {"user_id": user.id}
# =============================================================================

import logging
from datetime import timedelta

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.auth.models import AuthUser
from app.auth.security import decode_access_token
from app.exceptions import UnauthorizedError
from lib.database import get_db
from lib.orm import UserSession, utcnow

logger = logging.getLogger(__name__)

# Missing headers are reported by get_current_user so every auth failure
# produces the same 401 body
security = HTTPBearer(auto_error=False)

# Don't write last_active_at on every request
ACTIVITY_UPDATE_INTERVAL = timedelta(minutes=1)


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> AuthUser:
    """
    Extract and validate the user from the access token.

    This dependency:
    1. Extracts the Bearer token from the Authorization header
    2. Verifies the JWT signature and expiry
    3. Checks the session behind the token is still active
    4. Refreshes the session's last activity time

    Raises:
        UnauthorizedError: 401 if the token or its session is invalid
    """
    if credentials is None:
        raise UnauthorizedError()

    try:
        claims = decode_access_token(credentials.credentials)
    except ExpiredSignatureError:
        logger.warning("Access token has expired")
        raise UnauthorizedError()
    except JWTError as e:
        logger.warning(f"Access token validation failed: {e}")
        raise UnauthorizedError()

    session = db.scalars(
        select(UserSession).where(UserSession.session_token == claims["sid"])
    ).first()

    if session is None or session.user_id != claims["sub"] or not session.is_active:
        logger.warning(f"Rejected token for inactive session (user: {claims['sub']})")
        raise UnauthorizedError()

    now = utcnow()
    if now - session.last_active_at > ACTIVITY_UPDATE_INTERVAL:
        session.last_active_at = now
        db.commit()

    logger.debug(f"Authenticated user: {claims['sub']}")
    return AuthUser(id=claims["sub"], email=claims.get("email"), session_id=session.id)
