# =============================================================================
# app/auth/security.py - Passwords, Tokens & Two-Factor Codes
# =============================================================================
# Primitives used by the auth routes and AccountService:
# - bcrypt password hashing
# - HS256 access tokens (python-jose) carrying sub / email / sid
# - short-lived 2FA challenge tokens issued between sign-in steps
# - TOTP (pyotp) and single-use recovery codes
#
# Nothing here touches the database or FastAPI.
# =============================================================================

import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
import pyotp
from jose import JWTError, jwt

from app.config import settings
from app.exceptions import InvalidTokenError

ALGORITHM = "HS256"
ACCESS_TOKEN_TYPE = "access"
CHALLENGE_TOKEN_TYPE = "2fa_challenge"

RECOVERY_CODE_COUNT = 10
TOTP_ISSUER = "MortiScope"


# =============================================================================
# Passwords
# =============================================================================

def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str | None) -> bool:
    """Check a password; accounts without a password never match."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


# =============================================================================
# JWTs
# =============================================================================

def _now() -> datetime:
    return datetime.now(timezone.utc)


def create_access_token(
    user_id: str,
    email: str,
    session_token: str,
    expires_delta: timedelta | None = None,
) -> tuple[str, datetime]:
    """
    Issue an access token bound to a UserSession.

    Returns:
        (token, expires_at) with expires_at as naive UTC
    """
    expires_at = _now() + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    claims = {
        "sub": user_id,
        "email": email,
        "sid": session_token,
        "type": ACCESS_TOKEN_TYPE,
        "iat": _now(),
        "exp": expires_at,
    }
    token = jwt.encode(claims, settings.SECRET_KEY, algorithm=ALGORITHM)
    return token, expires_at.replace(tzinfo=None)


def decode_access_token(token: str) -> dict[str, Any]:
    """
    Verify an access token and return its claims.

    Raises:
        JWTError: If the signature, expiry or token type is wrong
    """
    claims = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
    if claims.get("type") != ACCESS_TOKEN_TYPE or not claims.get("sub") or not claims.get("sid"):
        raise JWTError("Not an access token")
    return claims


def create_challenge_token(user_id: str) -> str:
    """Token proving the password step passed; exchanged for a session with a 2FA code."""
    claims = {
        "sub": user_id,
        "type": CHALLENGE_TOKEN_TYPE,
        "exp": _now() + timedelta(minutes=settings.TWO_FACTOR_CHALLENGE_MINUTES),
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=ALGORITHM)


def decode_challenge_token(token: str) -> str:
    """
    Return the user id from a 2FA challenge token.

    Raises:
        InvalidTokenError: If the token is invalid, expired or of another type
    """
    try:
        claims = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise InvalidTokenError()

    if claims.get("type") != CHALLENGE_TOKEN_TYPE or not claims.get("sub"):
        raise InvalidTokenError()
    return claims["sub"]


# =============================================================================
# Opaque tokens
# =============================================================================

def generate_token() -> str:
    """URL-safe random token for email links and session ids."""
    return secrets.token_urlsafe(32)


# =============================================================================
# Two-factor
# =============================================================================

def generate_totp_secret() -> str:
    return pyotp.random_base32()


def totp_provisioning_uri(secret: str, email: str) -> str:
    return pyotp.TOTP(secret).provisioning_uri(name=email, issuer_name=TOTP_ISSUER)


def verify_totp(secret: str | None, code: str) -> bool:
    """Accept the current code and one step either side for clock drift."""
    if not secret or not code:
        return False
    return pyotp.TOTP(secret).verify(code.strip(), valid_window=1)


def _normalize_recovery_code(code: str) -> str:
    return code.replace("-", "").replace(" ", "").strip().lower()


def generate_recovery_codes(count: int = RECOVERY_CODE_COUNT) -> list[str]:
    """Codes like "3f9a1-c27e0" shown to the user once."""
    codes = []
    for _ in range(count):
        raw = secrets.token_hex(5)
        codes.append(f"{raw[:5]}-{raw[5:]}")
    return codes


def hash_recovery_code(code: str) -> str:
    """
    Deterministic hash so a submitted code can be looked up directly.

    Codes carry 40 bits of randomness and are single-use and rate limited.
    """
    return hashlib.sha256(_normalize_recovery_code(code).encode("utf-8")).hexdigest()
