# =============================================================================
# app/auth/routes.py - Authentication Routes
# =============================================================================
# Sign-up, email verification, sign-in (with optional 2FA step), password
# reset and sign-out.
#
# Links mailed to users (verification, email change, account deletion) land
# on the web client, which posts the token back here.
# =============================================================================

import logging

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from app.auth.dependencies import get_current_user
from app.auth.models import AuthUser
from app.dependencies import DbDep, get_client_ip, get_user_agent, limit_by_ip
from core.models.account import (
    AuthTokenResponse,
    ForgotPasswordRequest,
    ProfileResponse,
    RecoverySignInRequest,
    ResetPasswordRequest,
    SignInRequest,
    SignUpRequest,
    TokenRequest,
    TwoFactorSignInRequest,
)
from core.services.account_service import AccountService
from lib.orm import User

logger = logging.getLogger(__name__)

router = APIRouter()


class MessageResponse(BaseModel):
    message: str


def profile_response(user: User) -> ProfileResponse:
    return ProfileResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        professional_title=user.professional_title,
        institution=user.institution,
        two_factor_enabled=user.two_factor_enabled,
        has_password=user.password_hash is not None,
        deletion_scheduled_at=user.deletion_scheduled_at,
        created_at=user.created_at,
    )


# =============================================================================
# Sign-up & verification
# =============================================================================

@router.post(
    "/signup",
    response_model=MessageResponse,
    status_code=201,
    dependencies=[Depends(limit_by_ip("signup"))],
)
async def sign_up(request: SignUpRequest, db: DbDep):
    """
    Register a new account.

    A verification link is emailed; sign-in is refused until it is followed.
    """
    AccountService.sign_up(db, request)
    return MessageResponse(message="Account created. Check your email to verify your address.")


@router.post("/verify-email", response_model=MessageResponse)
async def verify_email(request: TokenRequest, db: DbDep):
    AccountService.verify_email(db, request.token)
    return MessageResponse(message="Email verified. You can now sign in.")


@router.post(
    "/resend-verification",
    response_model=MessageResponse,
    dependencies=[Depends(limit_by_ip("signup"))],
)
async def resend_verification(request: ForgotPasswordRequest, db: DbDep):
    AccountService.resend_verification(db, str(request.email))
    return MessageResponse(message="If the account exists and is unverified, a new link was sent.")


# =============================================================================
# Sign-in
# =============================================================================

@router.post(
    "/signin",
    response_model=AuthTokenResponse,
    dependencies=[Depends(limit_by_ip("signin"))],
)
async def sign_in(body: SignInRequest, request: Request, db: DbDep):
    """
    Password sign-in.

    Returns an access token, or `two_factor_required` with a challenge token
    to complete via /signin/2fa or /signin/recovery.
    """
    result = AccountService.sign_in(
        db,
        str(body.email),
        body.password,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return AuthTokenResponse(**result)


@router.post(
    "/signin/2fa",
    response_model=AuthTokenResponse,
    dependencies=[Depends(limit_by_ip("two_factor"))],
)
async def sign_in_two_factor(body: TwoFactorSignInRequest, request: Request, db: DbDep):
    result = AccountService.sign_in_with_totp(
        db,
        body.challenge_token,
        body.code,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return AuthTokenResponse(**result)


@router.post(
    "/signin/recovery",
    response_model=AuthTokenResponse,
    dependencies=[Depends(limit_by_ip("two_factor"))],
)
async def sign_in_recovery(body: RecoverySignInRequest, request: Request, db: DbDep):
    result = AccountService.sign_in_with_recovery_code(
        db,
        body.challenge_token,
        body.recovery_code,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return AuthTokenResponse(**result)


@router.post("/signout", status_code=204)
async def sign_out(db: DbDep, user: AuthUser = Depends(get_current_user)):
    """Revoke the session behind the current token."""
    if user.session_id:
        AccountService.sign_out(db, user.session_id)


# =============================================================================
# Password reset
# =============================================================================

@router.post(
    "/forgot-password",
    response_model=MessageResponse,
    dependencies=[Depends(limit_by_ip("forgot_password"))],
)
async def forgot_password(request: ForgotPasswordRequest, db: DbDep):
    AccountService.forgot_password(db, str(request.email))
    return MessageResponse(message="If an account exists for that email, a reset link was sent.")


@router.post(
    "/reset-password",
    response_model=MessageResponse,
    dependencies=[Depends(limit_by_ip("reset_password"))],
)
async def reset_password(request: ResetPasswordRequest, db: DbDep):
    AccountService.reset_password(db, request.token, request.new_password)
    return MessageResponse(message="Password updated. Please sign in again.")


# =============================================================================
# Emailed confirmations
# =============================================================================

@router.post("/verify-email-change", response_model=MessageResponse)
async def verify_email_change(request: TokenRequest, db: DbDep):
    AccountService.verify_email_change(db, request.token)
    return MessageResponse(message="Email address updated.")


@router.post("/confirm-account-deletion", response_model=MessageResponse)
async def confirm_account_deletion(request: TokenRequest, db: DbDep):
    user = AccountService.confirm_account_deletion(db, request.token)
    return MessageResponse(
        message=f"Account scheduled for deletion on {user.deletion_scheduled_at:%Y-%m-%d}. "
        "Sign in before then to cancel."
    )


# =============================================================================
# Current user
# =============================================================================

@router.get("/me", response_model=ProfileResponse)
async def get_current_user_info(db: DbDep, user: AuthUser = Depends(get_current_user)):
    """
    Get the current authenticated user's profile.

    Raises:
        401: If not authenticated
    """
    return profile_response(AccountService.get_user(db, user.id))


@router.get("/verify")
async def verify_token(user: AuthUser = Depends(get_current_user)):
    """Check that the bearer token is valid and its session active."""
    return {"valid": True, "user_id": user.id, "email": user.email}
