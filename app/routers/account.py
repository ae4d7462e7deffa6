# =============================================================================
# app/routers/account.py - Account Settings Endpoints
# =============================================================================
# Profile, password and email changes, device sessions, two-factor setup and
# account deletion for the signed-in user.
# =============================================================================

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.auth.routes import MessageResponse, profile_response
from app.dependencies import DbDep, UserDep, limit_by_user
from core.models.account import (
    ChangePasswordRequest,
    EmailChangeRequest,
    PasswordConfirmation,
    ProfileResponse,
    ProfileUpdateRequest,
    RecoveryCodesResponse,
    RecoveryCodeStatus,
    SessionResponse,
    TwoFactorCodeRequest,
    TwoFactorSetupResponse,
)
from core.services.account_service import AccountService

router = APIRouter()


class PasswordCheckResponse(BaseModel):
    valid: bool


# =============================================================================
# Profile
# =============================================================================

@router.get("/profile", response_model=ProfileResponse)
async def get_profile(db: DbDep, user: UserDep):
    return profile_response(AccountService.get_user(db, user.id))


@router.patch("/profile", response_model=ProfileResponse)
async def update_profile(request: ProfileUpdateRequest, db: DbDep, user: UserDep):
    return profile_response(AccountService.update_profile(db, user.id, request))


# =============================================================================
# Password & email
# =============================================================================

@router.post(
    "/password/check",
    response_model=PasswordCheckResponse,
    dependencies=[Depends(limit_by_user("password_check"))],
)
async def check_password(request: PasswordConfirmation, db: DbDep, user: UserDep):
    """Confirm the current password before a sensitive action."""
    valid = AccountService.check_password(db, user.id, request.password or "")
    return PasswordCheckResponse(valid=valid)


@router.post("/password", response_model=MessageResponse)
async def change_password(request: ChangePasswordRequest, db: DbDep, user: UserDep):
    """Change the password. Every other device is signed out."""
    AccountService.change_password(
        db,
        user.id,
        request.current_password,
        request.new_password,
        current_session_id=user.session_id,
    )
    return MessageResponse(message="Password updated.")


@router.post(
    "/email",
    response_model=MessageResponse,
    dependencies=[Depends(limit_by_user("email_change"))],
)
async def request_email_change(request: EmailChangeRequest, db: DbDep, user: UserDep):
    AccountService.request_email_change(db, user.id, str(request.new_email), request.current_password)
    return MessageResponse(message="Check the new address for a confirmation link.")


# =============================================================================
# Sessions
# =============================================================================

@router.get("/sessions", response_model=list[SessionResponse])
async def list_sessions(db: DbDep, user: UserDep):
    sessions = AccountService.list_sessions(db, user.id)
    return [
        SessionResponse.model_validate(s).model_copy(update={"is_current": s.id == user.session_id})
        for s in sessions
    ]


@router.delete("/sessions/{session_id}", status_code=204)
async def revoke_session(session_id: str, db: DbDep, user: UserDep):
    AccountService.revoke_session(db, user.id, session_id)


@router.post("/sessions/revoke-others")
async def revoke_other_sessions(db: DbDep, user: UserDep):
    count = AccountService.revoke_other_sessions(db, user.id, user.session_id)
    return {"revoked": count}


# =============================================================================
# Two-factor
# =============================================================================

@router.post("/2fa/setup", response_model=TwoFactorSetupResponse)
async def setup_two_factor(db: DbDep, user: UserDep):
    """Start 2FA setup; returns the secret and an otpauth:// URL for a QR code."""
    return TwoFactorSetupResponse(**AccountService.setup_two_factor(db, user.id))


@router.post(
    "/2fa/enable",
    response_model=RecoveryCodesResponse,
    dependencies=[Depends(limit_by_user("two_factor"))],
)
async def enable_two_factor(request: TwoFactorCodeRequest, db: DbDep, user: UserDep):
    """Confirm the first code. The returned recovery codes are shown only once."""
    return RecoveryCodesResponse(codes=AccountService.enable_two_factor(db, user.id, request.code))


@router.post("/2fa/disable", response_model=MessageResponse)
async def disable_two_factor(request: PasswordConfirmation, db: DbDep, user: UserDep):
    AccountService.disable_two_factor(db, user.id, request.password)
    return MessageResponse(message="Two-factor authentication disabled.")


@router.get("/2fa/recovery-codes", response_model=RecoveryCodeStatus)
async def get_recovery_code_status(db: DbDep, user: UserDep):
    return RecoveryCodeStatus(**AccountService.get_recovery_code_status(db, user.id))


@router.post("/2fa/recovery-codes", response_model=RecoveryCodesResponse)
async def regenerate_recovery_codes(request: PasswordConfirmation, db: DbDep, user: UserDep):
    codes = AccountService.regenerate_recovery_codes(db, user.id, request.password)
    return RecoveryCodesResponse(codes=codes)


# =============================================================================
# Deletion
# =============================================================================

@router.post(
    "/deletion",
    response_model=MessageResponse,
    dependencies=[Depends(limit_by_user("account_deletion"))],
)
async def request_account_deletion(request: PasswordConfirmation, db: DbDep, user: UserDep):
    AccountService.request_account_deletion(db, user.id, request.password)
    return MessageResponse(message="Check your email to confirm account deletion.")


@router.delete("/deletion", response_model=MessageResponse)
async def cancel_account_deletion(db: DbDep, user: UserDep):
    AccountService.cancel_account_deletion(db, user.id)
    return MessageResponse(message="Account deletion cancelled.")
