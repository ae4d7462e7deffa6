# =============================================================================
# core/services/account_service.py - Accounts, Sign-in & Sessions
# =============================================================================
# Handles the account lifecycle:
# - sign-up, email verification, sign-in (with optional TOTP second step)
# - password reset / change, email change, profile updates
# - device sessions (list, revoke, sign out)
# - two-factor setup and recovery codes
# - account deletion with a grace period
#
# Emailed links carry one-time VerificationTokens; every consumed token is
# deleted.
# =============================================================================

import logging
from datetime import timedelta
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from app.auth import security
from app.config import settings
from app.exceptions import (
    EmailInUseError,
    EmailNotVerifiedError,
    InvalidCredentialsError,
    InvalidInputError,
    InvalidTokenError,
    TwoFactorError,
    UnauthorizedError,
)
from core.models.account import ProfileUpdateRequest, SignUpRequest
from lib.mailer import Mailer
from lib.orm import RecoveryCode, Upload, User, UserSession, VerificationToken, utcnow
from lib.session_info import describe_session

logger = logging.getLogger(__name__)

# Token kinds and lifetimes
EMAIL_VERIFICATION = "email_verification"
PASSWORD_RESET = "password_reset"
EMAIL_CHANGE = "email_change"
ACCOUNT_DELETION = "account_deletion"

TOKEN_LIFETIMES: dict[str, timedelta] = {
    EMAIL_VERIFICATION: timedelta(hours=24),
    PASSWORD_RESET: timedelta(hours=1),
    EMAIL_CHANGE: timedelta(hours=1),
    ACCOUNT_DELETION: timedelta(hours=1),
}


class AccountService:
    """Service for account, authentication and session operations."""

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def get_user(db: Session, user_id: str) -> User:
        user = db.get(User, user_id)
        if user is None:
            raise UnauthorizedError()
        return user

    @staticmethod
    def find_by_email(db: Session, email: str) -> User | None:
        return db.scalars(select(User).where(User.email == email.lower())).first()

    @staticmethod
    def _issue_token(db: Session, identifier: str, kind: str, payload: str | None = None) -> str:
        """Create a one-time token, replacing any earlier one of the same kind."""
        db.execute(
            delete(VerificationToken).where(
                VerificationToken.identifier == identifier,
                VerificationToken.kind == kind,
            )
        )
        token = security.generate_token()
        db.add(VerificationToken(
            identifier=identifier,
            token=token,
            kind=kind,
            payload=payload,
            expires_at=utcnow() + TOKEN_LIFETIMES[kind],
        ))
        return token

    @staticmethod
    def _consume_token(db: Session, token: str, kind: str) -> VerificationToken:
        """
        Look up and delete a one-time token.

        Raises:
            InvalidTokenError: If the token is unknown, of another kind or expired
        """
        record = db.scalars(
            select(VerificationToken).where(
                VerificationToken.token == token,
                VerificationToken.kind == kind,
            )
        ).first()

        if record is None:
            raise InvalidTokenError()

        db.delete(record)
        if record.expires_at < utcnow():
            db.commit()
            raise InvalidTokenError()

        return record

    @staticmethod
    def _revoke_sessions(db: Session, user_id: str, keep_session_id: str | None = None) -> int:
        query = (
            update(UserSession)
            .where(UserSession.user_id == user_id, UserSession.revoked_at.is_(None))
            .values(revoked_at=utcnow())
        )
        if keep_session_id:
            query = query.where(UserSession.id != keep_session_id)
        return db.execute(query).rowcount or 0

    # -------------------------------------------------------------------------
    # Sign-up & verification
    # -------------------------------------------------------------------------

    @staticmethod
    def sign_up(db: Session, data: SignUpRequest) -> User:
        """
        Register an account and email a verification link.

        Raises:
            EmailInUseError: If the email is already registered
        """
        email = str(data.email).lower()
        if AccountService.find_by_email(db, email):
            raise EmailInUseError()

        user = User(
            name=data.full_name,
            email=email,
            password_hash=security.hash_password(data.password),
        )
        db.add(user)
        token = AccountService._issue_token(db, email, EMAIL_VERIFICATION)
        db.commit()

        Mailer.send_verification_email(email, token)
        logger.info(f"Registered user: {user.id}")
        return user

    @staticmethod
    def resend_verification(db: Session, email: str) -> None:
        """Re-send the verification link; silent for unknown or verified emails."""
        user = AccountService.find_by_email(db, email)
        if user is None or user.email_verified_at is not None:
            return

        token = AccountService._issue_token(db, user.email, EMAIL_VERIFICATION)
        db.commit()
        Mailer.send_verification_email(user.email, token)

    @staticmethod
    def verify_email(db: Session, token: str) -> User:
        record = AccountService._consume_token(db, token, EMAIL_VERIFICATION)

        user = AccountService.find_by_email(db, record.identifier)
        if user is None:
            db.commit()
            raise InvalidTokenError()

        user.email_verified_at = user.email_verified_at or utcnow()
        db.commit()

        logger.info(f"Verified email for user: {user.id}")
        return user

    # -------------------------------------------------------------------------
    # Sign-in
    # -------------------------------------------------------------------------

    @staticmethod
    def create_session(
        db: Session,
        user: User,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> dict[str, Any]:
        """
        Open a device session and issue its access token.

        Returns:
            Dict shaped like AuthTokenResponse
        """
        session_token = security.generate_token()
        access_token, expires_at = security.create_access_token(user.id, user.email, session_token)

        db.add(UserSession(
            user_id=user.id,
            session_token=session_token,
            ip_address=ip_address,
            user_agent=user_agent,
            expires_at=expires_at,
            **describe_session(user_agent, ip_address),
        ))
        db.commit()

        logger.info(f"Opened session for user: {user.id}")
        return {"access_token": access_token, "expires_at": expires_at}

    @staticmethod
    def sign_in(
        db: Session,
        email: str,
        password: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> dict[str, Any]:
        """
        Password step of sign-in.

        Signing in cancels a pending account deletion. When 2FA is enabled no
        session is created; a challenge token is returned instead.

        Raises:
            InvalidCredentialsError: If the email/password pair is wrong
            EmailNotVerifiedError: If the email hasn't been confirmed
        """
        user = AccountService.find_by_email(db, email)
        if user is None or not security.verify_password(password, user.password_hash):
            raise InvalidCredentialsError()

        if user.email_verified_at is None:
            raise EmailNotVerifiedError()

        if user.deletion_scheduled_at is not None:
            user.deletion_scheduled_at = None
            db.commit()
            logger.info(f"Sign-in cancelled scheduled deletion for user: {user.id}")

        if user.two_factor_enabled:
            return {
                "two_factor_required": True,
                "challenge_token": security.create_challenge_token(user.id),
            }

        return AccountService.create_session(db, user, ip_address, user_agent)

    @staticmethod
    def sign_in_with_totp(
        db: Session,
        challenge_token: str,
        code: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> dict[str, Any]:
        """
        Second sign-in step with an authenticator code.

        Raises:
            InvalidTokenError: If the challenge token is invalid or expired
            TwoFactorError: If the code is wrong
        """
        user = db.get(User, security.decode_challenge_token(challenge_token))
        if user is None or not user.two_factor_enabled:
            raise InvalidTokenError()

        if not security.verify_totp(user.two_factor_secret, code):
            raise TwoFactorError("Invalid two-factor code.")

        return AccountService.create_session(db, user, ip_address, user_agent)

    @staticmethod
    def sign_in_with_recovery_code(
        db: Session,
        challenge_token: str,
        recovery_code: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> dict[str, Any]:
        """
        Second sign-in step with a single-use recovery code.

        Raises:
            InvalidTokenError: If the challenge token is invalid or expired
            TwoFactorError: If the code is unknown or already used
        """
        user = db.get(User, security.decode_challenge_token(challenge_token))
        if user is None or not user.two_factor_enabled:
            raise InvalidTokenError()

        code = db.scalars(
            select(RecoveryCode).where(
                RecoveryCode.user_id == user.id,
                RecoveryCode.code_hash == security.hash_recovery_code(recovery_code),
                RecoveryCode.used_at.is_(None),
            )
        ).first()
        if code is None:
            raise TwoFactorError("Invalid recovery code.")

        code.used_at = utcnow()
        logger.info(f"Recovery code used by user: {user.id}")
        return AccountService.create_session(db, user, ip_address, user_agent)

    @staticmethod
    def sign_out(db: Session, session_id: str) -> None:
        session = db.get(UserSession, session_id)
        if session is not None and session.revoked_at is None:
            session.revoked_at = utcnow()
            db.commit()

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    @staticmethod
    def list_sessions(db: Session, user_id: str) -> list[UserSession]:
        """Active sessions, most recently used first."""
        sessions = db.scalars(
            select(UserSession)
            .where(UserSession.user_id == user_id, UserSession.revoked_at.is_(None))
            .order_by(UserSession.last_active_at.desc())
        )
        return [s for s in sessions if s.is_active]

    @staticmethod
    def revoke_session(db: Session, user_id: str, session_id: str) -> None:
        session = db.get(UserSession, session_id)
        if session is None or session.user_id != user_id:
            raise InvalidInputError("Session not found.")

        session.revoked_at = session.revoked_at or utcnow()
        db.commit()
        logger.info(f"Revoked session {session_id} for user: {user_id}")

    @staticmethod
    def revoke_other_sessions(db: Session, user_id: str, current_session_id: str | None) -> int:
        count = AccountService._revoke_sessions(db, user_id, keep_session_id=current_session_id)
        db.commit()
        logger.info(f"Revoked {count} other session(s) for user: {user_id}")
        return count

    # -------------------------------------------------------------------------
    # Passwords
    # -------------------------------------------------------------------------

    @staticmethod
    def check_password(db: Session, user_id: str, password: str) -> bool:
        user = AccountService.get_user(db, user_id)
        return security.verify_password(password, user.password_hash)

    @staticmethod
    def forgot_password(db: Session, email: str) -> None:
        """Email a reset link. Unknown addresses are ignored silently."""
        user = AccountService.find_by_email(db, email)
        if user is None:
            logger.info("Password reset requested for unknown email")
            return

        token = AccountService._issue_token(db, user.email, PASSWORD_RESET)
        db.commit()
        Mailer.send_password_reset_email(user.email, token)

    @staticmethod
    def reset_password(db: Session, token: str, new_password: str) -> None:
        """Set a new password from a reset link and sign out every device."""
        record = AccountService._consume_token(db, token, PASSWORD_RESET)

        user = AccountService.find_by_email(db, record.identifier)
        if user is None:
            db.commit()
            raise InvalidTokenError()

        user.password_hash = security.hash_password(new_password)
        # The reset link proves ownership of the inbox
        user.email_verified_at = user.email_verified_at or utcnow()
        revoked = AccountService._revoke_sessions(db, user.id)
        db.commit()

        logger.info(f"Password reset for user: {user.id} ({revoked} session(s) revoked)")

    @staticmethod
    def change_password(
        db: Session,
        user_id: str,
        current_password: str,
        new_password: str,
        current_session_id: str | None = None,
    ) -> None:
        """
        Change the password and sign out every other device.

        Raises:
            InvalidCredentialsError: If the current password is wrong
        """
        user = AccountService.get_user(db, user_id)
        if not security.verify_password(current_password, user.password_hash):
            raise InvalidCredentialsError("Incorrect current password.")

        user.password_hash = security.hash_password(new_password)
        AccountService._revoke_sessions(db, user.id, keep_session_id=current_session_id)
        db.commit()
        logger.info(f"Password changed for user: {user.id}")

    # -------------------------------------------------------------------------
    # Email change & profile
    # -------------------------------------------------------------------------

    @staticmethod
    def request_email_change(db: Session, user_id: str, new_email: str, current_password: str) -> None:
        """
        Email a confirmation link to the new address.

        Raises:
            InvalidCredentialsError: If the password is wrong
            EmailInUseError: If the new address belongs to another account
            InvalidInputError: If the new address is the current one
        """
        user = AccountService.get_user(db, user_id)
        new_email = new_email.lower()

        if not security.verify_password(current_password, user.password_hash):
            raise InvalidCredentialsError("Incorrect password.")
        if new_email == user.email:
            raise InvalidInputError("New email must be different from the current email.")
        if AccountService.find_by_email(db, new_email):
            raise EmailInUseError("This email is already in use.")

        token = AccountService._issue_token(db, user.email, EMAIL_CHANGE, payload=new_email)
        db.commit()
        Mailer.send_email_change_verification(new_email, token)

    @staticmethod
    def verify_email_change(db: Session, token: str) -> User:
        record = AccountService._consume_token(db, token, EMAIL_CHANGE)

        user = AccountService.find_by_email(db, record.identifier)
        if user is None or not record.payload:
            db.commit()
            raise InvalidTokenError()
        if AccountService.find_by_email(db, record.payload):
            db.commit()
            raise EmailInUseError("This email is already in use.")

        user.email = record.payload
        user.email_verified_at = utcnow()
        db.commit()

        logger.info(f"Email changed for user: {user.id}")
        return user

    @staticmethod
    def update_profile(db: Session, user_id: str, data: ProfileUpdateRequest) -> User:
        user = AccountService.get_user(db, user_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(user, field, value)
        db.commit()
        return user

    # -------------------------------------------------------------------------
    # Two-factor
    # -------------------------------------------------------------------------

    @staticmethod
    def setup_two_factor(db: Session, user_id: str) -> dict[str, str]:
        """
        Generate a TOTP secret for the authenticator app.

        2FA stays off until enable_two_factor() confirms a code.
        """
        user = AccountService.get_user(db, user_id)
        if user.two_factor_enabled:
            raise TwoFactorError("Two-factor authentication is already enabled.")

        user.two_factor_secret = security.generate_totp_secret()
        db.commit()
        return {
            "secret": user.two_factor_secret,
            "otpauth_url": security.totp_provisioning_uri(user.two_factor_secret, user.email),
        }

    @staticmethod
    def _replace_recovery_codes(db: Session, user: User) -> list[str]:
        db.execute(delete(RecoveryCode).where(RecoveryCode.user_id == user.id))
        codes = security.generate_recovery_codes()
        for code in codes:
            db.add(RecoveryCode(user_id=user.id, code_hash=security.hash_recovery_code(code)))
        return codes

    @staticmethod
    def enable_two_factor(db: Session, user_id: str, code: str) -> list[str]:
        """
        Turn 2FA on after the first authenticator code checks out.

        Returns:
            Freshly generated recovery codes (shown once)
        """
        user = AccountService.get_user(db, user_id)
        if user.two_factor_enabled:
            raise TwoFactorError("Two-factor authentication is already enabled.")
        if not user.two_factor_secret:
            raise TwoFactorError("Two-factor setup has not been started.")
        if not security.verify_totp(user.two_factor_secret, code):
            raise TwoFactorError("Invalid two-factor code.")

        user.two_factor_enabled = True
        codes = AccountService._replace_recovery_codes(db, user)
        db.commit()

        Mailer.send_two_factor_enabled(user.email)
        logger.info(f"Enabled 2FA for user: {user.id}")
        return codes

    @staticmethod
    def disable_two_factor(db: Session, user_id: str, password: str | None) -> None:
        user = AccountService.get_user(db, user_id)
        if user.password_hash and not security.verify_password(password or "", user.password_hash):
            raise InvalidCredentialsError("Incorrect password.")

        user.two_factor_enabled = False
        user.two_factor_secret = None
        db.execute(delete(RecoveryCode).where(RecoveryCode.user_id == user.id))
        db.commit()
        logger.info(f"Disabled 2FA for user: {user.id}")

    @staticmethod
    def regenerate_recovery_codes(db: Session, user_id: str, password: str | None) -> list[str]:
        user = AccountService.get_user(db, user_id)
        if not user.two_factor_enabled:
            raise TwoFactorError("Two-factor authentication is not enabled.")
        if user.password_hash and not security.verify_password(password or "", user.password_hash):
            raise InvalidCredentialsError("Incorrect password.")

        codes = AccountService._replace_recovery_codes(db, user)
        db.commit()
        return codes

    @staticmethod
    def get_recovery_code_status(db: Session, user_id: str) -> dict[str, int]:
        codes = list(db.scalars(select(RecoveryCode).where(RecoveryCode.user_id == user_id)))
        return {
            "total": len(codes),
            "remaining": sum(1 for c in codes if c.used_at is None),
        }

    # -------------------------------------------------------------------------
    # Account deletion
    # -------------------------------------------------------------------------

    @staticmethod
    def request_account_deletion(db: Session, user_id: str, password: str | None) -> None:
        """Email a confirmation link; nothing is scheduled until it is followed."""
        user = AccountService.get_user(db, user_id)
        if user.password_hash and not security.verify_password(password or "", user.password_hash):
            raise InvalidCredentialsError("Incorrect password.")

        token = AccountService._issue_token(db, user.email, ACCOUNT_DELETION)
        db.commit()
        Mailer.send_account_deletion_request(user.email, token)

    @staticmethod
    def confirm_account_deletion(db: Session, token: str) -> User:
        """Schedule deletion after the grace period and sign out every device."""
        record = AccountService._consume_token(db, token, ACCOUNT_DELETION)

        user = AccountService.find_by_email(db, record.identifier)
        if user is None:
            db.commit()
            raise InvalidTokenError()

        user.deletion_scheduled_at = utcnow() + timedelta(days=settings.DELETION_GRACE_PERIOD_DAYS)
        AccountService._revoke_sessions(db, user.id)
        db.commit()

        Mailer.send_account_deletion_scheduled(user.email, settings.DELETION_GRACE_PERIOD_DAYS)
        logger.info(f"Scheduled deletion of user {user.id} at {user.deletion_scheduled_at}")
        return user

    @staticmethod
    def cancel_account_deletion(db: Session, user_id: str) -> None:
        user = AccountService.get_user(db, user_id)
        user.deletion_scheduled_at = None
        db.commit()

    @staticmethod
    def get_due_deletions(db: Session) -> list[str]:
        """Ids of users whose deletion grace period has ended."""
        return list(db.scalars(
            select(User.id).where(
                User.deletion_scheduled_at.is_not(None),
                User.deletion_scheduled_at <= utcnow(),
            )
        ))

    @staticmethod
    def delete_account(db: Session, user_id: str) -> tuple[str, list[str]] | None:
        """
        Permanently delete a user and everything they own.

        Returns:
            (email, storage keys to remove), or None if the user is gone or
            the deletion was cancelled meanwhile
        """
        user = db.get(User, user_id)
        if user is None or user.deletion_scheduled_at is None:
            return None

        keys = list(db.scalars(select(Upload.key).where(Upload.user_id == user.id)))
        if user.image_key:
            keys.append(user.image_key)

        email = user.email
        db.delete(user)
        db.commit()

        logger.info(f"Deleted account: {user_id}")
        return email, keys
