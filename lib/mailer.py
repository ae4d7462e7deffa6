# =============================================================================
# lib/mailer.py - Transactional Email
# =============================================================================
# Sends account emails (verification, password reset, email change, 2FA and
# deletion notices) over SMTP.
#
# Usage:
#   from lib.mailer import Mailer
#   Mailer.send_verification_email("user@example.com", token)
# =============================================================================

import logging
import smtplib
from email.message import EmailMessage

from app.config import settings

logger = logging.getLogger(__name__)


class Mailer:
    """
    Thin SMTP sender with one helper per email template.

    When MAIL_ENABLED is false, messages are logged instead of sent.
    """

    @staticmethod
    def send(to: str, subject: str, body: str) -> None:
        """
        Send a plain-text email.

        Raises:
            smtplib.SMTPException: If the SMTP server rejects the message
        """
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = settings.MAIL_FROM
        msg["To"] = to
        msg.set_content(body)

        if not settings.MAIL_ENABLED:
            logger.info(f"Mail disabled; would send '{subject}' to {to}")
            return

        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=30) as smtp:
            if settings.SMTP_USE_TLS:
                smtp.starttls()
            if settings.SMTP_USERNAME and settings.SMTP_PASSWORD:
                smtp.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
            smtp.send_message(msg)

        logger.info(f"Sent '{subject}' to {to}")

    # -------------------------------------------------------------------------
    # Templates
    # -------------------------------------------------------------------------

    @staticmethod
    def send_verification_email(email: str, token: str) -> None:
        link = f"{settings.APP_URL}/verification?token={token}"
        Mailer.send(
            email,
            "Verify your MortiScope account",
            f"Welcome to MortiScope.\n\nConfirm your email address:\n{link}\n\n"
            "The link expires in 24 hours.",
        )

    @staticmethod
    def send_password_reset_email(email: str, token: str) -> None:
        link = f"{settings.APP_URL}/reset-password?token={token}"
        Mailer.send(
            email,
            "Reset your MortiScope password",
            f"Someone requested a password reset for this account.\n\n{link}\n\n"
            "The link expires in 1 hour. Ignore this email if it wasn't you.",
        )

    @staticmethod
    def send_email_change_verification(new_email: str, token: str) -> None:
        link = f"{settings.APP_URL}/account/verify-email-change?token={token}"
        Mailer.send(
            new_email,
            "Confirm your new email address",
            f"Confirm this address for your MortiScope account:\n{link}",
        )

    @staticmethod
    def send_account_deletion_request(email: str, token: str) -> None:
        link = f"{settings.APP_URL}/account/confirm-deletion?token={token}"
        Mailer.send(
            email,
            "Confirm account deletion",
            f"Follow this link to confirm deleting your MortiScope account:\n{link}\n\n"
            f"Your account will be removed {settings.DELETION_GRACE_PERIOD_DAYS} days after "
            "confirmation. Signing in during that period cancels the deletion.",
        )

    @staticmethod
    def send_account_deletion_scheduled(email: str, grace_days: int) -> None:
        Mailer.send(
            email,
            "Your account is scheduled for deletion",
            f"Your MortiScope account will be permanently deleted in {grace_days} days.\n"
            "Sign in before then to cancel.",
        )

    @staticmethod
    def send_goodbye_email(email: str) -> None:
        Mailer.send(
            email,
            "Your MortiScope account has been deleted",
            "Your account and all associated case data have been permanently removed.",
        )

    @staticmethod
    def send_two_factor_enabled(email: str) -> None:
        Mailer.send(
            email,
            "Two-factor authentication enabled",
            "Two-factor authentication is now on for your MortiScope account. "
            "Keep your recovery codes somewhere safe.",
        )
