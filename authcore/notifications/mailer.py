"""SMTP delivery of account verification links.

Delivery is best effort: every failure is logged here and absorbed, so signup
never depends on the mail server being reachable.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Any
from urllib.parse import urlencode

from ..config import MailSettings

logger = logging.getLogger(__name__)

SUBJECT = "Verify Your Account"

_BODY_TEMPLATE = """Hello {username},

Thank you for signing up! Please verify your email address by opening the link below:

{link}

This link will expire in {ttl_hours} hours.

If you did not create an account, please ignore this email.
"""


class SmtpVerificationNotifier:
    """Sends verification links through an SMTP relay."""

    def __init__(self, settings: MailSettings, *, ttl_hours: int = 24) -> None:
        self._settings = settings
        self._ttl_hours = ttl_hours

    def verification_link(self, token_secret: str) -> str:
        return f"{self._settings.base_url}/v1/verify?{urlencode({'token': token_secret})}"

    def build_message(self, email: str, username: str, token_secret: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self._settings.sender
        message["To"] = email
        message["Subject"] = SUBJECT
        message.set_content(
            _BODY_TEMPLATE.format(
                username=username,
                link=self.verification_link(token_secret),
                ttl_hours=self._ttl_hours,
            )
        )
        return message

    def notify_verification(self, email: str, username: str, token_secret: str) -> None:
        """Send the verification link to ``email``; never raises."""
        if not self._settings.enabled:
            logger.warning("mail delivery disabled, skipping verification email to %s", email)
            logger.info("verification token for %s: %s", username, token_secret)
            return

        try:
            self._send(self.build_message(email, username, token_secret))
        except smtplib.SMTPAuthenticationError as exc:
            logger.error(
                "smtp authentication failed sending to %s: %s; check SMTP_USERNAME/SMTP_PASSWORD",
                email,
                exc,
            )
        except (smtplib.SMTPException, OSError) as exc:
            logger.error(
                "failed to send verification email to %s: %s (%s)", email, exc, type(exc).__name__
            )
        except Exception:
            logger.exception("unexpected error sending verification email to %s", email)
        else:
            logger.info("verification email sent to %s", email)

    def send_test_message(self, recipient: str) -> str | None:
        """Send a plain test message; return an error description, or None on success."""
        if not self._settings.enabled:
            return "mail delivery is disabled"
        message = EmailMessage()
        message["From"] = self._settings.sender
        message["To"] = recipient
        message["Subject"] = "Test Email"
        message.set_content("This is a test message confirming the SMTP configuration works.\n")
        try:
            self._send(message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("test email to %s failed: %s (%s)", recipient, exc, type(exc).__name__)
            return f"{type(exc).__name__}: {exc}"
        logger.info("test email sent to %s", recipient)
        return None

    def describe(self) -> dict[str, Any]:
        """Return the mail configuration with the SMTP password masked."""
        settings = self._settings
        return {
            "enabled": settings.enabled,
            "sender": settings.sender,
            "base_url": settings.base_url,
            "smtp_host": settings.smtp_host,
            "smtp_port": settings.smtp_port,
            "smtp_username": settings.smtp_username,
            "smtp_password": "***" if settings.smtp_password else "",
            "starttls": settings.use_starttls,
            "timeout_seconds": settings.timeout_seconds,
        }

    def _send(self, message: EmailMessage) -> None:
        settings = self._settings
        with smtplib.SMTP(
            settings.smtp_host, settings.smtp_port, timeout=settings.timeout_seconds
        ) as server:
            if settings.use_starttls:
                server.starttls()
            if settings.smtp_username:
                server.login(settings.smtp_username, settings.smtp_password)
            server.send_message(message)
