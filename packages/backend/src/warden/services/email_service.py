"""Email delivery — the only outbound I/O in the auth flows.

Learn: The auth services depend on the small Mailer interface, not on SMTP.
EmailService is the production implementation: smtplib runs in a worker
thread and the whole send is bounded by email_timeout_seconds. Any
failure, timeout included, surfaces as DeliveryError. Nothing is retried
here; the caller decides.

When no SMTP host is configured (local dev), messages are logged instead
of sent.
"""

import asyncio
import smtplib
import ssl
from abc import ABC, abstractmethod
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import structlog

from warden.config import Settings
from warden.services.errors import DeliveryError

logger = structlog.get_logger()


def redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class Mailer(ABC):
    """Send one message to one address."""

    @abstractmethod
    async def send(
        self, to: str, subject: str, text_body: str, html_body: str
    ) -> None:
        """Deliver the message or raise DeliveryError."""


class EmailService(Mailer):
    """SMTP mailer with a hard timeout."""

    def __init__(self, settings: Settings):
        self.smtp_host = settings.smtp_host
        self.smtp_port = settings.smtp_port
        self.smtp_user = settings.smtp_user
        self.smtp_password = settings.smtp_password
        self.use_ssl = settings.smtp_use_ssl
        self.from_name = settings.email_from_name
        self.from_address = settings.email_from_address or settings.smtp_user
        self.timeout = settings.email_timeout_seconds

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_address)

    async def send(
        self, to: str, subject: str, text_body: str, html_body: str
    ) -> None:
        if not self.is_configured:
            # Dev mode: log the email instead of sending
            logger.info(
                "email.dev_mode",
                to=redact_email(to),
                subject=subject,
                body_preview=text_body[:200],
            )
            return

        message = self._build(to, subject, text_body, html_body)
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._deliver, to, message),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.error(
                "email.timeout",
                to=redact_email(to),
                host=self.smtp_host,
                timeout=self.timeout,
            )
            raise DeliveryError()
        except (smtplib.SMTPException, ssl.SSLError, OSError) as e:
            logger.error(
                "email.send_failed",
                to=redact_email(to),
                host=self.smtp_host,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise DeliveryError() from e

        logger.info("email.sent", to=redact_email(to), subject=subject)

    def _build(self, to: str, subject: str, text_body: str, html_body: str) -> str:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_address}>"
        msg["To"] = to
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))
        return msg.as_string()

    def _deliver(self, to: str, message: str) -> None:
        context = ssl.create_default_context()
        if self.use_ssl:
            server = smtplib.SMTP_SSL(
                self.smtp_host, self.smtp_port, context=context, timeout=self.timeout
            )
        else:
            server = smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout)
        with server:
            if not self.use_ssl:
                server.starttls(context=context)
            if self.smtp_user and self.smtp_password:
                server.login(self.smtp_user, self.smtp_password)
            server.sendmail(self.from_address, to, message)


# ─── Message templates ──────────────────────────────────────


_HTML_SHELL = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #1f2933;">
  <div style="max-width: 600px; margin: 0 auto; padding: 40px 20px;">
    {content}
    <p style="margin-top: 40px; font-size: 12px; color: #5b6470;">{footer}</p>
  </div>
</body>
</html>
"""


def two_factor_message(code: str, expire_minutes: int) -> tuple[str, str, str]:
    """(subject, text, html) for a login verification code."""
    subject = "Your verification code"
    text = (
        f"Your verification code is: {code}\n\n"
        f"It expires in {expire_minutes} minutes.\n\n"
        "If you did not try to sign in, change your password.\n"
    )
    html = _HTML_SHELL.format(
        content=(
            "<h1>Verification code</h1>"
            f'<p style="font-size: 32px; letter-spacing: 6px; font-weight: 600;">{code}</p>'
            f"<p>It expires in {expire_minutes} minutes.</p>"
        ),
        footer="If you did not try to sign in, change your password.",
    )
    return subject, text, html


def password_reset_message(reset_url: str, expire_hours: int) -> tuple[str, str, str]:
    """(subject, text, html) for a password reset link."""
    subject = "Reset your password"
    text = (
        "We received a request to reset your password. "
        "Visit the link below to choose a new one:\n\n"
        f"{reset_url}\n\n"
        f"This link expires in {expire_hours} hours.\n\n"
        "If you didn't request this, you can safely ignore this email.\n"
    )
    html = _HTML_SHELL.format(
        content=(
            "<h1>Reset your password</h1>"
            "<p>We received a request to reset your password.</p>"
            f'<p style="margin: 30px 0;"><a href="{reset_url}">Reset Password</a></p>'
            f"<p>This link expires in {expire_hours} hours.</p>"
        ),
        footer=f"If the link doesn't work, copy and paste this URL: {reset_url}",
    )
    return subject, text, html

