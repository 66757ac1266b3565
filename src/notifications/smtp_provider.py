"""
SMTP Email Provider

Standard SMTP integration for digest delivery.
Best for self-hosted mail servers.

Configuration (see EmailSettings):
    EMAIL_SMTP_HOST: SMTP server hostname
    EMAIL_SMTP_PORT: SMTP server port (default: 587)
    EMAIL_SMTP_USERNAME / EMAIL_SMTP_PASSWORD: authentication
    EMAIL_SMTP_USE_TLS: Use STARTTLS (default: True)
    EMAIL_SMTP_TIMEOUT: Socket timeout in seconds
"""

import logging
import smtplib
import ssl
import uuid
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Optional

from .email_provider import (
    EmailProvider,
    EmailMessage,
    DeliveryResult,
    DeliveryStatus,
)

logger = logging.getLogger(__name__)


class SMTPProvider(EmailProvider):
    """SMTP email provider with STARTTLS and basic authentication."""

    def __init__(
        self,
        host: Optional[str] = None,
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        timeout: float = 30.0,
        from_email: str = "no-reply@example.com",
        from_name: str = "Practice Digest",
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout
        self.from_email = from_email
        self.from_name = from_name

    @property
    def provider_name(self) -> str:
        return "smtp"

    def is_configured(self) -> bool:
        """Check if SMTP is properly configured."""
        return bool(self.host)

    def send(self, message: EmailMessage) -> DeliveryResult:
        """
        Send email via SMTP.

        Args:
            message: Email message to send

        Returns:
            DeliveryResult with status
        """
        if not self.is_configured():
            return DeliveryResult(
                success=False,
                status=DeliveryStatus.FAILED,
                provider=self.provider_name,
                error_message="SMTP not configured (missing EMAIL_SMTP_HOST)",
                error_code="NOT_CONFIGURED",
            )

        message.validate()

        try:
            msg = MIMEMultipart("alternative")

            from_email = message.from_email or self.from_email
            from_name = message.from_name or self.from_name
            msg["From"] = formataddr((from_name, from_email))
            msg["To"] = message.to
            msg["Subject"] = message.subject

            # Sanitize against CRLF injection
            for key, value in message.headers.items():
                if any(c in str(key) + str(value) for c in ('\r', '\n')):
                    logger.warning(f"Rejected email header with CRLF: {key!r}")
                    continue
                msg[key] = value

            if message.body_text:
                msg.attach(MIMEText(message.body_text, "plain", "utf-8"))
            if message.body_html:
                msg.attach(MIMEText(message.body_html, "html", "utf-8"))

            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls(context=ssl.create_default_context())
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.sendmail(from_email, [message.to], msg.as_string())

            logger.info(f"SMTP: Email sent to {message.to}")

            # SMTP doesn't return a message ID, generate one
            return DeliveryResult(
                success=True,
                status=DeliveryStatus.SENT,
                message_id=f"smtp-{uuid.uuid4()}",
                provider=self.provider_name,
            )

        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP auth error: {e}")
            return DeliveryResult(
                success=False,
                status=DeliveryStatus.FAILED,
                provider=self.provider_name,
                error_message=f"SMTP authentication failed: {e}",
                error_code="AUTH_ERROR",
            )
        except smtplib.SMTPRecipientsRefused as e:
            logger.error(f"SMTP recipients refused: {e}")
            return DeliveryResult(
                success=False,
                status=DeliveryStatus.BOUNCED,
                provider=self.provider_name,
                error_message=f"Recipients refused: {e}",
                error_code="RECIPIENTS_REFUSED",
            )
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP error: {e}")
            return DeliveryResult(
                success=False,
                status=DeliveryStatus.FAILED,
                provider=self.provider_name,
                error_message=str(e),
                error_code="SMTP_ERROR",
            )
