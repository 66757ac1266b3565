"""
SendGrid Email Provider

Production SendGrid integration for digest delivery.

Configuration (see EmailSettings):
    EMAIL_SENDGRID_API_KEY: SendGrid API key (required)
    EMAIL_FROM_EMAIL: Sender email
    EMAIL_FROM_NAME: Sender name
"""

import logging
from typing import Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Content, Email, Mail, Personalization, To

from .email_provider import (
    EmailProvider,
    EmailMessage,
    DeliveryResult,
    DeliveryStatus,
)

logger = logging.getLogger(__name__)


class SendGridProvider(EmailProvider):
    """SendGrid email provider."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_email: str = "no-reply@example.com",
        from_name: str = "Practice Digest",
    ):
        """
        Initialize SendGrid provider.

        Args:
            api_key: SendGrid API key
            from_email: Default sender email
            from_name: Default sender name
        """
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self._client = None

    @property
    def provider_name(self) -> str:
        return "sendgrid"

    def _get_client(self) -> SendGridAPIClient:
        """Lazy-load SendGrid client."""
        if self._client is None:
            self._client = SendGridAPIClient(api_key=self.api_key)
        return self._client

    def is_configured(self) -> bool:
        """Check if SendGrid is properly configured."""
        return bool(self.api_key)

    def send(self, message: EmailMessage) -> DeliveryResult:
        """
        Send email via SendGrid.

        Args:
            message: Email message to send

        Returns:
            DeliveryResult with SendGrid message ID
        """
        if not self.is_configured():
            return DeliveryResult(
                success=False,
                status=DeliveryStatus.FAILED,
                provider=self.provider_name,
                error_message="SendGrid API key not configured",
                error_code="NOT_CONFIGURED",
            )

        message.validate()

        try:
            mail = Mail()
            mail.from_email = Email(
                message.from_email or self.from_email,
                message.from_name or self.from_name,
            )
            mail.subject = message.subject

            personalization = Personalization()
            personalization.add_to(To(message.to))
            mail.add_personalization(personalization)

            if message.body_text:
                mail.add_content(Content("text/plain", message.body_text))
            if message.body_html:
                mail.add_content(Content("text/html", message.body_html))

            response = self._get_client().send(mail)

            if response.status_code in (200, 201, 202):
                message_id = response.headers.get("X-Message-Id", "")
                logger.info(
                    f"SendGrid: Email sent to {message.to}, "
                    f"message_id={message_id}"
                )
                return DeliveryResult(
                    success=True,
                    status=DeliveryStatus.SENT,
                    message_id=message_id,
                    provider=self.provider_name,
                )

            error_msg = f"SendGrid returned status {response.status_code}"
            logger.error(f"SendGrid error: {error_msg}, body={response.body}")
            return DeliveryResult(
                success=False,
                status=DeliveryStatus.FAILED,
                provider=self.provider_name,
                error_message=error_msg,
                error_code=str(response.status_code),
            )

        except Exception as e:
            # python-http-client raises HTTPError subclasses for 4xx/5xx
            logger.error(f"SendGrid send error: {e}")
            return DeliveryResult(
                success=False,
                status=DeliveryStatus.FAILED,
                provider=self.provider_name,
                error_message=str(e),
                error_code="SEND_ERROR",
            )
