"""
Email Provider Abstraction

Unified interface for email delivery providers.

Supports:
- SendGrid (recommended for production)
- SMTP (for self-hosted mail servers)
- Null (development; logs instead of sending)

The digest worker only uses ``send_html``, which raises EmailDeliveryError
on any failure and returns the provider message id on success.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from config.settings import ConfigurationError, EmailSettings
from .errors import EmailDeliveryError

logger = logging.getLogger(__name__)


class DeliveryStatus(str, Enum):
    """Email delivery status."""
    SENT = "sent"
    BOUNCED = "bounced"
    FAILED = "failed"


@dataclass
class EmailMessage:
    """Email message to be sent."""
    to: str
    subject: str
    body_html: Optional[str] = None
    body_text: Optional[str] = None
    from_email: Optional[str] = None
    from_name: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)

    def validate(self) -> bool:
        """Validate message has required fields."""
        if not self.to:
            raise ValueError("Recipient email (to) is required")
        if not self.subject:
            raise ValueError("Subject is required")
        if not self.body_html and not self.body_text:
            raise ValueError("Either body_html or body_text is required")
        return True


@dataclass
class DeliveryResult:
    """Result of email delivery attempt."""
    success: bool
    status: DeliveryStatus
    message_id: Optional[str] = None
    provider: Optional[str] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "success": self.success,
            "status": self.status.value,
            "message_id": self.message_id,
            "provider": self.provider,
            "error_message": self.error_message,
            "error_code": self.error_code,
            "timestamp": self.timestamp.isoformat(),
        }


class EmailProvider(ABC):
    """Abstract base class for email providers."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return provider name for logging."""
        pass

    @abstractmethod
    def send(self, message: EmailMessage) -> DeliveryResult:
        """
        Send an email message.

        Args:
            message: Email message to send

        Returns:
            DeliveryResult with success/failure status
        """
        pass

    @abstractmethod
    def is_configured(self) -> bool:
        """Check if provider is properly configured."""
        pass

    def send_html(self, to: str, subject: str, html: str) -> str:
        """
        Send an HTML email and return the provider's message id.

        Raises:
            EmailDeliveryError: the provider did not accept the message
        """
        message = EmailMessage(to=to, subject=subject, body_html=html)
        try:
            message.validate()
        except ValueError as e:
            raise EmailDeliveryError(str(e), provider=self.provider_name, error_code="INVALID_MESSAGE")

        result = self.send(message)
        if not result.success:
            raise EmailDeliveryError(
                result.error_message or f"{self.provider_name} delivery failed",
                provider=self.provider_name,
                error_code=result.error_code,
            )
        return result.message_id or f"{self.provider_name}-{uuid.uuid4()}"


class NullEmailProvider(EmailProvider):
    """
    Null provider for testing/development.

    Logs emails but doesn't send them.
    """

    @property
    def provider_name(self) -> str:
        return "null"

    def send(self, message: EmailMessage) -> DeliveryResult:
        """Log email without sending."""
        message.validate()
        logger.info(
            f"[NULL PROVIDER] Would send email to {message.to}: {message.subject}"
        )
        return DeliveryResult(
            success=True,
            status=DeliveryStatus.SENT,
            message_id=f"null-{uuid.uuid4()}",
            provider=self.provider_name,
        )

    def is_configured(self) -> bool:
        """Always configured (it's a null provider)."""
        return True


def create_email_provider(settings: EmailSettings) -> EmailProvider:
    """
    Build the provider selected by EMAIL_PROVIDER.

    Args:
        settings: Email settings

    Returns:
        Configured EmailProvider instance

    Raises:
        ConfigurationError: credentials for the selected provider are missing
    """
    errors = settings.missing_credentials()
    if errors:
        raise ConfigurationError("; ".join(errors))

    if settings.provider == "sendgrid":
        from .sendgrid_provider import SendGridProvider
        provider = SendGridProvider(
            api_key=settings.sendgrid_api_key,
            from_email=settings.from_email,
            from_name=settings.from_name,
        )
    elif settings.provider == "smtp":
        from .smtp_provider import SMTPProvider
        provider = SMTPProvider(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            timeout=settings.smtp_timeout,
            from_email=settings.from_email,
            from_name=settings.from_name,
        )
    else:
        logger.warning(
            "No email provider configured. Emails will be logged but not sent. "
            "Set EMAIL_PROVIDER=sendgrid or EMAIL_PROVIDER=smtp to enable delivery."
        )
        provider = NullEmailProvider()

    logger.info(f"Email provider: {provider.provider_name}")
    return provider
