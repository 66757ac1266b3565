"""
Notification Delivery

Email providers and the delivery error taxonomy used by the digest worker.

Usage:
    from notifications import create_email_provider

    provider = create_email_provider(get_settings().email)
    message_id = provider.send_html("asha@example.com", "Daily update", html)
"""

from .errors import (
    ConfigurationError,
    EmailDeliveryError,
    JobError,
    PermanentJobError,
    RecipientNotFoundError,
    TransientJobError,
    describe_error,
)
from .email_provider import (
    EmailProvider,
    EmailMessage,
    DeliveryResult,
    DeliveryStatus,
    NullEmailProvider,
    create_email_provider,
)

__all__ = [
    # Errors
    "ConfigurationError",
    "EmailDeliveryError",
    "JobError",
    "PermanentJobError",
    "RecipientNotFoundError",
    "TransientJobError",
    "describe_error",
    # Providers
    "EmailProvider",
    "EmailMessage",
    "DeliveryResult",
    "DeliveryStatus",
    "NullEmailProvider",
    "create_email_provider",
]
