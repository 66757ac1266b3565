"""Application settings using Pydantic Settings.

Centralized configuration for the digest scheduler and delivery worker.

Startup requires a valid default time zone, a sane delivery window, and
credentials for the configured email provider:
- EMAIL_PROVIDER=sendgrid needs EMAIL_SENDGRID_API_KEY
- EMAIL_PROVIDER=smtp needs EMAIL_SMTP_HOST
- EMAIL_PROVIDER=null logs emails without sending (development only)
"""

import logging
import sys
from datetime import time
from functools import lru_cache
from typing import Annotated, List, Optional

import pytz
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration validation fails at startup."""
    pass


class RedisSettings(BaseSettings):
    """Redis configuration for the Celery broker."""

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        extra="ignore",
    )

    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    db: int = Field(default=0, description="Redis database number")
    password: Optional[str] = Field(default=None, description="Redis password")
    ssl: bool = Field(default=False, description="Use SSL for Redis connection")

    @property
    def url(self) -> str:
        """Get Redis URL."""
        auth = f":{self.password}@" if self.password else ""
        protocol = "rediss" if self.ssl else "redis"
        return f"{protocol}://{auth}{self.host}:{self.port}/{self.db}"


class CelerySettings(BaseSettings):
    """Celery task queue configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CELERY_",
        extra="ignore",
    )

    broker_db: int = Field(default=1, description="Redis DB for Celery broker")
    result_db: int = Field(default=2, description="Redis DB for Celery results")

    task_serializer: str = Field(default="json", description="Task serialization format")
    result_serializer: str = Field(default="json", description="Result serialization format")
    accept_content: list = Field(default=["json"], description="Accepted content types")

    task_acks_late: bool = Field(default=True, description="Acknowledge tasks after completion")
    task_reject_on_worker_lost: bool = Field(default=True, description="Requeue tasks if worker dies")

    worker_prefetch_multiplier: int = Field(default=1, description="Tasks to prefetch per worker")
    task_time_limit: int = Field(default=600, description="Hard task time limit in seconds")
    task_soft_time_limit: int = Field(default=540, description="Soft task time limit")

    beat_enabled: bool = Field(default=True, description="Register the digest beat schedule")
    worker_batch_schedule_seconds: float = Field(
        default=60.0,
        description="How often beat triggers a worker batch"
    )


class DigestSettings(BaseSettings):
    """Scheduling window, queue and retry policy for day-end digests."""

    model_config = SettingsConfigDict(
        env_prefix="DIGEST_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    job_type: str = Field(default="day_end_reminder", description="Job kind created by the scheduler")

    # Local window during which jobs may be created (inclusive, minute resolution)
    window_start: time = Field(default=time(18, 30), description="Window start, firm-local")
    window_end: time = Field(default=time(19, 0), description="Window end, firm-local")
    default_timezone: str = Field(
        default="Asia/Kolkata",
        description="Zone used for firms with no or an invalid time zone"
    )
    scheduler_interval_minutes: int = Field(default=15, ge=1, le=30, description="Scheduler tick")

    # Worker
    batch_size: int = Field(default=5, ge=1, le=500, description="Jobs fetched per poll")
    poll_interval_seconds: float = Field(default=10.0, ge=0, description="Idle sleep between polls")
    error_backoff_seconds: float = Field(default=5.0, ge=0, description="Sleep after a batch error")
    send_pacing_min_seconds: float = Field(default=0.0, ge=0, description="Min pause between sends")
    send_pacing_max_seconds: float = Field(default=0.0, ge=0, description="Max pause between sends")

    # Retry policy for failed jobs
    max_attempts: int = Field(default=3, ge=1, description="Attempts before a job stays failed")
    retry_base_delay_seconds: float = Field(default=300.0, ge=0, description="First retry delay")
    retry_max_delay_seconds: float = Field(default=3600.0, ge=0, description="Retry delay cap")
    retry_backoff_multiplier: float = Field(default=2.0, ge=1.0, description="Backoff multiplier")
    stale_claim_minutes: int = Field(
        default=30,
        ge=1,
        description="Claims older than this are released by release_stale_claims"
    )

    # Content
    manager_roles: Annotated[List[str], NoDecode] = Field(
        default=["manager", "partner"],
        description="Roles that receive the two-section digest"
    )
    subject: str = Field(default="Your daily task update", description="Digest subject line")
    brand_name: str = Field(default="Practice Digest", description="Name shown in the footer")

    @field_validator("default_timezone")
    @classmethod
    def validate_default_timezone(cls, v: str) -> str:
        """Reject zones pytz does not know."""
        try:
            pytz.timezone(v)
        except pytz.UnknownTimeZoneError:
            raise ValueError(f"Unknown time zone: {v}")
        return v

    @field_validator("manager_roles", mode="before")
    @classmethod
    def split_roles(cls, v):
        """Accept a comma-separated string from the environment."""
        if isinstance(v, str):
            return [role.strip() for role in v.split(",") if role.strip()]
        return v

    @model_validator(mode="after")
    def check_ranges(self) -> "DigestSettings":
        if self.window_start > self.window_end:
            raise ValueError("window_start must not be after window_end")
        if self.send_pacing_min_seconds > self.send_pacing_max_seconds:
            raise ValueError("send_pacing_min_seconds must not exceed send_pacing_max_seconds")
        return self

    def is_manager_role(self, role: Optional[str]) -> bool:
        """Check whether a role receives the aggregate digest."""
        return bool(role) and role.lower() in {r.lower() for r in self.manager_roles}


class EmailSettings(BaseSettings):
    """Outbound email provider configuration."""

    model_config = SettingsConfigDict(
        env_prefix="EMAIL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    provider: str = Field(default="null", description="sendgrid, smtp or null")
    from_email: str = Field(default="no-reply@example.com", description="Sender address")
    from_name: str = Field(default="Practice Digest", description="Sender display name")

    sendgrid_api_key: Optional[str] = Field(default=None, description="SendGrid API key")

    smtp_host: Optional[str] = Field(default=None, description="SMTP server hostname")
    smtp_port: int = Field(default=587, description="SMTP server port")
    smtp_username: Optional[str] = Field(default=None, description="SMTP username")
    smtp_password: Optional[str] = Field(default=None, description="SMTP password")
    smtp_use_tls: bool = Field(default=True, description="Use STARTTLS")
    smtp_timeout: float = Field(default=30.0, gt=0, description="SMTP socket timeout in seconds")

    @field_validator("provider")
    @classmethod
    def normalize_provider(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("sendgrid", "smtp", "null"):
            raise ValueError(f"Unsupported email provider: {v}")
        return v

    def missing_credentials(self) -> List[str]:
        """
        List credential problems for the selected provider.

        Returns:
            List of error messages (empty if configured)
        """
        errors = []
        if self.provider == "sendgrid" and not self.sendgrid_api_key:
            errors.append("EMAIL_SENDGRID_API_KEY: Required when EMAIL_PROVIDER=sendgrid")
        if self.provider == "smtp" and not self.smtp_host:
            errors.append("EMAIL_SMTP_HOST: Required when EMAIL_PROVIDER=smtp")
        if not self.from_email or "@" not in self.from_email:
            errors.append("EMAIL_FROM_EMAIL: Must be a valid sender address")
        return errors


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application info
    name: str = Field(default="Practice Digest", description="Application name")
    version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Debug mode")
    environment: str = Field(default="development", description="Environment name")

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")
    log_json: bool = Field(default=False, description="Emit JSON log lines")

    # Nested settings (loaded separately)
    @property
    def redis(self) -> RedisSettings:
        return RedisSettings()

    @property
    def celery(self) -> CelerySettings:
        return CelerySettings()

    @property
    def digest(self) -> DigestSettings:
        return DigestSettings()

    @property
    def email(self) -> EmailSettings:
        return EmailSettings()

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment in ("production", "prod", "staging")

    def validate_startup(self) -> List[str]:
        """
        Validate configuration required before any job is processed.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        try:
            self.digest
        except ValueError as e:
            errors.append(f"DIGEST_*: {e}")

        try:
            email = self.email
        except ValueError as e:
            errors.append(f"EMAIL_*: {e}")
        else:
            errors.extend(email.missing_credentials())
            if self.is_production and email.provider == "null":
                errors.append("EMAIL_PROVIDER: The null provider cannot be used in production")

        return errors


# =============================================================================
# STARTUP VALIDATION
# =============================================================================

def validate_startup_configuration(settings: Settings, exit_on_failure: bool = True) -> bool:
    """
    Validate configuration at process startup.

    Configuration errors fail fast here instead of surfacing per job.

    Args:
        settings: Application settings instance
        exit_on_failure: If True, exit the process on failure (default)

    Returns:
        True if validation passes

    Raises:
        ConfigurationError: If validation fails and exit_on_failure is False
    """
    errors = settings.validate_startup()

    if not errors:
        return True

    error_msg = (
        "\n" + ("=" * 60) + "\n"
        "CONFIGURATION ERROR\n"
        + ("=" * 60) + "\n\n"
    )
    for i, err in enumerate(errors, 1):
        error_msg += f"  {i}. {err}\n"

    logger.critical(error_msg)

    if exit_on_failure:
        print(error_msg, file=sys.stderr)
        sys.exit(1)
    else:
        raise ConfigurationError(error_msg)


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings instance.

    Returns:
        Settings: Cached settings loaded from environment.
    """
    return Settings()


def get_validated_settings(exit_on_failure: bool = True) -> Settings:
    """
    Get settings with startup validation.

    Call this once in each process entry point.

    Args:
        exit_on_failure: If True, exit process on validation failure

    Returns:
        Validated Settings instance
    """
    settings = get_settings()
    validate_startup_configuration(settings, exit_on_failure)
    return settings
