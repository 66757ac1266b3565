"""Configuration module for the practice digest service."""

from .database import DatabaseSettings, get_database_settings
from .settings import (
    ConfigurationError,
    DigestSettings,
    EmailSettings,
    Settings,
    get_settings,
    get_validated_settings,
)

__all__ = [
    "ConfigurationError",
    "DatabaseSettings",
    "DigestSettings",
    "EmailSettings",
    "get_database_settings",
    "Settings",
    "get_settings",
    "get_validated_settings",
]
