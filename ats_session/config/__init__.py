"""Configuration module for the ATS session client."""

from .logging import JSONFormatter, correlation_id, init_logging
from .settings import ClientSettings, SettingsValidationError, load_settings

__all__ = [
    "ClientSettings",
    "JSONFormatter",
    "SettingsValidationError",
    "correlation_id",
    "init_logging",
    "load_settings",
]
