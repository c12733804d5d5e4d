"""Typed client settings loaded from static environment variables."""

from __future__ import annotations

import math
import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

if TYPE_CHECKING:
    from collections.abc import Mapping

LogLevel = str

ENV_API_URL = "ATS_API_URL"
ENV_CREDENTIALS_PATH = "ATS_CREDENTIALS_PATH"
ENV_LOG_LEVEL = "ATS_LOG_LEVEL"
ENV_REQUEST_TIMEOUT = "ATS_REQUEST_TIMEOUT"
ENV_SHOW_DEV_OTP = "ATS_SHOW_DEV_OTP"

DEFAULT_API_URL = "http://localhost:8000/api/v1"
DEFAULT_CREDENTIALS_PATH: Path | None = None
DEFAULT_LOG_LEVEL: LogLevel = "INFO"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 10.0
DEFAULT_SHOW_DEV_OTP = False

VALID_LOG_LEVELS: frozenset[LogLevel] = frozenset(
    {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"},
)
VALID_URL_SCHEMES: frozenset[str] = frozenset({"http", "https"})
TRUE_VALUES: frozenset[str] = frozenset({"1", "true", "yes", "on"})
FALSE_VALUES: frozenset[str] = frozenset({"0", "false", "no", "off"})


class SettingsValidationError(ValueError):
    """Raised when static settings env vars contain invalid values."""

    @classmethod
    def for_empty_value(cls, env_var: str) -> SettingsValidationError:
        """Build error for empty non-optional env var values."""
        message = f"Invalid {env_var}: value cannot be empty."
        return cls(message)

    @classmethod
    def for_invalid_choice(
        cls,
        env_var: str,
        value: str,
        allowed_values: str,
    ) -> SettingsValidationError:
        """Build error for enum-like env vars with fixed allowlists."""
        message = f"Invalid {env_var}: {value!r}. Allowed values: {allowed_values}."
        return cls(message)

    @classmethod
    def for_invalid_url(cls, env_var: str, value: str) -> SettingsValidationError:
        """Build error for base URLs without an http(s) scheme and host."""
        message = f"Invalid {env_var}: {value!r} is not an absolute http(s) URL."
        return cls(message)

    @classmethod
    def for_invalid_timeout(cls, env_var: str, value: str) -> SettingsValidationError:
        """Build error for non-numeric or non-positive timeouts."""
        message = f"Invalid {env_var}: {value!r}. Expected a positive number of seconds."
        return cls(message)


@dataclass(frozen=True, slots=True)
class ClientSettings:
    """Resolved static configuration values for one client process."""

    api_url: str
    credentials_path: Path | None
    log_level: LogLevel
    request_timeout: float
    show_dev_otp: bool


def load_settings(environ: Mapping[str, str] | None = None) -> ClientSettings:
    """Load and validate static settings from process environment."""
    env = os.environ if environ is None else environ

    return ClientSettings(
        api_url=_read_api_url(env),
        credentials_path=_read_credentials_path(env),
        log_level=_read_log_level(env),
        request_timeout=_read_request_timeout(env),
        show_dev_otp=_read_show_dev_otp(env),
    )


def _read_api_url(environ: Mapping[str, str]) -> str:
    raw = environ.get(ENV_API_URL)
    if raw is None:
        return DEFAULT_API_URL
    value = raw.strip()
    if not value:
        raise SettingsValidationError.for_empty_value(ENV_API_URL)
    parts = urlsplit(value)
    if parts.scheme not in VALID_URL_SCHEMES or not parts.netloc:
        raise SettingsValidationError.for_invalid_url(ENV_API_URL, value)
    return value.rstrip("/")


def _read_credentials_path(environ: Mapping[str, str]) -> Path | None:
    raw = environ.get(ENV_CREDENTIALS_PATH)
    if raw is None:
        return DEFAULT_CREDENTIALS_PATH
    value = raw.strip()
    if not value:
        return DEFAULT_CREDENTIALS_PATH
    return Path(value).expanduser()


def _read_log_level(environ: Mapping[str, str]) -> LogLevel:
    raw = environ.get(ENV_LOG_LEVEL)
    if raw is None:
        return DEFAULT_LOG_LEVEL
    value = raw.strip().upper()
    if value in VALID_LOG_LEVELS:
        return value
    allowed = ", ".join(sorted(VALID_LOG_LEVELS))
    raise SettingsValidationError.for_invalid_choice(ENV_LOG_LEVEL, raw, allowed)


def _read_request_timeout(environ: Mapping[str, str]) -> float:
    raw = environ.get(ENV_REQUEST_TIMEOUT)
    if raw is None:
        return DEFAULT_REQUEST_TIMEOUT_SECONDS
    value = raw.strip()
    try:
        timeout = float(value)
    except ValueError as exc:
        raise SettingsValidationError.for_invalid_timeout(
            ENV_REQUEST_TIMEOUT,
            raw,
        ) from exc
    if not math.isfinite(timeout) or timeout <= 0:
        raise SettingsValidationError.for_invalid_timeout(ENV_REQUEST_TIMEOUT, raw)
    return timeout


def _read_show_dev_otp(environ: Mapping[str, str]) -> bool:
    raw = environ.get(ENV_SHOW_DEV_OTP)
    if raw is None:
        return DEFAULT_SHOW_DEV_OTP
    value = raw.strip().lower()
    if not value:
        return DEFAULT_SHOW_DEV_OTP
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False
    allowed = ", ".join(sorted(TRUE_VALUES | FALSE_VALUES))
    raise SettingsValidationError.for_invalid_choice(ENV_SHOW_DEV_OTP, raw, allowed)
