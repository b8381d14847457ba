"""Startup configuration validation.

``validate_environment`` is called once by the process entry point; importing
this module has no side effects.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Tuple
from urllib.parse import urlparse

from .config import Settings

logger = logging.getLogger(__name__)

MIN_SECRET_LENGTH = 32

# name -> message shown when the variable is missing
OPTIONAL_VARS = {
    "CRON_SECRET": "Sweep endpoint will be unprotected. Set CRON_SECRET for production.",
    "APP_URL": "Notifications will not include dashboard links.",
    "RESEND_API_KEY": "API-key email sending is disabled. Gmail OAuth or SMTP will be used if configured.",
}


@dataclass
class EnvValidationResult:
    """Outcome of validating the configuration."""
    missing_vars: List[str] = field(default_factory=list)
    invalid_vars: List[Tuple[str, str]] = field(default_factory=list)  # (name, reason)
    warnings: List[Tuple[str, str]] = field(default_factory=list)  # (name, message)

    @property
    def is_valid(self) -> bool:
        return not self.missing_vars and not self.invalid_vars


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def validate_environment(config: Settings) -> EnvValidationResult:
    """Check required settings are present and well-formed."""
    result = EnvValidationResult()

    if not config.encryption_key:
        result.missing_vars.append("ENCRYPTION_KEY")
    elif len(config.encryption_key) < MIN_SECRET_LENGTH:
        result.invalid_vars.append(
            ("ENCRYPTION_KEY", f"Must be at least {MIN_SECRET_LENGTH} characters long")
        )

    if config.database_url and not config.database_url.startswith(
        ("postgres://", "postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")
    ):
        result.invalid_vars.append(
            ("DATABASE_URL", "Must be a PostgreSQL (postgresql://) or SQLite (sqlite+aiosqlite://) URL")
        )

    if config.app_url and not _is_http_url(config.app_url):
        result.invalid_vars.append(("APP_URL", "Must be a valid URL"))

    if config.google_client_id and not config.google_client_id.endswith(".apps.googleusercontent.com"):
        result.invalid_vars.append(
            ("GOOGLE_CLIENT_ID", "Must be a Google OAuth Client ID ending with .apps.googleusercontent.com")
        )

    if config.google_client_secret and not config.google_client_secret.startswith("GOCSPX-"):
        result.invalid_vars.append(
            ("GOOGLE_CLIENT_SECRET", "Must be a Google OAuth Client Secret starting with GOCSPX-")
        )

    if config.fetch_mode not in ("http", "browser"):
        result.invalid_vars.append(("FETCH_MODE", "Must be 'http' or 'browser'"))

    if config.mode not in ("server", "worker"):
        result.invalid_vars.append(("MODE", "Must be 'server' or 'worker'"))

    for name, message in OPTIONAL_VARS.items():
        if not getattr(config, name.lower()):
            result.warnings.append((name, message))

    return result


def format_validation_errors(result: EnvValidationResult) -> str:
    """Human-readable report of a validation result."""
    lines = ["Environment configuration error:"]

    if result.missing_vars:
        lines.append("\nMissing required variables:")
        lines.extend(f"  - {name}" for name in result.missing_vars)

    if result.invalid_vars:
        lines.append("\nInvalid variables:")
        lines.extend(f"  - {name}: {reason}" for name, reason in result.invalid_vars)

    if result.warnings:
        lines.append("\nWarnings:")
        lines.extend(f"  - {name}: {message}" for name, message in result.warnings)

    lines.append("\nPlease check your environment and restart the application.")
    return "\n".join(lines)


def log_validation(result: EnvValidationResult):
    if result.is_valid:
        logger.info("All required environment variables are valid")
        for name, message in result.warnings:
            logger.warning(f"{name}: {message}")
    else:
        logger.error(format_validation_errors(result))


def check_environment(config: Settings) -> EnvValidationResult:
    """Validate and log; refuse to start on invalid configuration in development."""
    result = validate_environment(config)
    log_validation(result)
    if not result.is_valid and config.environment == "development":
        raise RuntimeError(format_validation_errors(result))
    return result
