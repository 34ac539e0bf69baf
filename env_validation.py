"""Environment variable validation and management."""

import os
import logging
from typing import Dict, FrozenSet
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

class EnvironmentError(Exception):
    """Raised when required environment variables are missing or invalid."""
    pass

def validate_environment() -> None:
    """Validate configuration environment variables.

    Raises EnvironmentError if validation fails.
    """
    defaults = {
        "DB_PATH": os.getenv("DB_PATH") or "data.db",
        "STREAK_TIMEZONE": os.getenv("STREAK_TIMEZONE") or "UTC",
        "DAILY_TARGET": os.getenv("DAILY_TARGET") or "3",
    }

    # Apply defaults before validation so dependent modules see consistent values.
    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    optional_vars: Dict[str, str] = {
        "ADMIN_EMAILS": "Comma separated emails promoted to admin on sign-in",
    }

    try:
        ZoneInfo(os.environ["STREAK_TIMEZONE"])
    except (ZoneInfoNotFoundError, ValueError):
        raise EnvironmentError(
            f"Invalid timezone for STREAK_TIMEZONE: {os.environ['STREAK_TIMEZONE']}"
        )

    raw_target = os.environ["DAILY_TARGET"]
    if not raw_target.isdigit() or int(raw_target) < 1:
        raise EnvironmentError(f"DAILY_TARGET must be a positive integer: {raw_target}")

    for var, description in optional_vars.items():
        if not os.getenv(var):
            logger.warning("Optional environment variable not set: %s (%s)", var, description)

def get_env_int(name: str, default: int) -> int:
    """Get a positive integer from an environment variable."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        parsed = int(value)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, value)
        return default
    return parsed if parsed > 0 else default

def get_admin_emails() -> FrozenSet[str]:
    """Return the lower-cased admin email allow-list."""
    raw = os.getenv("ADMIN_EMAILS", "")
    return frozenset(part.strip().lower() for part in raw.split(",") if part.strip())

def get_streak_timezone() -> ZoneInfo:
    """Timezone whose calendar days delimit streaks; falls back to UTC."""
    name = os.getenv("STREAK_TIMEZONE") or "UTC"
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown STREAK_TIMEZONE %r; using UTC", name)
        return ZoneInfo("UTC")
