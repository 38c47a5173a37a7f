"""
Utility functions for the security gateway
"""
import logging
import os
import re
import uuid
from datetime import datetime, timezone
from typing import Pattern

logger = logging.getLogger(__name__)

# Pre-compile regex pattern for better performance
ENV_VAR_PATTERN: Pattern[str] = re.compile(r'\$\{([^}]+)\}')


def substitute_env_vars(value: str, warn_missing: bool = True) -> str:
    """Substitute environment variables in a string.

    Args:
        value: String that may contain ${VAR_NAME} placeholders
        warn_missing: Whether to log warnings for missing variables

    Returns:
        String with environment variables substituted

    Example:
        >>> os.environ['ALERT_HOOK'] = 'https://hooks.example.test/abc'
        >>> substitute_env_vars('${ALERT_HOOK}')
        'https://hooks.example.test/abc'
    """
    def replace_var(match: re.Match[str]) -> str:
        var_name = match.group(1)

        if (var_value := os.environ.get(var_name)) is not None:
            return var_value

        if warn_missing:
            logger.warning(f"Environment variable ${{{var_name}}} is not set")
        return match.group(0)  # Return the original ${VAR_NAME}

    return ENV_VAR_PATTERN.sub(replace_var, value)


def has_unresolved_vars(value: str) -> bool:
    """Check whether a string still holds ${VAR_NAME} placeholders"""
    return ENV_VAR_PATTERN.search(value) is not None


def generate_id(prefix: str) -> str:
    """Generate a prefixed unique identifier, e.g. ``req_3f2a...``"""
    return f"{prefix}_{uuid.uuid4().hex}"


def truncate(text: str, limit: int = 50) -> str:
    """Shorten text for log lines and audit metadata"""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime"""
    return datetime.now(timezone.utc)
