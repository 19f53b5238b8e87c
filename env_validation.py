"""Environment variable validation and management."""

import os
import logging
from typing import Dict, Tuple

logger = logging.getLogger(__name__)

class EnvironmentError(Exception):
    """Raised when required environment variables are missing or invalid."""
    pass


DEFAULTS: Dict[str, str] = {
    "DB_PATH": "data.db",
    "STORE_TIMEOUT": "5",
    "DB_MAX_CONNECTIONS": "10",
    "LLM_URL": "http://localhost:4891/v1/chat/completions",
    "LLM_TIMEOUT": "10",
    "LLM_RETRIES": "1",
    "EMA_ALPHA": "0.2",
    "DIFFICULTY_EASY_MAX": "0.38",
    "DIFFICULTY_MEDIUM_MAX": "0.72",
    "DIFFICULTY_HYSTERESIS": "0.03",
    "PRACTICE_SET_SIZE": "5",
    "QUESTION_BANK_PATH": "data/questions.json",
}

# name -> (minimum, maximum), inclusive
_NUMERIC_RANGES: Dict[str, Tuple[float, float]] = {
    "STORE_TIMEOUT": (0.1, 120.0),
    "DB_MAX_CONNECTIONS": (1, 100),
    "LLM_TIMEOUT": (0.1, 300.0),
    "LLM_RETRIES": (0, 5),
    "EMA_ALPHA": (0.0, 1.0),
    "DIFFICULTY_EASY_MAX": (0.0, 1.0),
    "DIFFICULTY_MEDIUM_MAX": (0.0, 1.0),
    "DIFFICULTY_HYSTERESIS": (0.0, 0.5),
    "PRACTICE_SET_SIZE": (1, 50),
}


def validate_environment() -> None:
    """Validate critical environment variables.

    Raises EnvironmentError if validation fails.
    """
    # Apply defaults before validation so dependent modules see consistent values.
    for var, value in DEFAULTS.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    optional_vars = {
        "MODEL_ID": "Model name sent to the chat-completions endpoint",
        "LLM_ENABLED": "Set to false to always use static support lines",
    }

    url_vars = {"LLM_URL"}
    for var in url_vars:
        value = os.getenv(var)
        if value and not (value.startswith("http://") or value.startswith("https://")):
            raise EnvironmentError(f"Invalid URL format for {var}: {value}")

    for var, (low, high) in _NUMERIC_RANGES.items():
        raw = os.getenv(var)
        try:
            number = float(raw)
        except (TypeError, ValueError):
            raise EnvironmentError(f"{var} must be numeric, got {raw!r}")
        if not low <= number <= high:
            raise EnvironmentError(f"{var}={raw} outside allowed range [{low}, {high}]")

    easy_max = float(os.environ["DIFFICULTY_EASY_MAX"])
    medium_max = float(os.environ["DIFFICULTY_MEDIUM_MAX"])
    if easy_max >= medium_max:
        raise EnvironmentError(
            "DIFFICULTY_EASY_MAX must be lower than DIFFICULTY_MEDIUM_MAX"
        )

    for var, description in optional_vars.items():
        if not os.getenv(var):
            logger.warning(f"Optional environment variable not set: {var} ({description})")

def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on", "enabled"}


def get_env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    try:
        return int(float(raw))
    except (TypeError, ValueError):
        logger.warning("Invalid integer for %s: %r; using %s", name, raw, default)
        return default


def get_env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid number for %s: %r; using %s", name, raw, default)
        return default
