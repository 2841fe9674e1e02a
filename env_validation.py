"""Environment variable validation and management."""

import os
import logging

logger = logging.getLogger(__name__)

class EnvironmentError(Exception):
    """Raised when an environment variable holds an invalid value."""
    pass

def validate_environment() -> None:
    """Validate critical environment variables.

    Raises EnvironmentError if validation fails.
    """
    defaults = {
        "STORE_PATH": os.getenv("STORE_PATH") or "airmems.db",
    }

    # Apply defaults before validation so dependent modules see consistent values.
    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    optional_vars = {
        "OPENAI_API_KEY": "API key for the vision/LLM provider",
        "MODEL_ID": "Model used for explanations and lessons",
        "AIRMEMS_API_URL": "Base URL of the AirMems proxy",
    }

    url_vars = {"LLM_URL", "AIRMEMS_API_URL", "MEME_API_URL", "REDDIT_API_URL"}
    for var in sorted(url_vars):
        value = os.getenv(var)
        if value and not (value.startswith("http://") or value.startswith("https://")):
            raise EnvironmentError(f"Invalid URL format for {var}: {value}")

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
    raw = os.getenv(name, "")
    try:
        return int(raw) if raw else default
    except ValueError:
        logger.warning("Invalid integer for %s: %r; using %s", name, raw, default)
        return default

def get_env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    try:
        return float(raw) if raw else default
    except ValueError:
        logger.warning("Invalid float for %s: %r; using %s", name, raw, default)
        return default
