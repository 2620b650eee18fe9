"""
Configuration loader for CitySync.

Loads configuration from YAML files and environment variables with type safety
and nested key access.
"""

import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

# Global configuration cache
_config_cache: dict[str, Any] | None = None

DEFAULT_CONFIG_PATH = "config/app.yaml"


def load_config(config_path: str | None = None) -> dict[str, Any]:
    """Load configuration from YAML file with environment variable support."""
    global _config_cache

    if _config_cache is not None:
        return _config_cache

    # Load environment variables
    load_dotenv()

    config_path = config_path or os.getenv("CITYSYNC_CONFIG", DEFAULT_CONFIG_PATH)
    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_file) as f:
        config = yaml.safe_load(f) or {}

    # Cache the configuration
    _config_cache = config
    return config


def cfg(key: str, default: Any = None) -> Any:
    """
    Get configuration value using dot notation.

    Args:
        key: Dot-separated key path (e.g., "sync.batch_size")
        default: Default value if key is not found

    Returns:
        Configuration value or default

    Examples:
        cfg("global.timezone", "UTC")
        cfg("sync.http.timeout_seconds", 30)
    """
    config = load_config()

    # Handle simple key
    if "." not in key:
        return config.get(key, default)

    # Handle nested key with dot notation
    keys = key.split(".")
    value = config

    try:
        for k in keys:
            value = value[k]
        return value
    except (KeyError, TypeError):
        return default


def env(key: str, default: str = None) -> str | None:
    """
    Get environment variable with optional default.

    Args:
        key: Environment variable name
        default: Default value if not found

    Returns:
        Environment variable value or default
    """
    return os.getenv(key, default)


def get_database_url() -> str:
    """Get database URL from environment."""
    db_url = env("DATABASE_URL")
    if not db_url:
        raise ValueError("DATABASE_URL environment variable is required")
    return db_url


# Configuration validation
def validate_config() -> None:
    """Validate configuration and required environment variables."""
    errors = []

    # Check database URL
    try:
        get_database_url()
    except ValueError as e:
        errors.append(str(e))

    batch_size = cfg("sync.batch_size", 10)
    if not isinstance(batch_size, int) or batch_size < 1:
        errors.append(f"sync.batch_size must be a positive integer, got {batch_size!r}")

    max_workers = cfg("sync.max_workers", 8)
    if not isinstance(max_workers, int) or max_workers < 1:
        errors.append(f"sync.max_workers must be a positive integer, got {max_workers!r}")

    interval = cfg("sync.default_interval_ms", 300000)
    if not isinstance(interval, int) or interval < 60000:
        errors.append(f"sync.default_interval_ms must be at least 60000, got {interval!r}")

    if errors:
        raise ValueError(
            "Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors)
        )


def reload_config() -> None:
    """Force reload of configuration cache."""
    global _config_cache
    _config_cache = None
