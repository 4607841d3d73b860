"""Application configuration module.

Reads settings from environment variables (and an optional ``.env`` file)
with defaults suitable for a single organizer workstation.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from core.constants import (
    CacheDefaults,
    CheckInDefaults,
    DatabaseDefaults,
    StatusUpdateDefaults,
)
from core.exceptions import ConfigurationError


def _get_bool(name: str, default: bool = False) -> bool:
    """Get boolean from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


def _get_int(name: str, default: int) -> int:
    """Get integer from environment variable with fallback."""
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(name: str, default: float) -> float:
    """Get float from environment variable with fallback."""
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _get_str(name: str, default: str = "") -> str:
    """Get string from environment variable."""
    return os.getenv(name, default)


@dataclass(frozen=True)
class Config:
    environment: str
    debug: bool
    log_level: str
    log_folder: str
    database_path: str
    db_pool_size: int
    db_busy_timeout: int
    status_update_interval: float
    status_owner_id: Optional[str]
    checkin_verify_attempts: int
    checkin_verify_delay: float
    event_cache_ttl: int
    event_cache_size: int
    metrics_enabled: bool
    prometheus_port: int

    @property
    def log_file(self) -> str:
        return os.path.join(self.log_folder, "eventease.log")

    def validate(self) -> None:
        """Reject values the services cannot work with."""
        if self.status_update_interval <= 0:
            raise ConfigurationError("STATUS_UPDATE_INTERVAL must be positive")
        if self.checkin_verify_attempts < 1:
            raise ConfigurationError("CHECKIN_VERIFY_ATTEMPTS must be at least 1")
        if self.checkin_verify_delay < 0:
            raise ConfigurationError("CHECKIN_VERIFY_DELAY must not be negative")
        if self.db_pool_size < 1:
            raise ConfigurationError("DB_POOL_SIZE must be at least 1")


def load_config(env_file: Optional[str] = None) -> Config:
    """Load application configuration from environment variables.

    Args:
        env_file: Optional path of a dotenv file; ``.env`` is searched otherwise

    Returns:
        Config: Application configuration with validated values
    """
    load_dotenv(env_file)

    config = Config(
        environment=_get_str("ENVIRONMENT", "development"),
        debug=_get_bool("DEBUG", False),
        log_level=_get_str("LOG_LEVEL", "INFO"),
        log_folder=_get_str("LOG_FOLDER", "logs"),
        database_path=_get_str("DATABASE_PATH", "data/eventease.sqlite"),
        db_pool_size=_get_int("DB_POOL_SIZE", DatabaseDefaults.POOL_SIZE),
        db_busy_timeout=_get_int("DB_BUSY_TIMEOUT", DatabaseDefaults.BUSY_TIMEOUT),
        status_update_interval=_get_float(
            "STATUS_UPDATE_INTERVAL", StatusUpdateDefaults.INTERVAL_SECONDS
        ),
        status_owner_id=_get_str("STATUS_OWNER_ID", "") or None,
        checkin_verify_attempts=_get_int(
            "CHECKIN_VERIFY_ATTEMPTS", CheckInDefaults.VERIFY_ATTEMPTS
        ),
        checkin_verify_delay=_get_float("CHECKIN_VERIFY_DELAY", CheckInDefaults.VERIFY_DELAY),
        event_cache_ttl=_get_int("EVENT_CACHE_TTL", CacheDefaults.EVENT_TTL),
        event_cache_size=_get_int("EVENT_CACHE_SIZE", CacheDefaults.EVENT_SIZE),
        metrics_enabled=_get_bool("METRICS_ENABLED", False),
        prometheus_port=_get_int("PROMETHEUS_PORT", 8000),
    )
    config.validate()
    return config
