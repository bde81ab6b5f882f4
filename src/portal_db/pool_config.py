"""
Configuration management for the portal database connection pool.
"""

import json
import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

from portal_db.regions import WarehouseRegion, parse_region

logger = logging.getLogger(__name__)

# Durations in the environment are milliseconds; PoolConfig stores seconds.
_ENV_INT_FIELDS = {
    "DB_MIN_CONNECTIONS": "min_connections",
    "DB_MAX_CONNECTIONS": "max_connections",
    "DB_MAX_RETRIES": "max_retries",
}

_ENV_MILLIS_FIELDS = {
    "DB_ACQUIRE_TIMEOUT": "acquire_timeout",
    "DB_IDLE_TIMEOUT": "idle_timeout",
    "DB_MAX_LIFETIME": "max_lifetime",
    "DB_HEALTH_CHECK_INTERVAL": "health_check_interval",
    "DB_SECURITY_CHECK_INTERVAL": "security_check_interval",
    "DB_SLOW_QUERY_THRESHOLD": "slow_query_threshold",
    "DB_RETRY_DELAY": "retry_delay",
}

_ENV_FLAG_FIELDS = {
    "DB_ENABLE_METRICS": "enable_metrics",
    "DB_ENABLE_SECURITY": "enable_security_monitoring",
}


@dataclass(frozen=True)
class PoolConfig:
    """Connection pool configuration parameters. Durations are in seconds."""

    min_connections: int = 2
    max_connections: int = 20
    acquire_timeout: float = 30.0
    idle_timeout: float = 300.0
    max_lifetime: float = 3600.0
    health_check_interval: float = 60.0
    security_check_interval: float = 300.0
    slow_query_threshold: float = 0.1
    max_retries: int = 3
    retry_delay: float = 1.0
    enable_metrics: bool = True
    enable_security_monitoring: bool = True
    region: Optional[WarehouseRegion] = None
    environment: str = "development"
    database_url: str = "data/portal.db"
    max_failed_connections: int = 10
    max_error_rate: float = 10.0
    max_lease_duration: float = 600.0

    @classmethod
    def from_env(cls, **overrides: Any) -> "PoolConfig":
        """
        Build configuration from code defaults, keyword overrides and
        environment variables (environment wins).

        Returns:
            PoolConfig instance
        """
        config = cls(**overrides)
        return config.with_env_overrides()

    @classmethod
    def from_file(cls, path: str = "config/database.json") -> "PoolConfig":
        """
        Load configuration from JSON file, then apply environment overrides.
        Falls back to defaults if file missing or invalid.

        Args:
            path: Path to configuration file

        Returns:
            PoolConfig instance with loaded or default values
        """
        config_path = Path(path)
        config = cls()

        if config_path.exists():
            try:
                with open(config_path, "r") as f:
                    data = json.load(f)
                config = cls.from_dict(data.get("connection_pool", {}))
                if "database_url" in data:
                    config = replace(config, database_url=data["database_url"])
                logger.info(f"Loaded pool configuration from {path}")
            except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
                logger.error(
                    f"Failed to load configuration from {path}: {e}. Using defaults.",
                    exc_info=True
                )
                config = cls()
        else:
            logger.info(f"Configuration file {path} not found. Using defaults.")

        return config.with_env_overrides()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PoolConfig":
        """Build configuration from a mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in data.items() if key in known}
        if "region" in values:
            values["region"] = parse_region(values["region"])
        return cls(**values)

    def with_env_overrides(self) -> "PoolConfig":
        """Return a copy with environment variable overrides applied."""
        changes: Dict[str, Any] = {}

        for env_var, field_name in _ENV_INT_FIELDS.items():
            raw = os.getenv(env_var)
            if raw:
                try:
                    changes[field_name] = int(raw)
                except ValueError:
                    logger.warning(f"Invalid {env_var} environment variable")

        for env_var, field_name in _ENV_MILLIS_FIELDS.items():
            raw = os.getenv(env_var)
            if raw:
                try:
                    changes[field_name] = float(raw) / 1000.0
                except ValueError:
                    logger.warning(f"Invalid {env_var} environment variable")

        for env_var, field_name in _ENV_FLAG_FIELDS.items():
            raw = os.getenv(env_var)
            if raw and raw.lower() == "false":
                changes[field_name] = False

        if os.getenv("DB_WAREHOUSE_REGION"):
            try:
                changes["region"] = parse_region(os.getenv("DB_WAREHOUSE_REGION"))
            except ValueError as e:
                logger.warning(f"Invalid DB_WAREHOUSE_REGION environment variable: {e}")

        if os.getenv("APP_ENV"):
            changes["environment"] = os.getenv("APP_ENV")

        if os.getenv("DATABASE_URL"):
            changes["database_url"] = os.getenv("DATABASE_URL")

        return replace(self, **changes) if changes else self

    def validate(self) -> None:
        """
        Validate configuration parameters.

        Raises:
            ValueError: If parameters are invalid
        """
        errors = []

        if self.max_connections <= 0:
            errors.append("max_connections must be positive")

        if self.min_connections < 0:
            errors.append("min_connections must be non-negative")

        if self.min_connections > self.max_connections:
            errors.append("min_connections cannot exceed max_connections")

        for name in (
            "acquire_timeout",
            "idle_timeout",
            "max_lifetime",
            "health_check_interval",
            "security_check_interval",
        ):
            if getattr(self, name) <= 0:
                errors.append(f"{name} must be positive")

        if self.slow_query_threshold < 0:
            errors.append("slow_query_threshold must be non-negative")

        if self.max_retries < 0:
            errors.append("max_retries must be non-negative")

        if self.retry_delay < 0:
            errors.append("retry_delay must be non-negative")

        if not self.database_url:
            errors.append("database_url must not be empty")

        if errors:
            error_msg = "; ".join(errors)
            logger.error(f"Invalid pool configuration: {error_msg}")
            raise ValueError(f"Invalid pool configuration: {error_msg}")
