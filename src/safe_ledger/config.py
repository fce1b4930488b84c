"""Configuration management service with Pydantic Settings.

This module provides centralized configuration for the Safe ledger,
loading and validating environment variables at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from safe_ledger.ingestor.safe_client import DEFAULT_REQUEST_TIMEOUT
from safe_ledger.sync.orchestrator import DEFAULT_WRITE_DELAY_SECONDS, TRANSFER_LIMITS

logger = logging.getLogger(__name__)


class DatabaseSettings(BaseSettings):
    """Ledger database connection settings."""

    model_config = SettingsConfigDict(env_prefix="")

    url: str = Field(
        alias="DATABASE_URL",
        description="Async SQLAlchemy connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError(
                "DATABASE_URL must be a PostgreSQL or sqlite+aiosqlite connection string"
            )
        if v.startswith("postgresql://"):
            return "postgresql+asyncpg://" + v.removeprefix("postgresql://")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings for progress publishing."""

    model_config = SettingsConfigDict(env_prefix="")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string; progress publishing is off when unset",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v

    @property
    def enabled(self) -> bool:
        return self.url is not None


class SafeApiSettings(BaseSettings):
    """Safe Transaction Service settings."""

    model_config = SettingsConfigDict(env_prefix="SAFE_API_")

    api_key: SecretStr | None = Field(
        default=None,
        alias="SAFE_API_KEY",
        description="Optional bearer token for the transaction service",
    )
    timeout: float = Field(
        default=DEFAULT_REQUEST_TIMEOUT,
        alias="SAFE_API_TIMEOUT",
        description="HTTP request timeout in seconds",
        gt=0,
    )


class SyncSettings(BaseSettings):
    """Sync run settings."""

    model_config = SettingsConfigDict(env_prefix="SYNC_")

    transfer_limit: int = Field(
        default=50,
        alias="SYNC_TRANSFER_LIMIT",
        description="Maximum transfers fetched per Safe",
        gt=0,
    )
    write_delay: float = Field(
        default=DEFAULT_WRITE_DELAY_SECONDS,
        alias="SYNC_WRITE_DELAY",
        description="Pause in seconds after each inserted transfer",
        ge=0,
    )

    @field_validator("transfer_limit")
    @classmethod
    def warn_unusual_limit(cls, v: int) -> int:
        """Accept any positive limit but flag values outside the usual choices."""
        if v not in TRANSFER_LIMITS:
            logger.warning("SYNC_TRANSFER_LIMIT=%d is not one of %s", v, TRANSFER_LIMITS)
        return v


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from safe_ledger.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.sync.transfer_limit)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Nested configuration groups
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    safe_api: SafeApiSettings = Field(default_factory=SafeApiSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "safe_api": {
                "api_key": "(set)" if self.safe_api.api_key else "(not set)",
                "timeout": str(self.safe_api.timeout),
            },
            "sync": {
                "transfer_limit": str(self.sync.transfer_limit),
                "write_delay": str(self.sync.write_delay),
            },
            "log_level": self.log_level,
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
