#!/usr/bin/env python3
"""
Centralized Configuration Module using Pydantic Settings

Type-safe, environment-based configuration for the tiered cache. Everything
the cache needs at startup (TTL table, Redis endpoint, health probe tuning,
tier capacities, write mode) lives here.

Architectural Decision: Pydantic Settings for type safety and validation
- Environment variable loading with .env support
- Type validation at startup (fail fast on misconfiguration)
- Easy testing with override mechanisms

Author: System Architect
Date: 2025-12-05
"""

from typing import Literal

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tiercache.core.config.constants import (
    DEFAULT_DOMAIN_TTLS,
    DEFAULT_TTL_SECONDS,
    MEMORY_TTL_CAP_SECONDS,
    NAMESPACE_SEPARATOR,
)
from tiercache.core.exceptions.base import ConfigurationError


class RedisSettings(BaseSettings):
    """
    Redis configuration for the remote tier.

    STAGE-0.1: Redis connection configuration

    Architectural Decision: two timeouts
    - REDIS_OPERATION_TIMEOUT bounds every get/set/delete/scan
    - REDIS_PROBE_TIMEOUT bounds the health probe and must be shorter
    """

    REDIS_HOST: str = Field(default="localhost", description="Redis server host")
    REDIS_PORT: int = Field(default=6379, description="Redis server port")
    REDIS_DB: int = Field(default=0, description="Redis database number")
    REDIS_PASSWORD: str | None = Field(default=None, description="Redis password (if required)")
    REDIS_MAX_CONNECTIONS: int = Field(default=50, description="Maximum pooled connections")
    REDIS_SOCKET_CONNECT_TIMEOUT: float = Field(default=2.0, description="Connection timeout in seconds")
    REDIS_OPERATION_TIMEOUT: float = Field(default=0.5, description="Per-operation timeout in seconds")
    REDIS_PROBE_TIMEOUT: float = Field(default=0.2, description="Health probe timeout in seconds")
    REDIS_CONNECT_RETRIES: int = Field(default=3, description="Connection attempts at startup")
    REDIS_SCAN_COUNT: int = Field(default=500, description="SCAN batch size hint")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class CacheSettings(BaseSettings):
    """
    Tier layout, TTL policy and write mode.

    STAGE-2: Cache TTL configuration

    Optimization: Different TTLs for different content domains, with the
    memory tier clamped to a shorter cap so it recycles capacity quickly.
    """

    CACHE_DEFAULT_TTL: int = Field(default=DEFAULT_TTL_SECONDS, description="TTL for domains not in the table")
    CACHE_DOMAIN_TTLS: dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_DOMAIN_TTLS),
        description="Per-domain TTL table in seconds",
    )
    CACHE_MEMORY_TTL_CAP: int = Field(default=MEMORY_TTL_CAP_SECONDS, description="Memory tier TTL ceiling")
    CACHE_MEMORY_MAX_ENTRIES: int = Field(default=1000, description="Memory tier max entries")
    CACHE_MEMORY_MAX_BYTES: int = Field(default=64 * 1024 * 1024, description="Memory tier max bytes")
    CACHE_REMOTE_ENABLED: bool = Field(default=True, description="Build the Redis tier")
    CACHE_CLIENT_CONTEXT: bool = Field(default=False, description="Running in a client context")
    CACHE_CLIENT_STORE_PATH: str = Field(default=".tiercache/client.sqlite3", description="Client tier file")
    CACHE_CLIENT_MAX_ENTRIES: int = Field(default=200, description="Client tier quota (entries)")
    CACHE_CLIENT_MAX_BYTES: int = Field(default=5 * 1024 * 1024, description="Client tier quota (bytes)")
    CACHE_WRITE_THROUGH: bool = Field(default=True, description="Await every tier on set")
    CACHE_WRITE_BACK_QUEUE_SIZE: int = Field(default=1000, description="Bounded write-back queue size")
    CACHE_WRITE_BACK_WORKERS: int = Field(default=2, description="Write-back worker tasks")
    CACHE_SHUTDOWN_DRAIN_TIMEOUT: float = Field(default=5.0, description="Write-back drain on close")
    CACHE_PURGE_INTERVAL: float = Field(default=300.0, description="Memory tier expired-entry sweep (0 disables)")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class HealthSettings(BaseSettings):
    """
    Remote tier health monitor tuning.

    STAGE-HM: Health probe thresholds

    Defaults: 3 failures to mark unhealthy, 2 successes to restore,
    5s base interval doubled per failure while unhealthy, capped at 60s.
    """

    HEALTH_PROBE_INTERVAL: float = Field(default=5.0, description="Base probe interval in seconds")
    HEALTH_BACKOFF_FACTOR: float = Field(default=2.0, description="Interval multiplier per failure")
    HEALTH_MAX_INTERVAL: float = Field(default=60.0, description="Probe interval ceiling")
    HEALTH_FAILURE_THRESHOLD: int = Field(default=3, description="Failures before unhealthy")
    HEALTH_SUCCESS_THRESHOLD: int = Field(default=2, description="Successes before healthy")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class LoggingSettings(BaseSettings):
    """
    Logging configuration for structured logging.

    STAGE-L: Logging configuration
    """

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class ApplicationSettings(BaseSettings):
    """General application settings."""

    ENVIRONMENT: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment"
    )
    DEBUG: bool = Field(default=False, description="Debug mode")
    APP_NAME: str = Field(default="Tiered Cache Service", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class Settings(BaseSettings):
    """
    Main settings class that aggregates all configuration sections.

    STAGE-0: Centralized configuration initialization

    Usage:
        from tiercache.core.config import get_settings

        settings = get_settings()
        redis_host = settings.redis.REDIS_HOST
        ttl = settings.cache.CACHE_DOMAIN_TTLS["generated-text"]
    """

    # Redis settings
    REDIS_HOST: str = Field(default="localhost", description="Redis server host")
    REDIS_PORT: int = Field(default=6379, description="Redis server port")
    REDIS_DB: int = Field(default=0, description="Redis database number")
    REDIS_PASSWORD: str | None = Field(default=None, description="Redis password (if required)")
    REDIS_MAX_CONNECTIONS: int = Field(default=50, description="Maximum pooled connections")
    REDIS_SOCKET_CONNECT_TIMEOUT: float = Field(default=2.0, description="Connection timeout in seconds")
    REDIS_OPERATION_TIMEOUT: float = Field(default=0.5, description="Per-operation timeout in seconds")
    REDIS_PROBE_TIMEOUT: float = Field(default=0.2, description="Health probe timeout in seconds")
    REDIS_CONNECT_RETRIES: int = Field(default=3, description="Connection attempts at startup")
    REDIS_SCAN_COUNT: int = Field(default=500, description="SCAN batch size hint")

    # Cache settings
    CACHE_DEFAULT_TTL: int = Field(default=DEFAULT_TTL_SECONDS, description="TTL for domains not in the table")
    CACHE_DOMAIN_TTLS: dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_DOMAIN_TTLS),
        description="Per-domain TTL table in seconds",
    )
    CACHE_MEMORY_TTL_CAP: int = Field(default=MEMORY_TTL_CAP_SECONDS, description="Memory tier TTL ceiling")
    CACHE_MEMORY_MAX_ENTRIES: int = Field(default=1000, description="Memory tier max entries")
    CACHE_MEMORY_MAX_BYTES: int = Field(default=64 * 1024 * 1024, description="Memory tier max bytes")
    CACHE_REMOTE_ENABLED: bool = Field(default=True, description="Build the Redis tier")
    CACHE_CLIENT_CONTEXT: bool = Field(default=False, description="Running in a client context")
    CACHE_CLIENT_STORE_PATH: str = Field(default=".tiercache/client.sqlite3", description="Client tier file")
    CACHE_CLIENT_MAX_ENTRIES: int = Field(default=200, description="Client tier quota (entries)")
    CACHE_CLIENT_MAX_BYTES: int = Field(default=5 * 1024 * 1024, description="Client tier quota (bytes)")
    CACHE_WRITE_THROUGH: bool = Field(default=True, description="Await every tier on set")
    CACHE_WRITE_BACK_QUEUE_SIZE: int = Field(default=1000, description="Bounded write-back queue size")
    CACHE_WRITE_BACK_WORKERS: int = Field(default=2, description="Write-back worker tasks")
    CACHE_SHUTDOWN_DRAIN_TIMEOUT: float = Field(default=5.0, description="Write-back drain on close")
    CACHE_PURGE_INTERVAL: float = Field(default=300.0, description="Memory tier expired-entry sweep (0 disables)")

    # Health monitor settings
    HEALTH_PROBE_INTERVAL: float = Field(default=5.0, description="Base probe interval in seconds")
    HEALTH_BACKOFF_FACTOR: float = Field(default=2.0, description="Interval multiplier per failure")
    HEALTH_MAX_INTERVAL: float = Field(default=60.0, description="Probe interval ceiling")
    HEALTH_FAILURE_THRESHOLD: int = Field(default=3, description="Failures before unhealthy")
    HEALTH_SUCCESS_THRESHOLD: int = Field(default=2, description="Successes before healthy")

    # Logging settings
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    # Application settings
    ENVIRONMENT: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment"
    )
    DEBUG: bool = Field(default=False, description="Debug mode")
    APP_NAME: str = Field(default="Tiered Cache Service", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    @field_validator("CACHE_DOMAIN_TTLS")
    @classmethod
    def validate_domain_ttls(cls, v):
        """Domains must be namespace-safe and TTLs positive."""
        for domain, ttl in v.items():
            if not domain or NAMESPACE_SEPARATOR in domain:
                raise ValueError(f"invalid cache domain {domain!r}")
            if ttl <= 0:
                raise ValueError(f"TTL for domain {domain!r} must be positive")
        return v

    @field_validator("HEALTH_FAILURE_THRESHOLD", "HEALTH_SUCCESS_THRESHOLD")
    @classmethod
    def validate_thresholds(cls, v):
        if v < 1:
            raise ValueError("health thresholds must be >= 1")
        return v

    @field_validator("HEALTH_BACKOFF_FACTOR")
    @classmethod
    def validate_backoff(cls, v):
        if v < 1.0:
            raise ValueError("HEALTH_BACKOFF_FACTOR must be >= 1.0")
        return v

    @model_validator(mode="after")
    def validate_timeouts(self):
        """The health probe must give up before a normal operation would."""
        if self.REDIS_PROBE_TIMEOUT >= self.REDIS_OPERATION_TIMEOUT:
            raise ValueError("REDIS_PROBE_TIMEOUT must be shorter than REDIS_OPERATION_TIMEOUT")
        if self.CACHE_DEFAULT_TTL <= 0 or self.CACHE_MEMORY_TTL_CAP <= 0:
            raise ValueError("cache TTLs must be positive")
        if self.HEALTH_MAX_INTERVAL < self.HEALTH_PROBE_INTERVAL:
            raise ValueError("HEALTH_MAX_INTERVAL must be >= HEALTH_PROBE_INTERVAL")
        if self.CACHE_PURGE_INTERVAL < 0:
            raise ValueError("CACHE_PURGE_INTERVAL must be >= 0")
        return self

    # Nested configuration views
    @property
    def redis(self) -> 'RedisSettings':
        """Get Redis settings."""
        return RedisSettings(
            REDIS_HOST=self.REDIS_HOST,
            REDIS_PORT=self.REDIS_PORT,
            REDIS_DB=self.REDIS_DB,
            REDIS_PASSWORD=self.REDIS_PASSWORD,
            REDIS_MAX_CONNECTIONS=self.REDIS_MAX_CONNECTIONS,
            REDIS_SOCKET_CONNECT_TIMEOUT=self.REDIS_SOCKET_CONNECT_TIMEOUT,
            REDIS_OPERATION_TIMEOUT=self.REDIS_OPERATION_TIMEOUT,
            REDIS_PROBE_TIMEOUT=self.REDIS_PROBE_TIMEOUT,
            REDIS_CONNECT_RETRIES=self.REDIS_CONNECT_RETRIES,
            REDIS_SCAN_COUNT=self.REDIS_SCAN_COUNT,
        )

    @property
    def cache(self) -> 'CacheSettings':
        """Get cache settings."""
        return CacheSettings(
            CACHE_DEFAULT_TTL=self.CACHE_DEFAULT_TTL,
            CACHE_DOMAIN_TTLS=self.CACHE_DOMAIN_TTLS,
            CACHE_MEMORY_TTL_CAP=self.CACHE_MEMORY_TTL_CAP,
            CACHE_MEMORY_MAX_ENTRIES=self.CACHE_MEMORY_MAX_ENTRIES,
            CACHE_MEMORY_MAX_BYTES=self.CACHE_MEMORY_MAX_BYTES,
            CACHE_REMOTE_ENABLED=self.CACHE_REMOTE_ENABLED,
            CACHE_CLIENT_CONTEXT=self.CACHE_CLIENT_CONTEXT,
            CACHE_CLIENT_STORE_PATH=self.CACHE_CLIENT_STORE_PATH,
            CACHE_CLIENT_MAX_ENTRIES=self.CACHE_CLIENT_MAX_ENTRIES,
            CACHE_CLIENT_MAX_BYTES=self.CACHE_CLIENT_MAX_BYTES,
            CACHE_WRITE_THROUGH=self.CACHE_WRITE_THROUGH,
            CACHE_WRITE_BACK_QUEUE_SIZE=self.CACHE_WRITE_BACK_QUEUE_SIZE,
            CACHE_WRITE_BACK_WORKERS=self.CACHE_WRITE_BACK_WORKERS,
            CACHE_SHUTDOWN_DRAIN_TIMEOUT=self.CACHE_SHUTDOWN_DRAIN_TIMEOUT,
            CACHE_PURGE_INTERVAL=self.CACHE_PURGE_INTERVAL,
        )

    @property
    def health(self) -> 'HealthSettings':
        """Get health monitor settings."""
        return HealthSettings(
            HEALTH_PROBE_INTERVAL=self.HEALTH_PROBE_INTERVAL,
            HEALTH_BACKOFF_FACTOR=self.HEALTH_BACKOFF_FACTOR,
            HEALTH_MAX_INTERVAL=self.HEALTH_MAX_INTERVAL,
            HEALTH_FAILURE_THRESHOLD=self.HEALTH_FAILURE_THRESHOLD,
            HEALTH_SUCCESS_THRESHOLD=self.HEALTH_SUCCESS_THRESHOLD,
        )

    @property
    def logging(self) -> 'LoggingSettings':
        """Get logging settings."""
        return LoggingSettings(LOG_LEVEL=self.LOG_LEVEL, LOG_FORMAT=self.LOG_FORMAT)

    @property
    def app(self) -> 'ApplicationSettings':
        """Get application settings."""
        return ApplicationSettings(
            ENVIRONMENT=self.ENVIRONMENT,
            DEBUG=self.DEBUG,
            APP_NAME=self.APP_NAME,
            APP_VERSION=self.APP_VERSION,
        )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"  # Ignore extra environment variables
    )


# Global settings instance (singleton pattern)
_settings: Settings | None = None


def _load_settings() -> Settings:
    try:
        return Settings()
    except ValidationError as e:
        raise ConfigurationError.from_exception(
            e, message=f"Invalid configuration: {e.error_count()} error(s)"
        ).with_suggestion("Check environment variables and .env") from e


def get_settings() -> Settings:
    """
    Get the global settings instance (singleton).

    STAGE-0.3: Settings initialization

    Returns:
        Settings: Global settings instance

    Raises:
        ConfigurationError: Environment values fail validation
    """
    global _settings

    if _settings is None:
        _settings = _load_settings()

    return _settings


def reload_settings() -> Settings:
    """
    Reload settings (useful for testing).

    Returns:
        Settings: New settings instance
    """
    global _settings
    _settings = _load_settings()
    return _settings
