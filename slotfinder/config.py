"""Centralized configuration management using Pydantic Settings.

This module provides typed configuration for all service settings,
loaded from environment variables with sensible defaults.

Usage:
    from slotfinder.config import get_settings
    settings = get_settings()
    listen_addr = settings.server.listen_addr
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

UNIX_PREFIX = "unix:"


def _parse_bool(v):
    if isinstance(v, str):
        return v.lower() in ("1", "true", "yes")
    return bool(v)


class ServerSettings(BaseSettings):
    """Listener, CORS and shared-secret configuration."""

    model_config = SettingsConfigDict(extra="ignore")

    listen_addr: str = Field(default="0.0.0.0:3000")
    unix_sock_mode: str | None = Field(default=None)
    behind_proxy: bool = Field(default=False)
    frontend_url: str = Field(default="http://localhost:3000")
    cron_key: str = Field(default="")

    @field_validator("behind_proxy", mode="before")
    @classmethod
    def parse_behind_proxy(cls, v):
        return _parse_bool(v)

    @field_validator("unix_sock_mode")
    @classmethod
    def validate_sock_mode(cls, v: str | None) -> str | None:
        if v is None or v == "":
            return None
        try:
            int(v, 8)
        except ValueError:
            raise ValueError(f"UNIX_SOCK_MODE must be an octal integer, got {v!r}")
        return v

    @property
    def is_unix_socket(self) -> bool:
        return self.listen_addr.startswith(UNIX_PREFIX)

    @property
    def socket_mode(self) -> int | None:
        """Parsed permission bits for the unix socket, if configured."""
        return int(self.unix_sock_mode, 8) if self.unix_sock_mode else None


class StorageSettings(BaseSettings):
    """Adaptor selection."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_", extra="ignore")

    backend: str = Field(default="memory", description="Storage backend: memory or sql")
    retries: int = Field(default=1, description="Connection re-acquisitions on transient SQL failure")

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("memory", "sql"):
            raise ValueError("STORAGE_BACKEND must be 'memory' or 'sql'")
        return v


class PostgresSettings(BaseSettings):
    """PostgreSQL connection configuration."""

    model_config = SettingsConfigDict(
        env_prefix="POSTGRES_",
        extra="ignore",
        populate_by_name=True,
    )

    host: str = Field(default="postgres", description="PostgreSQL host")
    port: int = Field(default=5432, description="PostgreSQL port")
    user: str = Field(default="slotfinder", description="PostgreSQL user")
    password: str = Field(default="", description="PostgreSQL password")
    database: str = Field(
        default="slotfinder",
        validation_alias="POSTGRES_DB",
        description="Database name",
    )
    pool_min_size: int = Field(default=1, description="Minimum pool size")
    pool_max_size: int = Field(default=10, description="Maximum pool size")
    pool_timeout: int = Field(default=30, description="Timeout for acquiring connections")
    pool_max_lifetime: int = Field(
        default=1800, description="Maximum connection lifetime in seconds"
    )
    pool_max_idle: int = Field(
        default=300, description="Maximum idle time before closing connection"
    )
    pool_reconnect_timeout: int = Field(
        default=300, description="Reconnection timeout in seconds"
    )

    def get_dsn(self) -> str:
        """Generate PostgreSQL DSN connection string."""
        return (
            f"host={self.host} port={self.port} user={self.user} "
            f"password={self.password} dbname={self.database} sslmode=disable"
        )


class CleanupSettings(BaseSettings):
    """Stale event cleanup configuration."""

    model_config = SettingsConfigDict(env_prefix="CLEANUP_", extra="ignore")

    interval_sec: float = Field(default=3600.0, description="Seconds between background passes")
    retention_days: int = Field(default=30, description="Events older than this are deleted")

    @field_validator("interval_sec")
    @classmethod
    def validate_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("CLEANUP_INTERVAL_SEC must be > 0")
        return v

    @field_validator("retention_days")
    @classmethod
    def validate_retention(cls, v: int) -> int:
        if v < 1:
            raise ValueError("CLEANUP_RETENTION_DAYS must be >= 1")
        return v


class RateLimitSettings(BaseSettings):
    """Request throttling configuration."""

    model_config = SettingsConfigDict(env_prefix="RATE_LIMIT_", extra="ignore")

    enabled: bool = Field(default=True)
    burst: int = Field(default=20, description="Requests allowed in a burst")
    replenish_ms: int = Field(default=500, description="Milliseconds to regain one request")
    backend: str = Field(default="memory", description="Limiter storage: memory or redis")

    @field_validator("enabled", mode="before")
    @classmethod
    def parse_enabled(cls, v):
        return _parse_bool(v)

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("memory", "redis"):
            raise ValueError("RATE_LIMIT_BACKEND must be 'memory' or 'redis'")
        return v


class RedisSettings(BaseSettings):
    """Redis connection configuration (rate limit counters)."""

    model_config = SettingsConfigDict(env_prefix="REDIS_", extra="ignore")

    host: str = Field(default="redis", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    password: str = Field(default="", description="Redis password")
    max_connections: int = Field(default=50, description="Maximum pool connections")


class DebugSettings(BaseSettings):
    """Debug flags configuration."""

    model_config = SettingsConfigDict(extra="ignore")

    request: bool = Field(default=False, alias="request_debug")

    @field_validator("*", mode="before")
    @classmethod
    def parse_bool(cls, v):
        return _parse_bool(v)


class Settings:
    """Main service settings combining all configuration sections.

    This is not a BaseSettings subclass to avoid env var conflicts.
    Each subsetting is loaded independently with its own prefix.
    """

    def __init__(self) -> None:
        self.server = ServerSettings()
        self.storage = StorageSettings()
        self.postgres = PostgresSettings()
        self.cleanup = CleanupSettings()
        self.rate_limit = RateLimitSettings()
        self.redis = RedisSettings()
        self.debug = DebugSettings()


@lru_cache
def get_settings() -> Settings:
    """Get cached Settings instance (singleton pattern)."""
    return Settings()


def clear_settings_cache() -> None:
    """Clear cached settings (useful for testing)."""
    get_settings.cache_clear()
