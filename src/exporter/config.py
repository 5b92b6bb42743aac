"""Centralized configuration management using Pydantic Settings.

This module provides a type-safe, validated configuration system for the export service.
Every environment variable the service reads is declared here with its default.
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RedisConfig(BaseSettings):
    """Redis configuration for the export and schedule record stores."""

    redis_uri: str | None = Field(
        default=None,
        description="Redis connection URI (e.g., redis://localhost:6379)"
    )

    max_connections: int = Field(
        default=20,
        ge=1,
        le=100,
        description="Maximum Redis connections in pool"
    )

    key_prefix: str = Field(
        default="exporter",
        min_length=1,
        description="Prefix applied to every Redis key written by the service"
    )

    model_config = SettingsConfigDict(env_prefix="REDIS_")


class StorageConfig(BaseSettings):
    """Object storage configuration for generated export artifacts."""

    url: str | None = Field(
        default=None,
        description="Base URL of the object storage API (None = durable storage disabled)"
    )
    service_key: str | None = Field(
        default=None,
        description="Service key sent as bearer token to the object storage API"
    )
    bucket: str = Field(
        default="exports",
        min_length=1,
        description="Bucket that holds export artifacts"
    )
    request_timeout: float = Field(
        default=30.0,
        ge=1.0,
        le=300.0,
        description="Timeout for object storage requests in seconds"
    )

    # Ephemeral fallback: artifacts kept in process memory when durable upload fails
    ephemeral_max_entries: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Maximum number of ephemeral artifacts kept in memory"
    )

    model_config = SettingsConfigDict(env_prefix="STORAGE_")


class SourcesConfig(BaseSettings):
    """Upstream session and agent listing APIs."""

    api_url: str = Field(
        default="http://localhost:3000/api",
        description="Base URL of the API serving session and agent listings"
    )
    api_token: str | None = Field(
        default=None,
        description="Bearer token forwarded to the upstream API"
    )
    request_timeout: float = Field(
        default=60.0,
        ge=1.0,
        le=600.0,
        description="Timeout for upstream listing requests in seconds"
    )
    # Exports are unpaged; a single oversized page approximates "all rows"
    export_page_size: int = Field(
        default=10000,
        ge=1,
        le=100000,
        description="Page size requested when fetching rows for an export"
    )

    model_config = SettingsConfigDict(env_prefix="SOURCES_")


class ExportConfig(BaseSettings):
    """Export job settings."""

    download_url_ttl: int = Field(
        default=24 * 60 * 60,
        ge=60,
        le=7 * 24 * 60 * 60,
        description="Lifetime of signed download URLs in seconds (default: 24 hours)"
    )
    public_base_url: str = Field(
        default="http://localhost:8000",
        description="Externally reachable base URL, used to build ephemeral artifact URLs"
    )
    default_page_size: int = Field(
        default=20,
        ge=1,
        le=100,
        description="Default page size when listing exports"
    )

    model_config = SettingsConfigDict(env_prefix="EXPORT_")

    @field_validator("public_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalise the base URL so paths can be appended directly."""
        return v.rstrip("/")


class AuthConfig(BaseSettings):
    """Authentication configuration."""

    api_key: str | None = Field(
        default=None,
        alias="EXPORTER_KEY",
        description="API key for authentication (if None, API key auth is disabled)"
    )
    owner_header: str = Field(
        default="X-Owner-Id",
        alias="EXPORTER_OWNER_HEADER",
        description="Header carrying the authenticated caller identity from the gateway"
    )

    model_config = SettingsConfigDict(case_sensitive=True, populate_by_name=True)


class LoggingConfig(BaseSettings):
    """Logging configuration with structured logging support."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Application log level"
    )

    access_log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Uvicorn access log level"
    )

    json_logs: bool = Field(
        default=False,
        description="Enable JSON formatted logs (recommended for production)"
    )

    access_log_file: str | None = Field(
        default=None,
        description="Path to access log file (None = stdout)"
    )
    error_log_file: str | None = Field(
        default=None,
        description="Path to error log file (None = stderr)"
    )

    log_rotation_size: int = Field(
        default=10 * 1024 * 1024,  # 10MB
        ge=1024 * 1024,  # Min 1MB
        description="Log file size before rotation (bytes)"
    )
    log_rotation_count: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Number of rotated log files to keep"
    )

    model_config = SettingsConfigDict(env_prefix="LOG_")


class RateLimitConfig(BaseSettings):
    """Rate limiting for the synchronous generation endpoints."""

    enabled: bool = Field(
        default=True,
        description="Enable rate limiting"
    )
    storage_uri: str | None = Field(
        default=None,
        description="Limiter storage URI (defaults to Redis if configured, else memory)"
    )
    export_limit: str = Field(
        default="10/minute",
        description="Limit for endpoints that generate an export in-request"
    )
    headers_enabled: bool = Field(
        default=False,
        description="Emit X-RateLimit-* response headers"
    )

    model_config = SettingsConfigDict(env_prefix="RATELIMIT_")


class CORSConfig(BaseSettings):
    """CORS configuration."""

    allowed_origins: list[str] = Field(
        default=["*"],
        description="Allowed CORS origins (use specific domains in production)"
    )

    model_config = SettingsConfigDict(env_prefix="CORS_")

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_origins(cls, v):
        """Parse comma-separated origins from environment variable."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v


class Settings(BaseSettings):
    """Main application settings combining all configuration sections."""

    app_name: str = Field(
        default="Export Service",
        description="Application name"
    )

    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Runtime environment"
    )

    redis: RedisConfig = Field(default_factory=RedisConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    sources: SourcesConfig = Field(default_factory=SourcesConfig)
    export: ExportConfig = Field(default_factory=ExportConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    ratelimit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    cors: CORSConfig = Field(default_factory=CORSConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def validate_settings(self) -> list[str]:
        """Validate settings and return list of warnings/info messages."""
        messages = []

        if self.environment == "production":
            if not self.auth.api_key:
                messages.append("WARNING: No API key configured in production")

            if "*" in self.cors.allowed_origins:
                messages.append("WARNING: CORS allows all origins in production")

            if not self.storage.url:
                messages.append(
                    "WARNING: Object storage not configured, exports will use ephemeral URLs"
                )

            if not self.logging.json_logs:
                messages.append("INFO: JSON logs recommended for production")

        messages.append(f"INFO: Redis: {'enabled' if self.redis.redis_uri else 'disabled'}")
        messages.append(f"INFO: Object storage: {self.storage.url or 'disabled'}")
        messages.append(f"INFO: Upstream API: {self.sources.api_url}")
        messages.append(f"INFO: Download URL TTL: {self.export.download_url_ttl}s")
        messages.append(f"INFO: Auth: {'enabled' if self.auth.api_key else 'disabled'}")

        return messages


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the global settings instance (singleton pattern)."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Reload settings from environment (useful for testing)."""
    global _settings
    _settings = Settings()
    return _settings
