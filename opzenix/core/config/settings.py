"""
Unified configuration management for Opzenix.

This module provides a single, environment-aware configuration system that
consolidates all configuration sources into a clean, validated approach.
"""

import os
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Supported environments."""

    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class LoggingConfig(BaseSettings):
    """Configuration for logging system."""

    level: str = Field(default="INFO", description="Logging level")
    json_output: bool = Field(default=True, description="Output logs in JSON format")
    log_file: Optional[str] = Field(default=None, description="Log file path")

    model_config = SettingsConfigDict(env_prefix="LOG_")


class DatabaseConfig(BaseSettings):
    """Configuration for database connection."""

    dsn: Optional[str] = Field(
        default=None,
        description="Full Tortoise connection URL, overrides host/port settings",
    )
    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    username: str = Field(default="postgres", description="Database username")
    password: str = Field(default="", description="Database password")
    database: str = Field(default="opzenix", description="Database name")
    generate_schemas: bool = Field(
        default=False, description="Create missing tables on startup"
    )

    model_config = SettingsConfigDict(env_prefix="DB_")

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        """Validate database password is not empty in production."""
        if not v and os.getenv("ENVIRONMENT", "development") == "production":
            raise ValueError("Database password is required in production")
        return v

    @property
    def url(self) -> str:
        """Get Tortoise database connection URL."""
        if self.dsn:
            return self.dsn
        if self.password:
            return (
                f"postgres://{self.username}:{self.password}@"
                f"{self.host}:{self.port}/{self.database}"
            )
        return f"postgres://{self.username}@{self.host}:{self.port}/{self.database}"


class APIConfig(BaseSettings):
    """Configuration for the API server."""

    host: str = Field(default="127.0.0.1", description="API server host")
    port: int = Field(default=8000, description="API server port")
    reload: bool = Field(default=True, description="Enable auto-reload in development")
    cors_origins: List[str] = Field(
        default_factory=list, description="Allowed CORS origins"
    )
    cors_credentials: bool = Field(default=True, description="Allow CORS credentials")
    cors_max_age: int = Field(
        default=600, description="CORS preflight cache time in seconds"
    )

    model_config = SettingsConfigDict(env_prefix="API_")

    def cors_origins_resolved(self, environment: str = "development") -> List[str]:
        """Get CORS origins based on environment."""
        if self.cors_origins:
            return self.cors_origins

        if environment in ("development", "testing"):
            return [
                "http://localhost:5173",
                "http://127.0.0.1:5173",
                "http://localhost:8080",
                "http://127.0.0.1:8080",
            ]
        return []

    def cors_credentials_resolved(self, environment: str = "development") -> bool:
        """Get CORS credentials setting based on environment."""
        if environment == "production":
            return False
        return self.cors_credentials

    @property
    def cors_headers_resolved(self) -> List[str]:
        """Headers accepted from dashboard clients and webhook senders."""
        return [
            "Accept",
            "Authorization",
            "Content-Type",
            "X-Client-Info",
            "X-Webhook-Secret",
            "X-Hub-Signature-256",
            "X-GitHub-Event",
        ]


class RedisConfig(BaseSettings):
    """Configuration for Redis connection."""

    host: str = Field(default="127.0.0.1", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    password: Optional[str] = Field(default=None, description="Redis password")
    db: int = Field(default=0, description="Redis database number")
    max_connections: int = Field(default=10, description="Maximum Redis connections")
    socket_timeout: float = Field(default=5.0, description="Redis socket timeout")
    socket_connect_timeout: float = Field(
        default=5.0, description="Redis connection timeout"
    )

    model_config = SettingsConfigDict(env_prefix="REDIS_")


class RealtimeConfig(BaseSettings):
    """Configuration for the realtime change feed."""

    backend: str = Field(
        default="memory", description="Change feed backend: memory or redis"
    )
    channel_prefix: str = Field(
        default="opzenix:changes:", description="Redis channel prefix"
    )
    queue_size: int = Field(
        default=1000, description="Per-subscriber buffered events", ge=1
    )

    model_config = SettingsConfigDict(env_prefix="REALTIME_")

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Only the in-process and Redis backends exist."""
        v = v.lower()
        if v not in ("memory", "redis"):
            raise ValueError(f"Unsupported realtime backend: {v}")
        return v


class WebhookConfig(BaseSettings):
    """Shared secrets for inbound webhooks."""

    artifact_secret: Optional[str] = Field(
        default=None, description="Expected x-webhook-secret for artifact pushes"
    )
    github_secret: Optional[str] = Field(
        default=None, description="HMAC secret for GitHub webhook signatures"
    )

    model_config = SettingsConfigDict(env_prefix="WEBHOOK_")


class ExecutionConfig(BaseSettings):
    """Configuration for background pipeline processing."""

    time_scale: float = Field(
        default=1.0,
        description="Multiplier applied to simulated stage durations",
        ge=0.0,
    )
    simulate_failures: bool = Field(
        default=True, description="Draw stage failures from their fail rate"
    )
    rollback_delay_seconds: float = Field(
        default=3.0, description="Delay before a rollback is marked successful", ge=0.0
    )
    random_seed: Optional[int] = Field(
        default=None, description="Seed for simulated timings and failures"
    )

    model_config = SettingsConfigDict(env_prefix="EXECUTION_")


class OpzenixConfig(BaseSettings):
    """Main unified configuration class for Opzenix."""

    environment: Environment = Field(
        default=Environment.DEVELOPMENT, description="Current environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    realtime: RealtimeConfig = Field(default_factory=RealtimeConfig)
    webhooks: WebhookConfig = Field(default_factory=WebhookConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: Union[str, Environment]) -> Environment:
        """Validate and convert environment string to enum."""
        if isinstance(v, Environment):
            return v
        if isinstance(v, str):
            try:
                return Environment(v.lower())
            except ValueError:
                raise ValueError(
                    f"Invalid environment: {v}. "
                    f"Must be one of: {[e.value for e in Environment]}"
                )
        raise ValueError(f"Invalid environment type: {type(v)}")

    @field_validator("debug")
    @classmethod
    def validate_debug(cls, v: bool, info: Any) -> bool:
        """Ensure debug is False in production."""
        if v and info.data.get("environment") == Environment.PRODUCTION:
            raise ValueError("Debug mode cannot be enabled in production")
        return v

    def model_post_init(self, __context: Any) -> None:
        """Post-initialization validation."""
        super().model_post_init(__context)
        self._validate_production_cors_config()

    @property
    def cors_origins_resolved(self) -> List[str]:
        """Get resolved CORS origins for this environment."""
        return self.api.cors_origins_resolved(self.environment.value)

    @property
    def cors_credentials_resolved(self) -> bool:
        """Get resolved CORS credentials for this environment."""
        return self.api.cors_credentials_resolved(self.environment.value)

    def _validate_production_cors_config(self) -> None:
        """Validate production CORS configuration security."""
        if self.environment != Environment.PRODUCTION:
            return

        cors_origins = self.api.cors_origins
        if not cors_origins:
            raise ValueError(
                "Production environment must specify allowed CORS origins. "
                "Set API_CORS_ORIGINS environment variable."
            )
        if "*" in cors_origins:
            raise ValueError(
                "Production environment cannot allow all CORS origins (*). "
                "Please specify allowed origins explicitly."
            )
        for origin in cors_origins:
            if not origin.startswith("https://"):
                raise ValueError(
                    f"Production CORS origin must use HTTPS: {origin}. "
                    "All production origins must be secure."
                )

    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == Environment.DEVELOPMENT

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    def is_testing(self) -> bool:
        """Check if running in testing environment."""
        return self.environment == Environment.TESTING

    def summary(self) -> Dict[str, Any]:
        """Non-secret settings worth logging at startup."""
        return {
            "environment": self.environment.value,
            "realtime_backend": self.realtime.backend,
            "time_scale": self.execution.time_scale,
            "artifact_webhook_secured": bool(self.webhooks.artifact_secret),
            "github_webhook_secured": bool(self.webhooks.github_secret),
        }


# Global configuration instance
_config: Optional[OpzenixConfig] = None


def get_config() -> OpzenixConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = OpzenixConfig()
    return _config


def set_config(config: OpzenixConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def reload_config() -> OpzenixConfig:
    """Reload configuration from environment variables."""
    global _config
    _config = OpzenixConfig()
    return _config


def is_production() -> bool:
    """Check if running in production environment."""
    return get_config().is_production()


def is_testing() -> bool:
    """Check if running in testing environment."""
    return get_config().is_testing()
