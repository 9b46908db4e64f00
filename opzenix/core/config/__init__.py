"""
Configuration package for Opzenix.

This package provides centralized configuration management for the API,
database, Redis, realtime feed, webhooks and pipeline processing.
"""

from .settings import (
    APIConfig,
    DatabaseConfig,
    Environment,
    ExecutionConfig,
    LoggingConfig,
    OpzenixConfig,
    RealtimeConfig,
    RedisConfig,
    WebhookConfig,
    get_config,
    is_production,
    is_testing,
    reload_config,
    set_config,
)

__all__ = [
    "OpzenixConfig",
    "Environment",
    "APIConfig",
    "DatabaseConfig",
    "ExecutionConfig",
    "LoggingConfig",
    "RealtimeConfig",
    "RedisConfig",
    "WebhookConfig",
    "get_config",
    "is_production",
    "is_testing",
    "reload_config",
    "set_config",
]
