"""
Tests for configuration loading, validation and CORS resolution.
"""

import pytest
from pydantic import ValidationError

from opzenix.core.config.settings import (
    APIConfig,
    DatabaseConfig,
    Environment,
    OpzenixConfig,
    RealtimeConfig,
    get_config,
    is_production,
    is_testing,
    set_config,
)


class TestAPIConfigCORS:
    """Test APIConfig CORS properties."""

    def test_cors_origins_development(self):
        """Test CORS origins for development environment."""
        config = OpzenixConfig(environment=Environment.DEVELOPMENT)

        assert config.cors_origins_resolved == [
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:8080",
            "http://127.0.0.1:8080",
        ]

    def test_cors_origins_custom(self):
        """Test custom CORS origins override defaults."""
        config = APIConfig(cors_origins=["https://custom.example.com"])
        assert config.cors_origins_resolved("development") == [
            "https://custom.example.com"
        ]

    def test_cors_origins_staging_default_empty(self):
        assert APIConfig().cors_origins_resolved("staging") == []

    def test_cors_credentials_disabled_in_production(self):
        config = APIConfig(cors_credentials=True)
        assert config.cors_credentials_resolved("production") is False
        assert config.cors_credentials_resolved("development") is True

    def test_webhook_headers_allowed(self):
        headers = APIConfig().cors_headers_resolved
        assert "X-Webhook-Secret" in headers
        assert "X-Hub-Signature-256" in headers

    def test_production_requires_origins(self):
        with pytest.raises(ValueError):
            OpzenixConfig(environment="production", api=APIConfig(cors_origins=[]))

    def test_production_rejects_wildcard(self):
        with pytest.raises(ValueError):
            OpzenixConfig(environment="production", api=APIConfig(cors_origins=["*"]))

    def test_production_requires_https(self):
        with pytest.raises(ValueError):
            OpzenixConfig(
                environment="production",
                api=APIConfig(cors_origins=["http://opzenix.example.com"]),
            )

    def test_production_with_https_origins(self):
        config = OpzenixConfig(
            environment="production",
            api=APIConfig(cors_origins=["https://opzenix.example.com"]),
        )
        assert config.is_production()
        assert config.cors_origins_resolved == ["https://opzenix.example.com"]


class TestOpzenixConfig:
    """Test the unified configuration."""

    def test_environment_from_string(self):
        config = OpzenixConfig(environment="Testing")
        assert config.environment == Environment.TESTING
        assert config.is_testing()
        assert not config.is_development()

    def test_invalid_environment(self):
        with pytest.raises(ValidationError):
            OpzenixConfig(environment="qa")

    def test_invalid_realtime_backend(self):
        with pytest.raises(ValidationError):
            RealtimeConfig(backend="kafka")

    def test_realtime_backend_normalized(self):
        assert RealtimeConfig(backend="Redis").backend == "redis"

    def test_database_url_from_parts(self):
        config = DatabaseConfig(
            host="db", port=5433, username="opz", password="s3cret", database="ops"
        )
        assert config.url == "postgres://opz:s3cret@db:5433/ops"

    def test_database_dsn_overrides_parts(self):
        assert DatabaseConfig(dsn="sqlite://:memory:").url == "sqlite://:memory:"

    def test_summary_hides_secrets(self, test_config):
        summary = test_config.summary()

        assert summary["environment"] == "testing"
        assert summary["artifact_webhook_secured"] is False
        assert "artifact_secret" not in summary

    def test_set_config(self, test_config):
        assert get_config() is test_config
        other = OpzenixConfig(environment="development")
        set_config(other)
        assert get_config() is other

    def test_module_level_environment_checks(self, test_config):
        assert is_testing()
        assert not is_production()
