"""Tests for environment-driven settings."""

import pytest
from pydantic import ValidationError

from agentcommons.config import Settings


class TestSettingsFromEnv:
    def test_defaults(self):
        settings = Settings.from_env({})
        assert settings.storage.backend == "memory"
        assert settings.max_clock_skew_seconds == 300
        assert settings.webhook_secret is None
        assert settings.webhook_allow_unsigned is False
        assert settings.port == 8080

    def test_postgres(self):
        settings = Settings.from_env(
            {
                "AGENTCOMMONS_STORAGE_BACKEND": "postgres",
                "AGENTCOMMONS_DATABASE_URL": "postgresql+asyncpg://u@db/commons",
                "AGENTCOMMONS_STORAGE_TIMEOUT_SECONDS": "2.5",
                "AGENTCOMMONS_STORAGE_POOL_SIZE": "4",
            }
        )
        assert settings.storage.connection_string == "postgresql+asyncpg://u@db/commons"
        assert settings.storage.timeout_seconds == 2.5
        assert settings.storage.pool_size == 4

    def test_redis(self):
        settings = Settings.from_env(
            {
                "AGENTCOMMONS_STORAGE_BACKEND": "redis",
                "AGENTCOMMONS_REDIS_URL": "redis://cache:6379/0",
                "AGENTCOMMONS_DATABASE_URL": "ignored",
            }
        )
        assert settings.storage.connection_string == "redis://cache:6379/0"

    def test_webhook_and_server(self):
        settings = Settings.from_env(
            {
                "AGENTCOMMONS_WEBHOOK_SECRET": "s",
                "AGENTCOMMONS_WEBHOOK_ALLOW_UNSIGNED": "true",
                "AGENTCOMMONS_MAX_CLOCK_SKEW_SECONDS": "60",
                "AGENTCOMMONS_LOG_LEVEL": "debug",
                "AGENTCOMMONS_PORT": "9000",
            }
        )
        assert settings.webhook_secret == "s"
        assert settings.webhook_allow_unsigned is True
        assert settings.max_clock_skew_seconds == 60
        assert settings.log_level == "DEBUG"
        assert settings.port == 9000

    def test_secret_not_in_repr(self):
        assert "hunter2" not in repr(Settings(webhook_secret="hunter2"))

    def test_invalid_port(self):
        with pytest.raises(ValidationError):
            Settings.from_env({"AGENTCOMMONS_PORT": "0"})
