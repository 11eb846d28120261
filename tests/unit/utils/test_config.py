"""
Configuration loading and startup validation
"""

import pytest

from utils.config import get_config, validate_config_on_startup


@pytest.fixture
def production(monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "production")
    monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://bridge:pw@db/socialbridge")
    monkeypatch.setenv("JWT_SECRET_KEY", "x" * 40)
    monkeypatch.setenv("CRON_SECRET", "cron")
    get_config.cache_clear()


class TestConfig:
    def test_platform_credentials(self):
        config = get_config()

        assert config.platform_credentials("twitter") == ("twitter-client", "twitter-secret")
        assert not any(config.platform_credentials("linkedin"))
        # Connected without client credentials
        assert config.platform_credentials("bluesky") == (None, None)

    def test_invalid_redis_url_rejected(self, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "http://localhost:6379")
        get_config.cache_clear()

        with pytest.raises(RuntimeError):
            get_config()

    def test_unknown_environment_rejected(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "qa")
        get_config.cache_clear()

        with pytest.raises(RuntimeError):
            get_config()


class TestStartupValidation:
    def test_test_environment_passes(self):
        assert validate_config_on_startup().environment == "test"

    def test_production_with_secrets_passes(self, production):
        assert validate_config_on_startup().environment == "production"

    def test_production_requires_cron_secret(self, production, monkeypatch):
        monkeypatch.setenv("CRON_SECRET", "")
        get_config.cache_clear()

        with pytest.raises(SystemExit):
            validate_config_on_startup()

    def test_production_rejects_sqlite(self, production, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///./prod.db")
        get_config.cache_clear()

        with pytest.raises(SystemExit):
            validate_config_on_startup()

    def test_production_rejects_short_jwt_secret(self, production, monkeypatch):
        monkeypatch.setenv("JWT_SECRET_KEY", "short")
        get_config.cache_clear()

        with pytest.raises(SystemExit):
            validate_config_on_startup()
