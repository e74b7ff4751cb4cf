"""Tests for settings."""

import pytest

from farmsync.config import Settings


class TestSettings:
    """Test defaults and environment overrides."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("DATABASE_URL", raising=False)
        settings = Settings(_env_file=None)
        assert settings.cache_default_ttl == 300.0
        assert settings.cache_max_entries == 500
        assert settings.cache_resource_ttls["audit_logs"] == 60.0
        assert settings.cache_resource_ttls["site_settings"] == 1800.0
        assert settings.subscription_window == 1.0
        assert settings.subscription_max_batch == 50
        assert settings.audit_flush_interval == 5.0
        assert settings.audit_batch_size == 10
        assert settings.database_url.startswith("sqlite+aiosqlite://")

    def test_env_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FARMSYNC_AUDIT_BATCH_SIZE", "25")
        monkeypatch.setenv("FARMSYNC_CACHE_RESOURCE_TTLS", '{"balance": 10}')
        settings = Settings(_env_file=None)
        assert settings.audit_batch_size == 25
        assert settings.cache_resource_ttls == {"balance": 10.0}

    def test_database_url_alias(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
        assert Settings(_env_file=None).database_url == "sqlite+aiosqlite:///:memory:"
