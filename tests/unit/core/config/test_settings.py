"""Tests for environment-driven settings."""

from __future__ import annotations

from carewatch.core.config.settings import get_settings


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("DB_PATH", raising=False)
        settings = get_settings()
        assert settings.carewatch_host == "127.0.0.1"
        assert settings.escalation_threshold_minutes == 30.0
        assert settings.relation_window_minutes == 15.0
        assert settings.encryption_key == ""

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("ESCALATION_THRESHOLD_MINUTES", "45")
        monkeypatch.setenv("CACHE_TTL_SECONDS", "5")
        monkeypatch.setenv("CAREWATCH_PORT", "9000")
        settings = get_settings()
        assert settings.escalation_threshold_minutes == 45.0
        assert settings.cache_ttl_seconds == 5.0
        assert settings.carewatch_port == 9000

    def test_previous_keys_split_on_commas(self, monkeypatch):
        monkeypatch.setenv("ENCRYPTION_PREVIOUS_KEYS", " key-a, ,key-b ")
        assert get_settings().previous_keys == ["key-a", "key-b"]

    def test_no_previous_keys_by_default(self, monkeypatch):
        monkeypatch.delenv("ENCRYPTION_PREVIOUS_KEYS", raising=False)
        assert get_settings().previous_keys == []
