"""Application settings loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """CareWatch alert engine configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Loopback by default: the server has no auth layer of its own.
    carewatch_host: str = "127.0.0.1"
    carewatch_port: int = 8011
    carewatch_log_level: str = "info"
    carewatch_allow_insecure_bind: bool = False

    # Storage (alert store, care circle, audit trail)
    db_path: str = "~/.carewatch/alerts.db"

    # Encryption of alert messages / related data at rest.
    # ENCRYPTION_PREVIOUS_KEYS is comma-separated; rows sealed with them still open.
    encryption_key: str = ""
    encryption_previous_keys: str = ""

    # Alert policy
    escalation_threshold_minutes: float = 30.0
    relation_window_minutes: float = 15.0

    # Permission / preference lookup cache
    cache_ttl_seconds: float = 60.0
    cache_max_entries: int = 1000

    @property
    def previous_keys(self) -> list[str]:
        return [k.strip() for k in self.encryption_previous_keys.split(",") if k.strip()]


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
