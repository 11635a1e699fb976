from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class SeederSettings(BaseSettings):
    model_config = SettingsConfigDict(extra="forbid")

    postgres_url: str
    # Passed to asyncpg as `ssl`; an `sslmode` in the URL takes precedence.
    postgres_ssl: str = "require"
    log_level: str = "info"

    tracing_enabled: bool = False


SETTINGS = SeederSettings()
