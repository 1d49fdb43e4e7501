"""
flowengine/config.py
────────────────────
Typed settings loaded from environment variables / .env.

Every module reads configuration through the `settings` singleton:

    from flowengine.config import settings
    settings.postgres.async_url
    settings.whatsapp.reconnect_delay_seconds
"""

from __future__ import annotations
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _section(prefix: str) -> SettingsConfigDict:
    return SettingsConfigDict(
        env_prefix=prefix,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )


# ---------------------------------------------------------------------------
# Postgres  (flow storage)
# ---------------------------------------------------------------------------
class PostgresSettings(BaseSettings):
    model_config = _section("POSTGRES_")

    host:     str = "localhost"
    port:     int = 5432
    db:       str = "flowengine"
    user:     str = "postgres"
    password: str = "postgres"

    @property
    def async_url(self) -> str:
        return f"postgresql+asyncpg://{self.user}:{self.password}@{self.host}:{self.port}/{self.db}"

    @property
    def sync_url(self) -> str:
        return f"postgresql+psycopg2://{self.user}:{self.password}@{self.host}:{self.port}/{self.db}"


# ---------------------------------------------------------------------------
# Twilio  (WhatsApp Business transport)
# ---------------------------------------------------------------------------
class TwilioSettings(BaseSettings):
    model_config = _section("TWILIO_")

    account_sid:   str | None = None
    auth_token:    str | None = None
    whatsapp_from: str | None = Field(default=None, description="e.g. 'whatsapp:+14155238886'")
    # Public base URL Twilio calls; needed to validate request signatures
    webhook_base_url: str | None = None


# ---------------------------------------------------------------------------
# WhatsApp connection lifecycle
# ---------------------------------------------------------------------------
class WhatsAppSettings(BaseSettings):
    model_config = _section("WHATSAPP_")

    sessions_dir:            Path = Path("sessions")
    reconnect_delay_seconds: float = 5.0
    transport:               Literal["twilio", "mock"] = "mock"


class Settings(BaseSettings):
    model_config = _section("")

    log_level: str = "INFO"

    postgres: PostgresSettings = Field(default_factory=PostgresSettings)
    twilio:   TwilioSettings   = Field(default_factory=TwilioSettings)
    whatsapp: WhatsAppSettings = Field(default_factory=WhatsAppSettings)


settings = Settings()
