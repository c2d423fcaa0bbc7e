"""Runtime configuration based on environment variables."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class DatabaseSettings(BaseModel):
    dsn: str = Field(
        default="sqlite+aiosqlite:///./data/relaybot.db",
        description="SQLAlchemy async DSN for the user registry and the event log.",
    )
    pool_size: int = Field(default=5, ge=1, le=50)
    max_overflow: int = Field(default=10, ge=0, le=100)
    echo: bool = False
    pool_recycle: int = Field(default=3600, ge=30)
    pool_pre_ping: bool = Field(default=True)


class FloodControlSettings(BaseModel):
    max_requests: int = Field(default=5, ge=1)
    window_ms: int = Field(default=60_000, ge=1)
    sweep_interval_seconds: int = Field(default=300, ge=1)


class BroadcastSettings(BaseModel):
    # Telegram allows roughly 30 messages per second per bot.
    batch_size: int = Field(default=30, ge=1)
    inter_batch_delay_ms: int = Field(default=1000, ge=0)
    send_timeout_seconds: int = Field(default=10, ge=1, le=120)


class EventLogSettings(BaseModel):
    max_entries: int = Field(default=10_000, ge=100)


class BotSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="BOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    environment: Literal["dev", "staging", "prod"] = "dev"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    telegram_token: SecretStr
    telegram_proxy: str | None = None
    default_language: str = "en"
    owner_id: int | None = None
    admin_ids: Annotated[frozenset[int], NoDecode] = Field(default_factory=frozenset)
    shutdown_grace_seconds: float = Field(default=2.0, ge=0, le=30)

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    flood_control: FloodControlSettings = Field(default_factory=FloodControlSettings)
    broadcast: BroadcastSettings = Field(default_factory=BroadcastSettings)
    event_log: EventLogSettings = Field(default_factory=EventLogSettings)

    @field_validator("admin_ids", mode="before")
    @classmethod
    def _split_admin_ids(cls, value):
        if isinstance(value, int):
            return {value}
        if isinstance(value, str):
            cleaned = value.strip().strip("[]").replace(";", ",")
            return {int(part) for part in cleaned.split(",") if part.strip()}
        return value


@lru_cache
def get_settings() -> BotSettings:
    """Return cached settings instance."""

    return BotSettings()  # type: ignore[call-arg]


__all__ = [
    "BotSettings",
    "BroadcastSettings",
    "DatabaseSettings",
    "EventLogSettings",
    "FloodControlSettings",
    "get_settings",
]
