"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/calls.db",
        description="SQLAlchemy connection string.",
    )

    # Migrations / schema
    auto_create_db_schema: bool = Field(
        default=True,
        description="If true, creates tables automatically on startup (useful for local/dev).",
    )

    # Chat homeserver (room membership, profiles, m.call.* events)
    matrix_homeserver_url: str = Field(
        default="http://localhost:8008",
        description="Base URL of the Matrix homeserver client-server API.",
    )
    matrix_timeout_seconds: float = Field(default=10.0, gt=0)
    chat_events_enabled: bool = Field(
        default=True,
        description="Push informational m.call.* events into the chat room.",
    )

    # ICE configuration handed to clients
    stun_urls: list[str] = Field(
        default=[
            "stun:stun.l.google.com:19302",
            "stun:stun1.l.google.com:19302",
            "stun:stun2.l.google.com:19302",
        ]
    )
    turn_urls: list[str] = Field(
        default_factory=list,
        description="Optional privately operated TURN relays, e.g. turn:turn.example.com:3478",
    )
    turn_username: str | None = Field(default=None)
    turn_credential: str | None = Field(default=None)

    # Ringing
    ring_window_seconds: int = Field(
        default=90,
        description="How long a ringing call is offered to polling clients.",
    )
    pending_notification_ttl_seconds: int = Field(
        default=90,
        description="Validity of queued incoming-call events for offline users.",
    )
    ring_lifetime_ms: int = Field(
        default=60000,
        description="Lifetime advertised in the m.call.invite chat event.",
    )

    data_dir: Path = Field(default=Path("./data"))

    @field_validator("data_dir")
    @classmethod
    def ensure_data_dir(cls, value: Path) -> Path:
        value.mkdir(parents=True, exist_ok=True)
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
