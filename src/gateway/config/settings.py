"""Pydantic settings configuration for the gateway."""

from enum import Enum
from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LogLevel(str, Enum):
    """Valid logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="GATEWAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: LogLevel = LogLevel.INFO

    # Agent CLI profile
    config_path: str = "/config/agent.yaml"
    chat_enabled: bool = True
    anthropic_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("GATEWAY_ANTHROPIC_API_KEY", "ANTHROPIC_API_KEY"),
        repr=False,
    )

    # Session settings
    session_timeout_min: int = Field(default=30, ge=1)
    sweep_interval_seconds: float = Field(default=60.0, gt=0)

    # Stream settings
    stream_idle_timeout_seconds: float = Field(default=300.0, gt=0)
    stream_max_duration_seconds: float | None = Field(default=300.0, gt=0)
    stream_ping_seconds: int = Field(default=15, ge=1)
    stream_channel_size: int = Field(default=64, ge=1)

    # Observability settings
    audit_enabled: bool = True
    audit_log_level: str = "INFO"

    # Hot reload settings
    hot_reload_enabled: bool = True
    hot_reload_debounce_seconds: float = 1.0


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
