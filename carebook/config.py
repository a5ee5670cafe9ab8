"""Configuration management for Carebook."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/carebook.db",
        description="SQLAlchemy async DSN for the scheduling store",
    )
    database_echo: bool = Field(
        default=False,
        description="Echo SQL statements (debugging only)",
    )

    # Slot maintenance
    default_days_ahead: int = Field(
        default=90,
        description="Days of slots generated ahead of today by the batch job",
    )
    slot_retention_days: int = Field(
        default=30,
        description="Slots older than this many days are removed by cleanup",
    )
    maintenance_item_timeout_seconds: float = Field(
        default=30.0,
        description="Per-clinician timeout during batch generation",
    )
    trigger_max_retries: int = Field(
        default=3,
        description="Attempts the CLI trigger makes when storage is unavailable",
    )

    # Booking
    default_time_zone: str = Field(
        default="UTC",
        description="Time zone recorded on appointments created without one",
    )
    alternative_search_radius_days: int = Field(default=7)
    alternative_max_results: int = Field(default=10)
    peak_times_limit: int = Field(default=5)

    # Clinician exceptions
    exception_lookahead_days: int = Field(
        default=90,
        description="How far ahead recurring exceptions are expanded",
    )

    # Domain events
    events_enabled: bool = Field(
        default=True,
        description="Write booking and maintenance events to JSON Lines files",
    )
    event_log_dir: Path = Field(
        default=Path("./data/events"),
        description="Directory for event log files",
    )

    # API Settings
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8080)
    api_key: str = Field(
        default="",
        description="API key for authenticating requests",
    )

    # CORS
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins",
    )

    # Debug
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode (exposes error details in responses)",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")

    @property
    def has_api_key(self) -> bool:
        """Check if an API key is configured."""
        return bool(self.api_key)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
