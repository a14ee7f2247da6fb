"""
Configuration settings for the studyflow engine.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

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
        env_prefix="STUDYFLOW_",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Local State
    # ========================================
    state_db_path: Path = Field(
        default=Path.home() / ".studyflow" / "state.db",
        description="SQLite file holding the state snapshot and the outbound sync queue",
    )
    user_id: str = Field(
        default="local",
        description="Owner of the study data; remote documents are scoped to it",
    )
    persist_quiet_period_seconds: float = Field(
        default=1.0,
        description="Quiet period after the last change before the snapshot is flushed",
    )

    # ========================================
    # Remote Document Store
    # ========================================
    remote_url: str | None = Field(
        default=None,
        description="Base URL of the remote document API (None keeps the data local)",
    )
    remote_api_key: str | None = Field(
        default=None,
        description="Bearer token for the remote document API",
    )
    remote_timeout_ms: int = Field(
        default=10000,
        description="Request timeout for remote calls in milliseconds",
    )
    remote_retry_attempts: int = Field(
        default=3,
        description="In-request retries for timeouts and 5xx responses on remote reads",
    )

    # ========================================
    # Sync Queue
    # ========================================
    sync_enabled: bool = Field(
        default=True,
        description="Mirror local actions to the remote store",
    )
    sync_max_retries: int = Field(
        default=5,
        description="Attempts before an outbound write is marked permanently failed",
    )
    sync_backoff_base_seconds: float = Field(
        default=2.0,
        description="Base of the exponential backoff between outbound write attempts",
    )
    sync_poll_interval_seconds: float = Field(
        default=1.0,
        description="How often the sync worker polls for ready writes",
    )
    sync_shutdown_timeout_seconds: float = Field(
        default=5.0,
        description="Upper bound on the final queue flush at shutdown",
    )

    # ========================================
    # Pomodoro
    # ========================================
    timer_interval_seconds: float = Field(
        default=1.0,
        description="Tick interval of the Pomodoro timer",
    )
    default_short_break_minutes: int = Field(default=5)
    default_long_break_minutes: int = Field(default=15)
    default_cycles_until_long_break: int = Field(default=4)

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (None for stderr only)",
    )

    # ========================================
    # Helper Methods
    # ========================================

    def has_remote_configured(self) -> bool:
        """Check if remote mirroring is configured and enabled."""
        return bool(self.sync_enabled and self.remote_url)

    def get_pomodoro_defaults(self) -> dict[str, int]:
        """Get default break settings in seconds."""
        return {
            "short_break_duration": self.default_short_break_minutes * 60,
            "long_break_duration": self.default_long_break_minutes * 60,
            "cycles_until_long_break": self.default_cycles_until_long_break,
        }

    def get_sync_config(self) -> dict[str, float | int]:
        """Get outbound queue retry configuration."""
        return {
            "max_retries": self.sync_max_retries,
            "backoff_base_seconds": self.sync_backoff_base_seconds,
            "poll_interval_seconds": self.sync_poll_interval_seconds,
            "shutdown_timeout_seconds": self.sync_shutdown_timeout_seconds,
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
