"""
Configuration Management for Split Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Ledger defaults (fallback currency, search paging, invitation lifetime) and
scheduler timing live next to the database settings so a deployment can see
every tunable in one place.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """SQLite ledger database configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SPLITLEDGER_DB_",
        extra="ignore"
    )

    path: str = Field(
        default="data/splitledger.db",
        description="Path to the SQLite database file (':memory:' for ephemeral)"
    )
    busy_timeout_ms: int = Field(
        default=30000,
        ge=0,
        description="How long a writer waits on a locked database"
    )
    connect_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Connection attempts before giving up"
    )

    @property
    def is_memory(self) -> bool:
        return self.path == ":memory:"

    @field_validator('path')
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Reject an empty path; directories are created on connect."""
        if not v.strip():
            raise ValueError("Database path cannot be empty")
        if v != ":memory:" and Path(v).is_dir():
            raise ValueError(f"Database path points at a directory: {v}")
        return v


class LedgerSettings(BaseSettings):
    """Ledger behaviour defaults."""

    model_config = SettingsConfigDict(
        env_prefix="SPLITLEDGER_LEDGER_",
        extra="ignore"
    )

    friend_default_currency: str = Field(
        default="USD",
        min_length=3,
        max_length=3,
        description="Currency used for friend expenses when none is given"
    )
    search_default_limit: int = Field(
        default=20,
        ge=1,
        description="Page size for expense search when none is given"
    )
    search_max_limit: int = Field(
        default=100,
        ge=1,
        description="Hard upper bound on expense search page size"
    )
    invitation_ttl_days: int = Field(
        default=7,
        ge=1,
        le=90,
        description="How long an invitation token stays valid"
    )
    invitation_token_bytes: int = Field(
        default=32,
        ge=16,
        le=64,
        description="Random bytes in an invitation token (hex encoded)"
    )

    @field_validator('friend_default_currency')
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


class SchedulerSettings(BaseSettings):
    """Recurring expense job timing."""

    model_config = SettingsConfigDict(
        env_prefix="SPLITLEDGER_SCHEDULER_",
        extra="ignore"
    )

    enabled: bool = Field(
        default=True,
        description="Run the recurring expense job in the worker"
    )
    run_hour: int = Field(
        default=2,
        ge=0,
        le=23,
        description="Wall-clock hour of the first daily run"
    )
    run_minute: int = Field(
        default=0,
        ge=0,
        le=59,
        description="Wall-clock minute of the first daily run"
    )
    interval_hours: int = Field(
        default=24,
        ge=1,
        description="Hours between runs after the first one"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Root log level"
    )
    log_json: bool = Field(
        default=True,
        description="Render structured logs as JSON (console renderer otherwise)"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def scheduler(self) -> SchedulerSettings:
        return SchedulerSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("database", "ledger", "scheduler", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
