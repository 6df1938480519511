"""
Settings Module for Internet Monitor

Process-level configuration management using Pydantic Settings.
Supports environment variables, .env files, and sensible defaults.

These settings describe HOW the monitor runs (database location, log sinks,
probe timeouts, batching windows).  The user-editable monitoring settings
(hosts, intervals, thresholds, notification channels) are persisted in the
store and live in ``monitoring.models``.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict
from enum import Enum

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment enumeration."""
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"


class LogLevel(str, Enum):
    """Logging level enumeration."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class BaseSettingsConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        validate_default=True
    )


class DatabaseSettings(BaseSettingsConfig):
    """
    Database Configuration Settings

    The monitor keeps its history and live state in a single SQLite file.
    """

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=".env",
        extra="ignore"
    )

    sqlite_path: Path = Field(
        default=Path("data/monitoring.db"),
        description="Path to SQLite database file"
    )
    echo: bool = Field(
        default=False,
        description="Echo SQL queries (debug mode)"
    )

    @property
    def url(self) -> str:
        """Generate the async database URL."""
        self.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite+aiosqlite:///{self.sqlite_path}"

    @field_validator("sqlite_path")
    @classmethod
    def validate_sqlite_path(cls, v: Path) -> Path:
        """Validate and normalize SQLite path."""
        if not v.suffix:
            v = v.with_suffix(".db")
        return v


class LoggingSettings(BaseSettingsConfig):
    """
    Logging Configuration Settings

    Controls loguru sinks: console, rotating file and a separate error file.
    """

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        extra="ignore"
    )

    level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Minimum log level"
    )
    console_enabled: bool = Field(
        default=True,
        description="Log to stdout"
    )
    colorize: bool = Field(
        default=True,
        description="Colorize console output"
    )
    file_enabled: bool = Field(
        default=True,
        description="Log to a rotating file"
    )
    file_path: Path = Field(
        default=Path("logs/monitor.log"),
        description="Main log file"
    )
    error_file_path: Path = Field(
        default=Path("logs/errors.log"),
        description="Error-only log file"
    )
    file_rotation: str = Field(
        default="10 MB",
        description="Rotation policy for the main log file"
    )
    file_retention: str = Field(
        default="7 days",
        description="Retention policy for rotated log files"
    )
    serialize: bool = Field(
        default=False,
        description="Write the main log file as JSON lines"
    )


class MonitoringSettings(BaseSettingsConfig):
    """
    Monitoring Configuration Settings

    Probe timeouts, hysteresis thresholds, speed-test CLI invocation and
    retry policy.
    """

    model_config = SettingsConfigDict(
        env_prefix="MONITOR_",
        env_file=".env",
        extra="ignore"
    )

    # Liveness probes
    probe_timeout: float = Field(
        default=2.0,
        gt=0,
        le=10,
        description="Ping timeout in seconds (sub-5-second polling cycles)"
    )
    failure_threshold: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Consecutive failed probes before a host is marked down"
    )
    success_threshold: int = Field(
        default=2,
        ge=1,
        le=20,
        description="Consecutive successful probes before a down host is marked up"
    )

    # Bandwidth test
    speedtest_command: str = Field(
        default="speedtest --accept-license --accept-gdpr --format=json",
        description="External CLI producing a JSON speed-test report"
    )
    speedtest_timeout: float = Field(
        default=90.0,
        gt=0,
        description="Hard wall-clock timeout for one speed-test attempt (seconds)"
    )
    speedtest_max_attempts: int = Field(
        default=4,
        ge=1,
        le=10,
        description="Maximum speed-test attempts before recording a failure"
    )
    speedtest_retry_delay: float = Field(
        default=10.0,
        ge=0,
        description="Base retry delay; attempt N waits N x this value (seconds)"
    )

    # History / retention
    history_limit: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Bandwidth results kept in the rolling in-memory history"
    )
    history_preload: int = Field(
        default=1000,
        ge=1,
        description="Rows read from the store when the engine starts"
    )
    live_history_retention_days: int = Field(
        default=7,
        ge=1,
        le=365,
        description="Days of per-host ping history kept in the store"
    )
    maintenance_interval: int = Field(
        default=86400,
        ge=60,
        description="Seconds between maintenance (history pruning) runs"
    )

    # Notification cooldowns
    restore_cooldown_minutes: float = Field(
        default=1.0,
        ge=0,
        description="Cooldown for connection-restored notifications (minutes)"
    )
    channel_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for a single notification channel call (seconds)"
    )


class BroadcastSettings(BaseSettingsConfig):
    """
    Subscriber Broadcast Settings

    Batching window for non-critical WebSocket messages.
    """

    model_config = SettingsConfigDict(
        env_prefix="BROADCAST_",
        env_file=".env",
        extra="ignore"
    )

    batch_interval_ms: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Flush queued messages after this many milliseconds"
    )
    batch_size_limit: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Flush queued messages once this many are waiting"
    )


class WebSettings(BaseSettingsConfig):
    """Web server (API + WebSocket) settings."""

    model_config = SettingsConfigDict(
        env_prefix="WEB_",
        env_file=".env",
        extra="ignore"
    )

    host: str = Field(
        default="0.0.0.0",
        description="Web server host"
    )
    port: int = Field(
        default=8745,
        ge=1,
        le=65535,
        description="Web server port"
    )
    heartbeat: float = Field(
        default=30.0,
        gt=0,
        description="WebSocket heartbeat interval (seconds)"
    )


class Settings(BaseSettingsConfig):
    """
    Main Settings Class

    Aggregates all settings sections and provides the main
    configuration interface for the application.
    """

    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment"
    )
    app_name: str = Field(
        default="Internet Monitor",
        description="Application name"
    )
    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )

    # Nested settings
    database: DatabaseSettings = Field(
        default_factory=DatabaseSettings
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings
    )
    monitoring: MonitoringSettings = Field(
        default_factory=MonitoringSettings
    )
    broadcast: BroadcastSettings = Field(
        default_factory=BroadcastSettings
    )
    web: WebSettings = Field(
        default_factory=WebSettings
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        """Check if running in testing environment."""
        return self.environment == Environment.TESTING

    @model_validator(mode="after")
    def configure_for_environment(self) -> "Settings":
        """Apply environment-specific configuration."""
        if self.is_production:
            self.database.echo = False
        elif self.is_testing:
            self.logging.file_enabled = False
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to a JSON-friendly dictionary."""
        return self.model_dump(mode="json")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    This function is cached to ensure a single settings instance
    is used throughout the application lifecycle.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
