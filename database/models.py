"""
============================================================================
INTERNET MONITOR - DATABASE MODELS
============================================================================
SQLAlchemy ORM models for the monitor's SQLite store.

Tables
------
speed_tests              one row per bandwidth measurement (failed ones too)
live_monitoring          latest probe + health counters per address (upsert)
live_monitoring_history  every liveness probe, pruned by the maintenance job
settings                 the user-editable settings document, one row

All timestamps are stored as naive UTC (SQLite has no time zone type) and
converted back to aware UTC datetimes when rows are turned into domain
objects.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Column, Integer, BigInteger, String, Boolean, DateTime, Text,
    Float, JSON, Index, func
)
from sqlalchemy.orm import declarative_base

from monitoring.models import BandwidthResult, HostHealthState, LiveHostState, ProbeResult


# ============================================================================
# BASE MODEL CONFIGURATION
# ============================================================================

Base = declarative_base()


def to_db_time(value: Optional[datetime]) -> Optional[datetime]:
    """Aware datetime -> naive UTC for storage."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def from_db_time(value: Optional[datetime]) -> Optional[datetime]:
    """Naive UTC from storage -> aware UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ============================================================================
# SPEED TESTS
# ============================================================================

class SpeedTest(Base):
    """
    Bandwidth measurement history.
    """
    __tablename__ = "speed_tests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime, nullable=False, index=True)

    download = Column(Float, nullable=False, default=0.0)
    upload = Column(Float, nullable=False, default=0.0)
    ping = Column(Float, nullable=False, default=0.0)
    jitter = Column(Float, nullable=False, default=0.0)
    download_latency = Column(Float, nullable=False, default=0.0)
    upload_latency = Column(Float, nullable=False, default=0.0)

    server = Column(String(255), nullable=True)
    isp = Column(String(255), nullable=True)
    result_url = Column(String(500), nullable=True)

    download_bytes = Column(BigInteger, nullable=True)
    upload_bytes = Column(BigInteger, nullable=True)

    error = Column(Text, nullable=True)

    @classmethod
    def from_result(cls, result: BandwidthResult) -> "SpeedTest":
        return cls(
            timestamp=to_db_time(result.timestamp),
            download=result.download,
            upload=result.upload,
            ping=result.ping,
            jitter=result.jitter,
            download_latency=result.download_latency,
            upload_latency=result.upload_latency,
            server=result.server,
            isp=result.isp,
            result_url=result.result_url,
            download_bytes=result.download_bytes,
            upload_bytes=result.upload_bytes,
            error=result.error,
        )

    def to_result(self) -> BandwidthResult:
        return BandwidthResult(
            timestamp=from_db_time(self.timestamp),
            download=self.download or 0.0,
            upload=self.upload or 0.0,
            ping=self.ping or 0.0,
            jitter=self.jitter or 0.0,
            download_latency=self.download_latency or 0.0,
            upload_latency=self.upload_latency or 0.0,
            server=self.server,
            isp=self.isp,
            result_url=self.result_url,
            download_bytes=self.download_bytes,
            upload_bytes=self.upload_bytes,
            error=self.error,
        )

    def __repr__(self) -> str:
        return (
            f"<SpeedTest(id={self.id}, timestamp={self.timestamp}, "
            f"down={self.download}, up={self.upload}, error={bool(self.error)})>"
        )


# ============================================================================
# LIVE MONITORING
# ============================================================================

class LiveMonitoring(Base):
    """
    Latest probe and debounce counters for one address.

    Keyed by address so that saving is an idempotent upsert.
    """
    __tablename__ = "live_monitoring"

    address = Column(String(255), primary_key=True)
    name = Column(String(255), nullable=False, default="")
    ping = Column(Float, nullable=False, default=-1.0)
    timestamp = Column(DateTime, nullable=False)

    is_down = Column(Boolean, nullable=False, default=False)
    consecutive_failures = Column(Integer, nullable=False, default=0)
    consecutive_successes = Column(Integer, nullable=False, default=0)
    last_notification_time = Column(DateTime, nullable=True)

    updated_at = Column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def apply(self, state: LiveHostState) -> None:
        self.name = state.result.name
        self.ping = state.result.ping
        self.timestamp = to_db_time(state.result.timestamp)
        self.is_down = state.health.is_down
        self.consecutive_failures = state.health.consecutive_failures
        self.consecutive_successes = state.health.consecutive_successes
        self.last_notification_time = to_db_time(state.health.last_notification_time)

    def to_state(self) -> LiveHostState:
        return LiveHostState(
            result=ProbeResult(
                address=self.address,
                name=self.name or self.address,
                ping=self.ping,
                timestamp=from_db_time(self.timestamp),
            ),
            health=HostHealthState(
                is_down=bool(self.is_down),
                consecutive_failures=self.consecutive_failures or 0,
                consecutive_successes=self.consecutive_successes or 0,
                last_notification_time=from_db_time(self.last_notification_time),
            ),
        )

    def __repr__(self) -> str:
        return f"<LiveMonitoring(address={self.address!r}, ping={self.ping}, down={self.is_down})>"


class LiveMonitoringHistory(Base):
    """
    Every liveness probe, for the per-host latency chart.
    """
    __tablename__ = "live_monitoring_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    address = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False, default="")
    ping = Column(Float, nullable=False)
    timestamp = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_live_history_address_timestamp", "address", "timestamp"),
        Index("idx_live_history_timestamp", "timestamp"),
    )

    def to_result(self) -> ProbeResult:
        return ProbeResult(
            address=self.address,
            name=self.name or self.address,
            ping=self.ping,
            timestamp=from_db_time(self.timestamp),
        )


# ============================================================================
# SETTINGS
# ============================================================================

class SettingsDocument(Base):
    """
    The runtime monitoring settings, stored as one JSON document.
    """
    __tablename__ = "settings"

    key = Column(String(64), primary_key=True)
    value = Column(JSON, nullable=False)
    updated_at = Column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
