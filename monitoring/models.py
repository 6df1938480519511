"""
============================================================================
INTERNET MONITOR - DOMAIN MODELS
============================================================================
Value objects and state shared by every monitoring component.

Runtime settings
----------------
``MonitorSettings`` is the user-editable settings aggregate.  It is a
pydantic model so that a settings document coming from the store or from
``POST /api/settings`` is validated in one place; the wire format uses the
camelCase keys the dashboard speaks (``testInterval``, ``monitoringHosts``).
The engine never mutates a settings object in place: an update builds a new
validated instance and swaps it in as a whole.

Measurement / state objects
---------------------------
``ProbeResult``, ``BandwidthResult``, ``HostHealthState`` and the
``MonitorState`` aggregate are plain dataclasses.  All of them are only ever
touched from the single asyncio event loop.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Annotated, Any, Deque, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from config.constants import (
    DEFAULT_EVENT_TOGGLES,
    DEFAULT_MONITORING_HOSTS,
    UNREACHABLE_PING,
    EventType,
    MessageType,
)
from config.settings import LogLevel
from utils.helpers import DataHelper, TimeHelper


# ============================================================================
# RUNTIME SETTINGS (pydantic)
# ============================================================================

class SettingsModel(BaseModel):
    """Base for runtime settings models: camelCase on the wire, snake_case in code."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> Dict[str, Any]:
        """Serialize with camelCase keys, JSON-compatible values."""
        return self.model_dump(mode="json", by_alias=True)


class MonitoredHost(SettingsModel):
    """A host probed by the liveness loop."""

    address: str = Field(min_length=1)
    name: str = Field(default="", validate_default=True)
    enabled: bool = True

    @field_validator("name")
    @classmethod
    def default_name(cls, v: str, info) -> str:
        if not v:
            return info.data.get("address", "")
        return v


class Thresholds(SettingsModel):
    """Bandwidth thresholds.  A value of 0 disables that check."""

    min_download: float = Field(default=50, ge=0)
    min_upload: float = Field(default=10, ge=0)
    max_ping: float = Field(default=100, ge=0)


# ----------------------------------------------------------------------------
# Notification channel configs (discriminated on ``type``)
# ----------------------------------------------------------------------------

class BrowserChannelConfig(SettingsModel):
    type: Literal["browser"] = "browser"
    enabled: bool = True
    sound: bool = True


class EmailChannelConfig(SettingsModel):
    type: Literal["email"] = "email"
    enabled: bool = True
    address: str = Field(min_length=3)
    smtp_host: str = Field(min_length=1)
    smtp_port: int = Field(default=587, ge=1, le=65535)
    smtp_user: str = ""
    smtp_password: str = ""
    use_tls: bool = True
    sender: Optional[str] = None


class WebhookChannelConfig(SettingsModel):
    type: Literal["webhook"] = "webhook"
    enabled: bool = True
    url: str = Field(min_length=1)
    method: str = "POST"
    headers: Dict[str, str] = Field(default_factory=dict)

    @field_validator("method")
    @classmethod
    def normalize_method(cls, v: str) -> str:
        return v.upper()


class TelegramChannelConfig(SettingsModel):
    type: Literal["telegram"] = "telegram"
    enabled: bool = True
    bot_token: str = Field(min_length=1)
    chat_id: str = Field(min_length=1)


class DiscordChannelConfig(SettingsModel):
    type: Literal["discord"] = "discord"
    enabled: bool = True
    webhook_url: str = Field(min_length=1)


class SlackChannelConfig(SettingsModel):
    type: Literal["slack"] = "slack"
    enabled: bool = True
    webhook_url: str = Field(min_length=1)


class SmsChannelConfig(SettingsModel):
    type: Literal["sms"] = "sms"
    enabled: bool = True
    provider: Literal["twilio"] = "twilio"
    account_sid: str = Field(min_length=1)
    auth_token: str = Field(min_length=1)
    from_number: str = Field(min_length=1)
    to_number: str = Field(min_length=1)


ChannelConfig = Annotated[
    Union[
        BrowserChannelConfig,
        EmailChannelConfig,
        WebhookChannelConfig,
        TelegramChannelConfig,
        DiscordChannelConfig,
        SlackChannelConfig,
        SmsChannelConfig,
    ],
    Field(discriminator="type"),
]


class NotificationSettings(SettingsModel):
    """
    Notification gate configuration.

    ``events`` always holds every ``EventType``; keys missing from the input
    take their default and unknown keys are dropped.
    """

    enabled: bool = False
    channels: List[ChannelConfig] = Field(
        default_factory=lambda: [BrowserChannelConfig()]
    )
    events: Dict[EventType, bool] = Field(
        default_factory=lambda: dict(DEFAULT_EVENT_TOGGLES)
    )
    min_time_between_notifications: float = Field(default=5, ge=0)
    quiet_hours_enabled: bool = False
    quiet_hours_start: str = "22:00"
    quiet_hours_end: str = "08:00"
    latency_cooldown_per_host: bool = False

    @field_validator("events", mode="before")
    @classmethod
    def fill_event_defaults(cls, v: Any) -> Dict[str, bool]:
        merged = {event.value: enabled for event, enabled in DEFAULT_EVENT_TOGGLES.items()}
        if isinstance(v, dict):
            known = {event.value for event in EventType}
            for key, enabled in v.items():
                key = key.value if isinstance(key, EventType) else key
                if key in known:
                    merged[key] = bool(enabled)
        return merged

    @field_validator("quiet_hours_start", "quiet_hours_end")
    @classmethod
    def validate_hhmm(cls, v: str) -> str:
        parsed = TimeHelper.parse_hhmm(v)
        return parsed.strftime("%H:%M")

    def is_event_enabled(self, event_type: EventType) -> bool:
        return self.events.get(event_type, False)


def _default_hosts() -> List[MonitoredHost]:
    return [MonitoredHost(**host) for host in DEFAULT_MONITORING_HOSTS]


class MonitorSettings(SettingsModel):
    """
    User-editable monitoring settings.

    Attributes:
        test_interval: Minutes between scheduled speed tests (cron ``*/N``)
        monitor_interval: Seconds between liveness probe cycles
        ping_host: Default target of the manual ping endpoint
        monthly_data_cap: Optional cap such as ``"50 GB"``
    """

    test_interval: int = Field(default=30, ge=1, le=1440)
    monitor_interval: int = Field(default=5, ge=1, le=3600)
    ping_host: str = "8.8.8.8"
    monitoring_hosts: List[MonitoredHost] = Field(default_factory=_default_hosts)
    thresholds: Thresholds = Field(default_factory=Thresholds)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    log_level: LogLevel = LogLevel.INFO
    monthly_data_cap: Optional[str] = None

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.upper()
        return v

    @field_validator("monthly_data_cap", mode="before")
    @classmethod
    def validate_data_cap(cls, v: Any) -> Optional[str]:
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        if DataHelper.parse_data_cap(str(v)) is None:
            raise ValueError(
                f"Invalid monthly data cap {v!r}, expected e.g. '500 GB' or '1.5 TB'"
            )
        return str(v).strip()

    @property
    def enabled_hosts(self) -> List[MonitoredHost]:
        return [host for host in self.monitoring_hosts if host.enabled]

    @property
    def data_cap_bytes(self) -> Optional[float]:
        return DataHelper.parse_data_cap(self.monthly_data_cap)


# ============================================================================
# MEASUREMENTS
# ============================================================================

@dataclass(frozen=True)
class ProbeResult:
    """Outcome of one liveness probe.  ``ping`` is -1 for unreachable."""

    address: str
    name: str
    ping: float
    timestamp: datetime

    @property
    def is_reachable(self) -> bool:
        return self.ping != UNREACHABLE_PING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "name": self.name,
            "ping": self.ping,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class BandwidthResult:
    """
    Outcome of one bandwidth measurement (possibly after retries).

    A failed measurement has every numeric field at zero and a non-empty
    ``error``.
    """

    timestamp: datetime
    download: float = 0.0
    upload: float = 0.0
    ping: float = 0.0
    jitter: float = 0.0
    download_latency: float = 0.0
    upload_latency: float = 0.0
    server: Optional[str] = None
    isp: Optional[str] = None
    result_url: Optional[str] = None
    download_bytes: Optional[int] = None
    upload_bytes: Optional[int] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return not self.error

    @classmethod
    def failed(cls, timestamp: datetime, error: str) -> "BandwidthResult":
        return cls(timestamp=timestamp, error=error or "Unknown error")

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "timestamp": self.timestamp.isoformat(),
            "download": self.download,
            "upload": self.upload,
            "ping": self.ping,
            "jitter": self.jitter,
            "downloadLatency": self.download_latency,
            "uploadLatency": self.upload_latency,
            "server": self.server,
            "isp": self.isp,
            "resultUrl": self.result_url,
            "downloadBytes": self.download_bytes,
            "uploadBytes": self.upload_bytes,
        }
        if self.error:
            data["error"] = self.error
        return data


# ============================================================================
# HEALTH / NOTIFICATION STATE
# ============================================================================

@dataclass
class HostHealthState:
    """Debounce counters for one monitored address."""

    is_down: bool = False
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    last_notification_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isDown": self.is_down,
            "consecutiveFailures": self.consecutive_failures,
            "consecutiveSuccesses": self.consecutive_successes,
            "lastNotificationTime": (
                self.last_notification_time.isoformat()
                if self.last_notification_time else None
            ),
        }


@dataclass
class LiveHostState:
    """Latest probe plus health counters for one address, as persisted."""

    result: ProbeResult
    health: HostHealthState


@dataclass
class MonitorEvent:
    """A candidate notification produced by the evaluators."""

    event_type: EventType
    payload: Dict[str, Any] = field(default_factory=dict)
    cooldown_key: Optional[str] = None

    @property
    def address(self) -> Optional[str]:
        return self.payload.get("address")


class CooldownLedger:
    """
    Last dispatch time per cooldown key.

    A key may fire again only once ``now - last_fired >= cooldown``.
    """

    def __init__(self) -> None:
        self._last_fired: Dict[str, datetime] = {}

    def last_fired(self, key: str) -> Optional[datetime]:
        return self._last_fired.get(key)

    def is_ready(self, key: str, now: datetime, cooldown: timedelta) -> bool:
        last = self._last_fired.get(key)
        if last is None:
            return True
        return now - last >= cooldown

    def record(self, key: str, now: datetime) -> None:
        self._last_fired[key] = now

    def clear(self) -> None:
        self._last_fired.clear()

    def __len__(self) -> int:
        return len(self._last_fired)


# ============================================================================
# STATE AGGREGATE
# ============================================================================

class MonitorState:
    """
    Everything the engine knows, owned in one place.

    ``health`` is the same dictionary the HostHealthTracker mutates.
    """

    def __init__(self, settings: MonitorSettings, history_limit: int = 100) -> None:
        self.settings = settings
        self.live: Dict[str, ProbeResult] = {}
        self.health: Dict[str, HostHealthState] = {}
        self.history: Deque[BandwidthResult] = deque(maxlen=history_limit)
        self.current_speed: Dict[str, float] = {"download": 0.0, "upload": 0.0, "ping": 0.0}
        self.ledger = CooldownLedger()
        self.connection_lost = False
        self.is_monitoring = False

    def append_history(self, result: BandwidthResult) -> None:
        self.history.append(result)

    def live_to_dict(self) -> Dict[str, Any]:
        return {address: result.to_dict() for address, result in self.live.items()}

    def history_to_list(self) -> List[Dict[str, Any]]:
        return [result.to_dict() for result in self.history]

    def snapshot(self) -> Dict[str, Any]:
        """The ``initial`` message a new subscriber receives."""
        return {
            "type": MessageType.INITIAL.value,
            "data": {
                "currentSpeed": dict(self.current_speed),
                "history": self.history_to_list(),
                "liveMonitoring": self.live_to_dict(),
                "hostHealth": {
                    address: state.to_dict() for address, state in self.health.items()
                },
                "connectionLost": self.connection_lost,
                "isMonitoring": self.is_monitoring,
                "settings": self.settings.to_wire(),
            },
        }
