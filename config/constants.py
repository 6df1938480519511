"""
Constants Module for Internet Monitor

Contains all constant values, enumerations, templates, and
static configuration used throughout the application.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Final, FrozenSet, List


# Round-trip time recorded for an unreachable host
UNREACHABLE_PING: Final[float] = -1.0

# Speed-test CLI reports bandwidth in bytes/s; 125000 bytes/s == 1 Mbps
BYTES_PER_SECOND_PER_MBPS: Final[int] = 125_000


class EventType(str, Enum):
    """
    Notification event types.

    The values double as the keys of the per-event enable map in the
    notification settings.
    """

    HOST_DOWN = "onHostDown"
    HOST_UP = "onHostUp"
    CONNECTION_LOST = "onConnectionLost"
    CONNECTION_RESTORED = "onConnectionRestored"
    HIGH_LATENCY = "onHighLatency"
    SPEED_TEST_COMPLETE = "onSpeedTestComplete"
    THRESHOLD_BREACH = "onThresholdBreach"

    @property
    def cooldown_class(self) -> str:
        """Default cooldown ledger key for this event type."""
        return COOLDOWN_CLASSES[self]

    @property
    def is_problem(self) -> bool:
        """True for events that report a degradation rather than a recovery."""
        return self in PROBLEM_EVENTS


class MessageType(str, Enum):
    """Subscriber (WebSocket) message types."""

    INITIAL = "initial"
    STATUS = "status"
    SETTINGS = "settings"
    LIVE_MONITORING = "liveMonitoring"
    SPEEDTEST = "speedtest"
    HISTORY = "history"
    HISTORY_CLEARED = "historyCleared"
    NOTIFICATION = "notification"
    BATCH = "batch"


class BreachMetric(str, Enum):
    """Bandwidth result fields that thresholds apply to."""

    DOWNLOAD = "download"
    UPLOAD = "upload"
    PING = "ping"


class FailureReason(str, Enum):
    """Classification of a failed bandwidth measurement."""

    TIMEOUT = "Timeout"
    NETWORK = "Network Connection"
    DNS = "DNS Resolution"
    UNKNOWN = "Unknown"


# Message types a subscriber must never perceive as delayed or reordered
IMMEDIATE_MESSAGE_TYPES: Final[FrozenSet[str]] = frozenset({
    MessageType.INITIAL.value,
    MessageType.STATUS.value,
    MessageType.SETTINGS.value,
})

PROBLEM_EVENTS: Final[FrozenSet[EventType]] = frozenset({
    EventType.HOST_DOWN,
    EventType.CONNECTION_LOST,
    EventType.HIGH_LATENCY,
    EventType.THRESHOLD_BREACH,
})

COOLDOWN_CLASSES: Final[Dict[EventType, str]] = {
    EventType.HOST_DOWN: "hostStatus",
    EventType.HOST_UP: "hostStatus",
    EventType.CONNECTION_LOST: "connectionLost",
    EventType.CONNECTION_RESTORED: "connectionRestored",
    EventType.HIGH_LATENCY: "highLatency",
    EventType.SPEED_TEST_COMPLETE: "speedTestComplete",
    EventType.THRESHOLD_BREACH: "thresholdBreach",
}

EVENT_EMOJI: Final[Dict[EventType, str]] = {
    EventType.HOST_DOWN: "🔴",
    EventType.HOST_UP: "🟢",
    EventType.CONNECTION_LOST: "⚠️",
    EventType.CONNECTION_RESTORED: "✅",
    EventType.HIGH_LATENCY: "🐌",
    EventType.SPEED_TEST_COMPLETE: "✅",
    EventType.THRESHOLD_BREACH: "⚠️",
}

# Interpolated with str.format_map; missing keys render as "N/A"
MESSAGE_TEMPLATES: Final[Dict[EventType, str]] = {
    EventType.HOST_DOWN: "{emoji} Host Down: {host} ({address}) is unreachable",
    EventType.HOST_UP: "{emoji} Host Up: {host} ({address}) is back online",
    EventType.CONNECTION_LOST: (
        "{emoji} Connection Lost: all {host_count} monitored hosts are unreachable"
    ),
    EventType.CONNECTION_RESTORED: (
        "{emoji} Connection Restored: {reachable_count} of {host_count} hosts reachable again"
    ),
    EventType.HIGH_LATENCY: (
        "{emoji} High Latency: {host} ({address}) - {ping}ms (threshold: {threshold}ms)"
    ),
    EventType.SPEED_TEST_COMPLETE: (
        "{emoji} Speed Test Complete: ↓{download} Mbps / ↑{upload} Mbps / {ping}ms ping"
    ),
    EventType.THRESHOLD_BREACH: (
        "{emoji} Threshold Breach: Download {download} Mbps (min: {min_download}), "
        "Upload {upload} Mbps (min: {min_upload}), Ping {ping}ms (max: {max_ping})"
    ),
}

DEFAULT_EVENT_TOGGLES: Final[Dict[EventType, bool]] = {
    EventType.SPEED_TEST_COMPLETE: True,
    EventType.THRESHOLD_BREACH: True,
    EventType.HOST_DOWN: True,
    EventType.HOST_UP: True,
    EventType.CONNECTION_LOST: True,
    EventType.CONNECTION_RESTORED: True,
    EventType.HIGH_LATENCY: False,
}

DEFAULT_MONITORING_HOSTS: Final[List[Dict[str, object]]] = [
    {"address": "8.8.8.8", "name": "Google DNS", "enabled": True},
    {"address": "1.1.1.1", "name": "Cloudflare DNS", "enabled": True},
    {"address": "208.67.222.222", "name": "OpenDNS", "enabled": False},
]

# Binary multiples accepted by the monthly data cap ("5 GB", "1.5 TB")
DATA_CAP_MULTIPLIERS: Final[Dict[str, int]] = {
    "KB": 1024,
    "MB": 1024 ** 2,
    "GB": 1024 ** 3,
    "TB": 1024 ** 4,
    "PB": 1024 ** 5,
}

# Discord embed colours
ALERT_COLOR_PROBLEM: Final[int] = 0xFF0000
ALERT_COLOR_OK: Final[int] = 0x00FF00
