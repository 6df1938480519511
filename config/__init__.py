"""
Configuration Package for Internet Monitor

This package contains all configuration-related modules including:
- Settings management with environment variable support
- Constants and enums used throughout the application
"""

from config.settings import (
    Settings,
    DatabaseSettings,
    LoggingSettings,
    MonitoringSettings,
    BroadcastSettings,
    WebSettings,
    get_settings,
)

from config.constants import (
    EventType,
    MessageType,
    BreachMetric,
    FailureReason,
    UNREACHABLE_PING,
    IMMEDIATE_MESSAGE_TYPES,
    MESSAGE_TEMPLATES,
    EVENT_EMOJI,
)

__all__ = [
    # Settings
    "Settings",
    "DatabaseSettings",
    "LoggingSettings",
    "MonitoringSettings",
    "BroadcastSettings",
    "WebSettings",
    "get_settings",

    # Constants
    "EventType",
    "MessageType",
    "BreachMetric",
    "FailureReason",
    "UNREACHABLE_PING",
    "IMMEDIATE_MESSAGE_TYPES",
    "MESSAGE_TEMPLATES",
    "EVENT_EMOJI",
]
