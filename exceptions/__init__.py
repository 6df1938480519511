"""
Exceptions Package for Internet Monitor

Provides the exception hierarchy for error handling
throughout the application.
"""

from exceptions.base import (
    InternetMonitorException,
    ConfigurationError,
    InitializationError,
)

from exceptions.database import (
    StoreError,
    StoreConnectionError,
)

from exceptions.monitoring import (
    MonitoringException,
    ProbeFailure,
    MeasurementFailure,
    DataCapReachedError,
    NotificationChannelError,
    SchedulerTickFailure,
)

__all__ = [
    # Base exceptions
    "InternetMonitorException",
    "ConfigurationError",
    "InitializationError",

    # Store exceptions
    "StoreError",
    "StoreConnectionError",

    # Monitoring exceptions
    "MonitoringException",
    "ProbeFailure",
    "MeasurementFailure",
    "DataCapReachedError",
    "NotificationChannelError",
    "SchedulerTickFailure",
]
