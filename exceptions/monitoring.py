"""
Monitoring Exception Classes for Internet Monitor

Failure taxonomy of the monitoring core.  None of these is allowed to
escape a scheduler tick: probe and measurement failures are recorded as
results, channel failures are logged and swallowed, tick failures are
logged and the loop continues.  Only the data-cap refusal is surfaced to
callers, as a distinct outcome.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from config.constants import FailureReason
from exceptions.base import InternetMonitorException


class MonitoringException(InternetMonitorException):
    """Parent class for all monitoring-related exceptions."""

    default_error_code = 3000


class ProbeFailure(MonitoringException):
    """
    Host unreachable, timed out or replied with garbage.

    Recorded as the -1 sentinel by ProbeRunner, never raised to callers.
    """

    default_error_code = 3100

    def __init__(self, message: str, address: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.address = address
        if address:
            self.details["address"] = address


class MeasurementFailure(MonitoringException):
    """
    A single bandwidth-test attempt failed.

    Carries the classified reason so the terminal result can report it.
    """

    default_error_code = 3200

    def __init__(
        self,
        message: str,
        reason: FailureReason = FailureReason.UNKNOWN,
        attempt: Optional[int] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)
        self.reason = reason
        self.attempt = attempt
        self.details["reason"] = reason.value
        if attempt is not None:
            self.details["attempt"] = attempt


class DataCapReachedError(MonitoringException):
    """
    The monthly data cap has been reached; the bandwidth test was refused
    before anything was run.
    """

    default_error_code = 3300
    http_status = 429

    def __init__(
        self,
        monthly_data_cap: str,
        used_bytes: Optional[float] = None,
        cap_bytes: Optional[float] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(
            f"Monthly data cap of {monthly_data_cap} reached. "
            f"Speed tests will resume next month.",
            **kwargs
        )
        self.monthly_data_cap = monthly_data_cap
        self.details["monthly_data_cap"] = monthly_data_cap
        if used_bytes is not None:
            self.details["used_bytes"] = used_bytes
        if cap_bytes is not None:
            self.details["cap_bytes"] = cap_bytes

    def to_response(self) -> Dict[str, Any]:
        return {**super().to_response(), "dataCapReached": True}


class NotificationChannelError(MonitoringException):
    """A notification channel failed to deliver a message."""

    default_error_code = 3400

    def __init__(self, message: str, channel: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.channel = channel
        if channel:
            self.details["channel"] = channel


class SchedulerTickFailure(MonitoringException):
    """An exception escaped one scheduler tick; the loop keeps running."""

    default_error_code = 3500

    def __init__(self, message: str, loop: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.loop = loop
        if loop:
            self.details["loop"] = loop
