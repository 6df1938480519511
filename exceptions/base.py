"""
Base Exception Classes for Internet Monitor

Every error the monitor raises on purpose derives from
``InternetMonitorException``.  Besides the message it carries a numeric
code for log grepping, a details dict that ends up in API error bodies,
and the HTTP status the web layer answers with.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional


class InternetMonitorException(Exception):
    """
    Base Exception Class

    Attributes:
        message: Human-readable error message
        error_code: Numeric code (1xxx app, 2xxx store, 3xxx monitoring)
        details: Extra context, JSON-serializable
        cause: The underlying exception, if any
        recoverable: False when the process cannot carry on
        http_status: Status used when the error reaches the API
    """

    default_error_code: int = 1000
    default_recoverable: bool = True
    http_status: int = 500

    def __init__(
        self,
        message: str = "An error occurred",
        error_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
        recoverable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)

        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details: Dict[str, Any] = details or {}
        self.cause = cause
        self.recoverable = recoverable if recoverable is not None else self.default_recoverable
        self.timestamp = datetime.now(timezone.utc)

    def to_response(self) -> Dict[str, Any]:
        """JSON body for an API error response."""
        return {"error": self.message, "code": self.error_code, **self.details}

    def log_format(self) -> str:
        """One-line rendering for log records."""
        parts = [f"{self.__class__.__name__}[{self.error_code}]: {self.message}"]

        if self.details:
            parts.append(f"details={self.details}")

        if self.cause:
            parts.append(f"cause={self.cause!r}")

        return " | ".join(parts)

    @classmethod
    def from_exception(
        cls,
        exception: BaseException,
        message: Optional[str] = None,
        **kwargs: Any
    ) -> "InternetMonitorException":
        """
        Wrap a foreign exception, keeping it as ``cause``.

        Args:
            exception: The original exception
            message: Override message (uses the original's text if omitted)
            **kwargs: Extra constructor arguments of *cls*
        """
        return cls(
            message=message or str(exception) or type(exception).__name__,
            cause=exception,
            **kwargs
        )

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code}, "
            f"details={self.details})"
        )


class ConfigurationError(InternetMonitorException):
    """
    Configuration Error

    Raised when runtime monitoring settings (or a request body carrying
    them) fail validation.  The current settings stay in effect.
    """

    default_error_code = 1100
    http_status = 400

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        if config_key:
            self.details["config_key"] = config_key


class InitializationError(InternetMonitorException):
    """Raised when a startup phase (database, engine, web server) fails."""

    default_error_code = 1200
    default_recoverable = False

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        if component:
            self.details["component"] = component
