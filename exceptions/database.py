"""
Database Exception Classes for Internet Monitor

Provides specialized exceptions for persistence errors raised by the
SQLite store.
"""

from __future__ import annotations

from typing import Any, Optional

from exceptions.base import InternetMonitorException


class StoreError(InternetMonitorException):
    """
    Base Store Exception

    Raised by the store when the underlying SQLAlchemy call fails.
    """

    default_error_code = 2000

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        """
        Initialize store exception.

        Args:
            message: Error message
            operation: The store operation that failed
            table: The database table involved
            **kwargs: Additional arguments
        """
        super().__init__(message, **kwargs)

        if operation:
            self.details["operation"] = operation

        if table:
            self.details["table"] = table


class StoreConnectionError(StoreError):
    """Raised when the database engine cannot be created or reached."""

    default_error_code = 2001
    default_recoverable = False
