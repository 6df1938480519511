"""
Database Package for Internet Monitor

Provides the SQLite store behind the monitoring core: ORM models, the
async engine/session manager and the ``Store`` implementation.
"""

from database.connection import DatabaseManager

from database.models import (
    Base,
    SpeedTest,
    LiveMonitoring,
    LiveMonitoringHistory,
    SettingsDocument,
)

from database.store import Store, SQLAlchemyStore

__all__ = [
    # Connection
    "DatabaseManager",

    # Models
    "Base",
    "SpeedTest",
    "LiveMonitoring",
    "LiveMonitoringHistory",
    "SettingsDocument",

    # Store
    "Store",
    "SQLAlchemyStore",
]
