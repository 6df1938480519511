"""
============================================================================
INTERNET MONITOR - STORE
============================================================================
Durable persistence for the monitoring core.

``Store`` is the interface the engine depends on; ``SQLAlchemyStore`` is
the SQLite implementation built on ``DatabaseManager``.  Every SQLAlchemy
failure reaches the caller as ``StoreError``.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from pydantic import ValidationError
from sqlalchemy import delete, func, select

from database.connection import DatabaseManager
from database.models import (
    LiveMonitoring,
    LiveMonitoringHistory,
    SettingsDocument,
    SpeedTest,
    to_db_time,
)
from monitoring.models import BandwidthResult, LiveHostState, MonitorSettings, ProbeResult
from utils.logger import get_logger


logger = get_logger("Store")

SETTINGS_KEY = "monitor"


class Store(Protocol):
    """What the monitoring engine needs from persistence."""

    async def save_bandwidth_result(self, result: BandwidthResult) -> None: ...

    async def load_recent_history(self, limit: int) -> List[BandwidthResult]: ...

    async def save_live_health(self, address: str, state: LiveHostState) -> None: ...

    async def load_live_health(self) -> Dict[str, LiveHostState]: ...

    async def load_settings(self) -> Optional[MonitorSettings]: ...

    async def save_settings(self, settings: MonitorSettings) -> None: ...

    async def monthly_usage_bytes(self, start: datetime, end: datetime) -> float: ...

    async def prune_live_history(self, older_than: datetime) -> int: ...

    async def clear_history(self) -> int: ...

    async def load_history_page(self, limit: int, offset: int = 0) -> List[BandwidthResult]: ...

    async def count_history(self) -> int: ...

    async def load_live_history(self, address: str, since: datetime) -> List[ProbeResult]: ...


class SQLAlchemyStore:
    """
    SQLite-backed ``Store``.

    Parameters
    ----------
    db_manager : DatabaseManager
        Shared engine / session owner.
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    # ------------------------------------------------------------------
    # SPEED TESTS
    # ------------------------------------------------------------------

    async def save_bandwidth_result(self, result: BandwidthResult) -> None:
        async with self.db.session() as session:
            session.add(SpeedTest.from_result(result))
        logger.debug(f"[Store] Saved speed test {result.timestamp.isoformat()}")

    async def load_recent_history(self, limit: int) -> List[BandwidthResult]:
        """Most recent *limit* results, oldest first."""
        rows = await self.load_history_page(limit)
        rows.reverse()
        return rows

    async def load_history_page(self, limit: int, offset: int = 0) -> List[BandwidthResult]:
        """A page of results, newest first."""
        async with self.db.session() as session:
            result = await session.execute(
                select(SpeedTest)
                .order_by(SpeedTest.timestamp.desc(), SpeedTest.id.desc())
                .limit(limit)
                .offset(offset)
            )
            return [row.to_result() for row in result.scalars().all()]

    async def count_history(self) -> int:
        async with self.db.session() as session:
            return await session.scalar(select(func.count(SpeedTest.id))) or 0

    async def clear_history(self) -> int:
        async with self.db.session() as session:
            result = await session.execute(delete(SpeedTest))
            deleted = result.rowcount or 0
        logger.info(f"[Store] Cleared {deleted} speed test(s)")
        return deleted

    async def monthly_usage_bytes(self, start: datetime, end: datetime) -> float:
        """Downloaded plus uploaded bytes recorded in ``[start, end)``."""
        async with self.db.session() as session:
            total = await session.scalar(
                select(
                    func.coalesce(func.sum(SpeedTest.download_bytes), 0)
                    + func.coalesce(func.sum(SpeedTest.upload_bytes), 0)
                ).where(
                    SpeedTest.timestamp >= to_db_time(start),
                    SpeedTest.timestamp < to_db_time(end),
                )
            )
        return float(total or 0)

    # ------------------------------------------------------------------
    # LIVE MONITORING
    # ------------------------------------------------------------------

    async def save_live_health(self, address: str, state: LiveHostState) -> None:
        """Upsert the live row for *address* and append a history row."""
        async with self.db.session() as session:
            row = await session.get(LiveMonitoring, address)
            if row is None:
                row = LiveMonitoring(address=address)
                session.add(row)
            row.apply(state)

            session.add(LiveMonitoringHistory(
                address=address,
                name=state.result.name,
                ping=state.result.ping,
                timestamp=to_db_time(state.result.timestamp),
            ))

    async def load_live_health(self) -> Dict[str, LiveHostState]:
        async with self.db.session() as session:
            result = await session.execute(select(LiveMonitoring))
            return {row.address: row.to_state() for row in result.scalars().all()}

    async def load_live_history(self, address: str, since: datetime) -> List[ProbeResult]:
        """Probes of *address* since *since*, oldest first."""
        async with self.db.session() as session:
            result = await session.execute(
                select(LiveMonitoringHistory)
                .where(
                    LiveMonitoringHistory.address == address,
                    LiveMonitoringHistory.timestamp >= to_db_time(since),
                )
                .order_by(LiveMonitoringHistory.timestamp.asc())
            )
            return [row.to_result() for row in result.scalars().all()]

    async def prune_live_history(self, older_than: datetime) -> int:
        async with self.db.session() as session:
            result = await session.execute(
                delete(LiveMonitoringHistory).where(
                    LiveMonitoringHistory.timestamp < to_db_time(older_than)
                )
            )
            return result.rowcount or 0

    # ------------------------------------------------------------------
    # SETTINGS
    # ------------------------------------------------------------------

    async def load_settings(self) -> Optional[MonitorSettings]:
        """
        The persisted settings, or None when nothing (valid) is stored.
        """
        async with self.db.session() as session:
            row = await session.get(SettingsDocument, SETTINGS_KEY)
            document: Optional[Dict[str, Any]] = row.value if row else None

        if document is None:
            return None

        try:
            return MonitorSettings.model_validate(document)
        except ValidationError as e:
            logger.warning(f"[Store] Stored settings are invalid, using defaults: {e}")
            return None

    async def save_settings(self, settings: MonitorSettings) -> None:
        async with self.db.session() as session:
            row = await session.get(SettingsDocument, SETTINGS_KEY)
            if row is None:
                session.add(SettingsDocument(key=SETTINGS_KEY, value=settings.to_wire()))
            else:
                row.value = settings.to_wire()
        logger.debug("[Store] Settings saved")
