"""
============================================================================
INTERNET MONITOR - DATABASE MANAGER
============================================================================
Async SQLAlchemy engine and session management for the SQLite store.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy import event, text, select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine
)
from sqlalchemy.pool import NullPool

from config.settings import DatabaseSettings, get_settings
from database.models import Base, LiveMonitoring, LiveMonitoringHistory, SpeedTest
from exceptions import StoreConnectionError, StoreError
from utils.helpers import TimeHelper
from utils.logger import get_logger


logger = get_logger("Database")


class DatabaseManager:
    """
    Owns the async engine and the session factory.

    Tables are created on ``initialize()``; sessions commit on success and
    roll back on failure, with SQLAlchemy errors surfaced as ``StoreError``.
    """

    def __init__(self, db_settings: Optional[DatabaseSettings] = None, url: Optional[str] = None):
        """
        Args:
            db_settings: Database section of the settings
            url: Explicit database URL (overrides the settings, used by tests)
        """
        self.db_settings = db_settings or get_settings().database
        self.database_url = url or self.db_settings.url
        self.echo = self.db_settings.echo

        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        self._is_initialized = False
        self._lock = asyncio.Lock()

        logger.info(f"DatabaseManager created with URL: {self.database_url}")

    @property
    def is_initialized(self) -> bool:
        return self._is_initialized

    async def initialize(self) -> None:
        """
        Create the engine and session factory, then create all tables.

        Raises:
            StoreConnectionError: if the database cannot be opened
        """
        async with self._lock:
            if self._is_initialized:
                logger.warning("Database already initialized")
                return

            try:
                # SQLite: one connection per session, no pooling
                self.engine = create_async_engine(
                    self.database_url,
                    echo=self.echo,
                    poolclass=NullPool,
                )

                self._register_event_listeners()

                self.session_factory = async_sessionmaker(
                    self.engine,
                    class_=AsyncSession,
                    expire_on_commit=False,
                    autoflush=False,
                )

                await self.create_tables()

                self._is_initialized = True
                logger.info("Database initialized successfully")

            except SQLAlchemyError as e:
                logger.error(f"Failed to initialize database: {e}")
                raise StoreConnectionError(
                    f"Failed to initialize database: {e}",
                    operation="initialize",
                    cause=e,
                )

    def _register_event_listeners(self) -> None:
        """Register SQLAlchemy event listeners for connection management."""

        @event.listens_for(self.engine.sync_engine, "connect")
        def receive_connect(dbapi_conn, connection_record):
            """Enable WAL so the API can read while the monitor writes."""
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.close()
            logger.debug("New database connection established")

    async def create_tables(self) -> None:
        """
        Create all database tables.
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created successfully")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Provide a transactional scope for database operations.

        Yields:
            AsyncSession instance

        Raises:
            StoreError: when any statement in the scope fails
        """
        if not self._is_initialized:
            await self.initialize()

        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Session error: {e}")
            raise StoreError(str(e), cause=e)
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def check_connection(self) -> bool:
        """
        Check if database connection is alive.

        Returns:
            True if connection is alive, False otherwise
        """
        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except StoreError as e:
            logger.error(f"Database connection check failed: {e}")
            return False

    async def get_database_info(self) -> Dict[str, Any]:
        """
        Get row counts for the startup log and the health endpoint.
        """
        async with self.session() as session:
            speed_tests = await session.scalar(select(func.count(SpeedTest.id)))
            hosts = await session.scalar(select(func.count(LiveMonitoring.address)))
            probes = await session.scalar(select(func.count(LiveMonitoringHistory.id)))

        return {
            "status": "connected",
            "database_url": self.database_url,
            "speed_tests": speed_tests or 0,
            "hosts": hosts or 0,
            "probes": probes or 0,
            "checked_at": TimeHelper.get_utc_now().isoformat(),
        }

    async def close(self) -> None:
        """
        Close database connections and cleanup resources.
        """
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            logger.info("Database connections closed")
        self.session_factory = None
        self._is_initialized = False
