"""
============================================================================
INTERNET MONITOR - MAIN APPLICATION
============================================================================
Entry point that wires every layer of the monitor together:

    • Settings (pydantic-settings) & loguru logging
    • SQLite store (SQLAlchemy async + aiosqlite)
    • MonitoringEngine  — probes, hysteresis, thresholds, notification gate,
                          broadcast hub, scheduler
    • WebServer         — aiohttp API + WebSocket on WEB_PORT

Startup Order
-------------
1.  Load settings & configure logging
2.  Initialize DatabaseManager (create tables if needed)
3.  Create the MonitoringEngine and load its state from the store
4.  Start the WebServer
5.  Start the engine (scheduler loops)
6.  Wait for SIGINT / SIGTERM

Shutdown Order (reverse)
-------------------------
Stop engine → stop web server → close DB → exit

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

# ---------------------------------------------------------------------------
# Make the project root importable when launched from another directory
# ---------------------------------------------------------------------------
sys.path.insert(0, str(Path(__file__).parent))

# ---------------------------------------------------------------------------
# Project imports
# ---------------------------------------------------------------------------
from config.settings import get_settings
from database.connection import DatabaseManager
from database.store import SQLAlchemyStore
from exceptions import InitializationError, InternetMonitorException
from monitoring.monitor import MonitoringEngine
from monitoring.server import WebServer
from utils.logger import get_logger, setup_logging


logger = get_logger("Main")


# ============================================================================
# APPLICATION CLASS
# ============================================================================

class InternetMonitorApplication:
    """
    Top-level application orchestrator.

    Owns every subsystem and is the single place that knows the startup /
    shutdown order.  Only Settings is a process-wide singleton (cached via
    lru_cache); everything else is created and passed around here.
    """

    def __init__(self):
        self.settings = get_settings()

        # --- subsystems (populated during startup) ---
        self.db_manager: Optional[DatabaseManager] = None
        self.engine: Optional[MonitoringEngine] = None
        self.web_server: Optional[WebServer] = None

        # --- lifecycle ---
        self._is_running = False
        self._stop_event = asyncio.Event()

        self._print_banner()

    # ------------------------------------------------------------------
    # BANNER
    # ------------------------------------------------------------------

    def _print_banner(self) -> None:
        banner = f"""
╔══════════════════════════════════════════════════════════════════════════╗
║                                                                          ║
║          📡  INTERNET MONITOR  v{self.settings.app_version:<20}                     ║
║                                                                          ║
║   Live Probes  •  Speed Tests  •  Notifications  •  Live Dashboard       ║
║                                                                          ║
║   Database : {str(self.settings.database.sqlite_path):<28} Port : {self.settings.web.port:<8}        ║
║                                                                          ║
╚══════════════════════════════════════════════════════════════════════════╝
"""
        logger.info(banner)

    # ==================================================================
    # PHASE 1: DATABASE
    # ==================================================================

    async def _init_database(self) -> bool:
        """Initialize the database manager and verify connectivity."""
        logger.info("── Phase 1: Database ─────────────────────────────")
        try:
            self.db_manager = DatabaseManager(self.settings.database)
            await self.db_manager.initialize()

            if not await self.db_manager.check_connection():
                logger.error("✗ Database connection check failed")
                return False

            db_info = await self.db_manager.get_database_info()
            logger.info(
                f"  ✓ Connected — speed_tests={db_info['speed_tests']}, "
                f"hosts={db_info['hosts']}, probes={db_info['probes']}"
            )
            return True

        except InternetMonitorException as e:
            logger.error(f"  ✗ Database init failed: {e.log_format()}")
            return False

    # ==================================================================
    # PHASE 2: MONITORING ENGINE
    # ==================================================================

    async def _init_monitoring(self) -> bool:
        """Create the engine and load its state from the store."""
        logger.info("── Phase 2: Monitoring Engine ────────────────────")
        try:
            store = SQLAlchemyStore(self.db_manager)
            self.engine = MonitoringEngine(store, settings=self.settings)
            await self.engine.initialize()
            logger.info("  ✓ MonitoringEngine initialized")
            return True

        except InternetMonitorException as e:
            logger.error(f"  ✗ Monitoring init failed: {e.log_format()}")
            return False

    # ==================================================================
    # PHASE 3: WEB SERVER
    # ==================================================================

    async def _init_web(self) -> bool:
        """Create and start the API / WebSocket server."""
        logger.info("── Phase 3: Web Server ───────────────────────────")
        try:
            self.web_server = WebServer(self.engine, self.settings)
            await self.web_server.start()
            return True

        except OSError as e:
            error = InitializationError(
                f"Cannot bind {self.settings.web.host}:{self.settings.web.port}: {e}",
                component="web",
                cause=e,
            )
            logger.error(f"  ✗ {error.log_format()}")
            return False

    # ==================================================================
    # FULL STARTUP SEQUENCE
    # ==================================================================

    async def startup(self) -> bool:
        """
        Execute the complete startup sequence.
        Returns False (and logs errors) if any critical phase fails.
        """
        logger.info("=" * 74)
        logger.info("  STARTING UP …")
        logger.info("=" * 74)

        if not await self._init_database():
            return False

        if not await self._init_monitoring():
            return False

        if not await self._init_web():
            return False

        # Always start monitoring
        await self.engine.start()
        self._is_running = True

        logger.info("=" * 74)
        logger.info("  ✓ ALL SYSTEMS OPERATIONAL")
        logger.info("=" * 74)
        logger.info(
            f"  Dashboard API: http://{self.settings.web.host}:{self.settings.web.port}/api/status"
        )
        logger.info("=" * 74)

        return True

    # ==================================================================
    # SHUTDOWN SEQUENCE
    # ==================================================================

    async def shutdown(self) -> None:
        """
        Graceful shutdown in reverse order.
        Each step is wrapped so a failure in one subsystem doesn't prevent
        the others from cleaning up.
        """
        if not self._is_running and self.db_manager is None:
            return

        logger.info("=" * 74)
        logger.info("  SHUTTING DOWN …")
        logger.info("=" * 74)

        self._is_running = False

        # 1. Stop monitoring engine
        if self.engine:
            try:
                await self.engine.stop()
            except InternetMonitorException as e:
                logger.error(f"  ✗ MonitoringEngine stop error: {e.log_format()}")
            self.engine = None

        # 2. Stop web server
        if self.web_server:
            await self.web_server.stop()
            self.web_server = None

        # 3. Close database connections
        if self.db_manager:
            await self.db_manager.close()
            self.db_manager = None

        logger.info("=" * 74)
        logger.info("  ✓ SHUTDOWN COMPLETE")
        logger.info("=" * 74)

    # ==================================================================
    # RUN
    # ==================================================================

    def request_stop(self) -> None:
        logger.info("  ⚡ Signal received — initiating graceful shutdown…")
        self._stop_event.set()

    async def run(self) -> None:
        """Block until a shutdown is requested."""
        await self._stop_event.wait()


# ============================================================================
# SIGNAL HANDLER SETUP
# ============================================================================

def _install_signal_handlers(app: InternetMonitorApplication) -> None:
    """
    Install SIGTERM / SIGINT handlers so that the monitor shuts down
    gracefully even when killed by the OS (e.g., container restart).
    """
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, app.request_stop)
        except (NotImplementedError, OSError):
            # Signal handlers aren't supported on Windows; fall back to
            # KeyboardInterrupt
            pass


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

async def main() -> None:
    """
    Async main — creates the app, starts it, and runs until shutdown.
    """
    app = InternetMonitorApplication()
    _install_signal_handlers(app)

    try:
        if not await app.startup():
            logger.error("  ✗ Startup failed — exiting")
            sys.exit(1)
        await app.run()
    finally:
        await app.shutdown()


# ============================================================================
# SCRIPT ENTRY POINT
# ============================================================================

def cli() -> None:
    setup_logging()
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    cli()
