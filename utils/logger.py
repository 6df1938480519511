"""
============================================================================
INTERNET MONITOR - LOGGING UTILITY
============================================================================
Loguru-based logging with a console sink, a rotating file sink and a
separate error file.  Components obtain a bound logger through
``get_logger("Component")``; the runtime log level chosen in the monitoring
settings is applied with ``set_log_level()``.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import sys
from typing import Optional

from loguru import logger

from config.settings import LoggingSettings, get_settings


_CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> - <level>{message}</level>"
)
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[name]}:{function}:{line} - {message}"

_active_level: Optional[str] = None

logger.configure(extra={"name": "root"})


# ============================================================================
# LOGGER CONFIGURATION
# ============================================================================

def setup_logging(
    log_settings: Optional[LoggingSettings] = None,
    level: Optional[str] = None,
) -> None:
    """
    Configure logging system with multiple handlers.
    Sets up both file and console logging.

    Args:
        log_settings: Logging section of the settings (defaults to the cached settings)
        level: Override for the minimum level
    """
    global _active_level

    log_settings = log_settings or get_settings().logging
    log_level = (level or log_settings.level.value).upper()

    # Remove every previously installed sink (including loguru's default)
    logger.remove()

    if log_settings.console_enabled:
        logger.add(
            sys.stdout,
            format=_CONSOLE_FORMAT,
            level=log_level,
            colorize=log_settings.colorize,
            backtrace=True,
            diagnose=False,
        )

    if log_settings.file_enabled:
        log_settings.file_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_settings.file_path,
            format=_FILE_FORMAT,
            level=log_level,
            rotation=log_settings.file_rotation,
            retention=log_settings.file_retention,
            compression="zip",
            serialize=log_settings.serialize,
            backtrace=True,
            diagnose=False,
            enqueue=True,
        )

        log_settings.error_file_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_settings.error_file_path,
            format=_FILE_FORMAT,
            level="ERROR",
            rotation="1 day",
            retention=log_settings.file_retention,
            compression="zip",
            backtrace=True,
            diagnose=False,
            enqueue=True,
        )

    _active_level = log_level
    logger.bind(name="Logging").info(
        f"Logging system initialized — level={log_level}, "
        f"console={log_settings.console_enabled}, file={log_settings.file_enabled}"
    )


def set_log_level(level: str) -> None:
    """
    Re-apply the sinks with a new minimum level.

    No-op when logging has not been set up yet or the level is unchanged.
    """
    if _active_level is None or level.upper() == _active_level:
        return
    setup_logging(level=level)


def get_logger(name: Optional[str] = None):
    """
    Get logger instance with optional name.

    Args:
        name: Component name shown in every line

    Returns:
        Logger instance
    """
    if name:
        return logger.bind(name=name)
    return logger
