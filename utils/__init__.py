"""
Utilities Package for Internet Monitor
"""

from utils.logger import get_logger, setup_logging, set_log_level
from utils.helpers import TimeHelper, DataHelper, StringHelper

__all__ = [
    "get_logger",
    "setup_logging",
    "set_log_level",
    "TimeHelper",
    "DataHelper",
    "StringHelper",
]
