"""
============================================================================
INTERNET MONITOR - HELPERS UTILITY
============================================================================
Collection of helper functions: wall-clock and quiet-hours arithmetic,
monthly data-cap parsing, byte formatting and settings merging.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import re
from datetime import datetime, time as dtime, timezone
from typing import Any, Dict, Optional, Tuple

from config.constants import DATA_CAP_MULTIPLIERS


_HHMM_PATTERN = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")
_DATA_CAP_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)\s*(KB|MB|GB|TB|PB)$", re.IGNORECASE)


# ============================================================================
# TIME UTILITIES
# ============================================================================

class TimeHelper:
    """
    Time and date manipulation utilities.
    """

    @staticmethod
    def get_utc_now() -> datetime:
        """Get current timezone-aware UTC datetime."""
        return datetime.now(timezone.utc)

    @staticmethod
    def get_local_now() -> datetime:
        """Get current timezone-aware local datetime (quiet hours are local)."""
        return datetime.now().astimezone()

    @staticmethod
    def parse_hhmm(value: str) -> dtime:
        """
        Parse an "HH:MM" string.

        Raises:
            ValueError: if the string is not a valid 24h time
        """
        match = _HHMM_PATTERN.match(value.strip())
        if not match:
            raise ValueError(f"Invalid time of day {value!r}, expected HH:MM")
        return dtime(hour=int(match.group(1)), minute=int(match.group(2)))

    @staticmethod
    def is_in_quiet_hours(now: datetime, start: str, end: str) -> bool:
        """
        Check whether *now* falls inside the quiet-hour window.

        Both boundaries are inclusive at minute resolution.  A window whose
        start is later than its end spans midnight (e.g. 22:00-08:00).

        Args:
            now: Current local time
            start: Window start, "HH:MM"
            end: Window end, "HH:MM"
        """
        start_t = TimeHelper.parse_hhmm(start)
        end_t = TimeHelper.parse_hhmm(end)

        current = now.hour * 60 + now.minute
        start_minutes = start_t.hour * 60 + start_t.minute
        end_minutes = end_t.hour * 60 + end_t.minute

        if start_minutes > end_minutes:
            return current >= start_minutes or current <= end_minutes

        return start_minutes <= current <= end_minutes

    @staticmethod
    def month_bounds(now: datetime) -> Tuple[datetime, datetime]:
        """
        Return the first instant of *now*'s calendar month and of the next one.
        """
        start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        if start.month == 12:
            end = start.replace(year=start.year + 1, month=1)
        else:
            end = start.replace(month=start.month + 1)
        return start, end

    @staticmethod
    def seconds_to_human_readable(seconds: int) -> str:
        """
        Convert seconds to human-readable format.

        Args:
            seconds: Number of seconds

        Returns:
            Human-readable string (e.g., "2h 30m 15s")
        """
        if seconds < 0:
            return "0s"

        days, remainder = divmod(seconds, 86400)
        hours, remainder = divmod(remainder, 3600)
        minutes, secs = divmod(remainder, 60)

        parts = []
        if days > 0:
            parts.append(f"{days}d")
        if hours > 0:
            parts.append(f"{hours}h")
        if minutes > 0:
            parts.append(f"{minutes}m")
        if secs > 0 or not parts:
            parts.append(f"{secs}s")

        return " ".join(parts)


# ============================================================================
# DATA UTILITIES
# ============================================================================

class DataHelper:
    """
    Data sizing and dictionary utilities.
    """

    @staticmethod
    def parse_data_cap(cap: Optional[str]) -> Optional[float]:
        """
        Parse a data cap such as "5 GB" or "1.5 TB" into bytes.

        Returns:
            Number of bytes, or None when the cap is unset or unparseable
        """
        if not cap:
            return None

        match = _DATA_CAP_PATTERN.match(cap.strip())
        if not match:
            return None

        return float(match.group(1)) * DATA_CAP_MULTIPLIERS[match.group(2).upper()]

    @staticmethod
    def format_bytes(bytes_value: float) -> str:
        """
        Format bytes to human-readable size.

        Args:
            bytes_value: Number of bytes

        Returns:
            Formatted string (e.g., "1.50 MB")
        """
        for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
            if bytes_value < 1024.0:
                return f"{bytes_value:.2f} {unit}"
            bytes_value /= 1024.0
        return f"{bytes_value:.2f} PB"

    @staticmethod
    def deep_merge(base: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
        """
        Recursively merge *patch* into a copy of *base*.

        Nested dictionaries are merged; every other value (lists included)
        in *patch* replaces the one in *base*.
        """
        result = dict(base)
        for key, value in patch.items():
            if isinstance(value, dict) and isinstance(result.get(key), dict):
                result[key] = DataHelper.deep_merge(result[key], value)
            else:
                result[key] = value
        return result


class StringHelper:
    """Text shaping for log lines and stored error strings."""

    @staticmethod
    def truncate(text: str, max_length: int = 100, suffix: str = "...") -> str:
        """Clip *text* to *max_length* characters, ending in *suffix* when clipped."""
        if len(text) > max_length:
            return text[:max(0, max_length - len(suffix))] + suffix
        return text
