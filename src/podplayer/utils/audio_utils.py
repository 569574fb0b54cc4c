from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional, Union
import math


class AudioUtils:
    """Utility class for episode duration and date handling."""

    @staticmethod
    def format_duration(seconds: Optional[float]) -> str:
        """
        Format duration in seconds to a human-readable string.

        Args:
            seconds: Duration in seconds

        Returns:
            str: Formatted duration string (e.g., "3:45" or "1:23:45")
        """
        if seconds is None:
            return "--:--"

        seconds = int(seconds)
        hours = math.floor(seconds / 3600)
        minutes = math.floor((seconds % 3600) / 60)
        seconds = seconds % 60

        if hours > 0:
            return f"{hours}:{minutes:02d}:{seconds:02d}"
        else:
            return f"{minutes}:{seconds:02d}"

    @staticmethod
    def parse_duration(duration: Union[str, int, float, None]) -> Optional[int]:
        """
        Parse a feed duration value into seconds.

        Args:
            duration: Duration string ("45", "3:45" or "1:23:45") or a number

        Returns:
            int: Duration in seconds, or None if invalid format
        """
        if duration is None:
            return None
        if isinstance(duration, (int, float)):
            return int(duration) if duration >= 0 else None
        try:
            parts = duration.strip().split(':')
            if len(parts) == 1:  # SS
                return int(float(parts[0]))
            elif len(parts) == 2:  # MM:SS
                minutes, seconds = map(int, parts)
                return minutes * 60 + seconds
            elif len(parts) == 3:  # HH:MM:SS
                hours, minutes, seconds = map(int, parts)
                return hours * 3600 + minutes * 60 + seconds
        except (ValueError, TypeError, AttributeError):
            pass
        return None

    @staticmethod
    def parse_pub_date(value: Union[str, int, float, None]) -> Optional[float]:
        """
        Convert a feed publish date to an epoch timestamp.

        RSS feeds use RFC 2822 dates; ISO 8601 strings and raw epoch numbers
        are accepted as well.

        Args:
            value: Date string or epoch seconds

        Returns:
            float: Epoch seconds, or None when the value cannot be parsed
        """
        if value is None or value == "":
            return None
        if isinstance(value, (int, float)):
            return float(value)
        try:
            parsed = parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            try:
                parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
            except ValueError:
                return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp()
