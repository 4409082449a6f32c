"""
Timestamp utilities for consistent time handling across the backends.
"""

import time
from datetime import datetime, timezone
from typing import Optional, Union


def to_seconds_str(timestamp: Optional[int] = None) -> str:
    """Convert timestamp to seconds string format.

    Args:
        timestamp: Unix timestamp in seconds (optional, uses current time if None)

    Returns:
        Seconds timestamp as string
    """
    if timestamp is None:
        timestamp = time.time()
    return str(int(timestamp))


def to_datetime(value: Union[int, str, None]) -> Optional[datetime]:
    """Parse a persisted timestamp (unix seconds or SQLite 'YYYY-MM-DD HH:MM:SS', UTC).

    Args:
        value: Stored timestamp, None passes through

    Returns:
        timezone-aware datetime or None
    """
    if value is None or value == '':
        return None
    if isinstance(value, int) or str(value).isdigit():
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    return datetime.fromisoformat(str(value)).replace(tzinfo=timezone.utc)
