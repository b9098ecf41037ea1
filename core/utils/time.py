"""
Time Utilities

This module provides the clocks and timestamp helpers used by the request pipeline.

Two different notions of time are needed:
- Wall-clock milliseconds since epoch: request timestamps for signed calls and
  the boundaries of the rate-limit windows (the daily window resets at UTC midnight)
- Monotonic seconds: cache and counter expiry, which must not jump when the
  system clock is adjusted

Components never read the system clock directly. They receive a Clock instance,
so tests can substitute a controllable one.
"""

import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Union


class Clock(ABC):
    """
    Abstract time source.

    Subclasses provide wall-clock milliseconds (now_ms) and monotonic seconds
    (monotonic). The default implementation is SystemClock.
    """

    @abstractmethod
    def now_ms(self) -> int:
        """Wall-clock milliseconds since epoch."""
        pass

    @abstractmethod
    def monotonic(self) -> float:
        """Monotonic seconds, for expiry checks."""
        pass


class SystemClock(Clock):
    """Clock backed by the UTC wall clock and time.monotonic()."""

    def now_ms(self) -> int:
        return current_utc_timestamp(milliseconds=True)

    def monotonic(self) -> float:
        return time.monotonic()


def to_utc_datetime(timestamp: Union[int, float]) -> datetime:
    """
    Convert a timestamp (seconds or milliseconds) to UTC datetime.

    Detection Logic:
        - If timestamp > 1e12 (1 trillion): Assumed to be milliseconds
        - Otherwise: Assumed to be seconds

    Args:
        timestamp: Unix timestamp in seconds or milliseconds

    Returns:
        datetime: Timezone-aware datetime object in UTC

    Raises:
        ValueError: If timestamp is negative or invalid

    Examples:
        >>> to_utc_datetime(1704110400000)
        datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)
    """
    if timestamp < 0:
        raise ValueError(f"Timestamp cannot be negative: {timestamp}")

    if timestamp > 1e12:
        timestamp = timestamp / 1000.0

    try:
        return datetime.fromtimestamp(timestamp, tz=timezone.utc)
    except (OSError, OverflowError, ValueError) as e:
        raise ValueError(f"Invalid timestamp: {timestamp}. Error: {e}")


def current_utc_timestamp(milliseconds: bool = False) -> int:
    """
    Get current UTC timestamp.

    Args:
        milliseconds: If True, return milliseconds; if False, return seconds

    Returns:
        int: Current Unix timestamp

    Examples:
        >>> current_utc_timestamp(milliseconds=True)
        1704110400000
    """
    timestamp = int(datetime.now(timezone.utc).timestamp() * 1000)
    return timestamp if milliseconds else timestamp // 1000


def window_index(now_ms: int, window_ms: int) -> int:
    """
    Index of the fixed window containing now_ms.

    Windows are aligned to the epoch, so a 86_400_000 ms window starts at
    UTC midnight.
    """
    return now_ms // window_ms


def ms_until_next_boundary(now_ms: int, window_ms: int) -> int:
    """
    Milliseconds remaining until the window containing now_ms ends.

    Examples:
        >>> ms_until_next_boundary(61_500, 60_000)
        58500
        >>> ms_until_next_boundary(60_000, 60_000)
        60000
    """
    return (window_index(now_ms, window_ms) + 1) * window_ms - now_ms
