"""
Key-Value Store Interface

This module defines the abstract contract for the counter/cache store shared by
the rate limiter and the response cache.

Requirements on implementations:
    - get() returns None for missing or expired keys
    - put() stores a value with a time-to-live in seconds
    - increment() is atomic with respect to concurrent callers and returns the
      new value; the TTL is applied when the key is created
    - All methods are coroutines so that networked backends fit the same contract
"""

from abc import ABC, abstractmethod
from typing import Any, Optional


class KeyValueStore(ABC):
    """
    Abstract Base Class for the shared counter/cache store.

    Example Implementation:
        >>> class MyStore(KeyValueStore):
        ...     async def get(self, key):
        ...         ...
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """
        Read a value.

        Args:
            key: Store key

        Returns:
            The stored value, or None if missing or expired
        """
        pass

    @abstractmethod
    async def put(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """
        Store a value.

        Args:
            key: Store key
            value: Any Python object
            ttl: Time-to-live in seconds (None = never expires)
        """
        pass

    @abstractmethod
    async def increment(self, key: str, window_ttl: float, amount: int = 1) -> int:
        """
        Atomically add `amount` to an integer counter.

        Args:
            key: Counter key
            window_ttl: Time-to-live applied when the counter is created
            amount: Value to add (negative values roll a counter back)

        Returns:
            The counter value after the increment
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a key if present."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Remove every key."""
        pass
