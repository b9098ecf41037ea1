"""
In-Memory Key-Value Store

Process-local implementation of KeyValueStore. All state lives in a dict guarded
by a single asyncio.Lock, which makes increment() atomic for every coroutine in
the event loop.

Expiry is lazy: an expired key is dropped the next time it is read or incremented.
"""

import asyncio
from typing import Any, Dict, Optional, Tuple

from core.logging import get_logger
from core.utils.time import Clock, SystemClock
from storage.base import KeyValueStore


class InMemoryStore(KeyValueStore):
    """
    Async-safe dict store with TTL support.

    Attributes:
        clock: Time source; only its monotonic() reading is used
    """

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self.clock = clock or SystemClock()
        # key -> (value, expires_at monotonic seconds or None)
        self._data: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._lock = asyncio.Lock()
        self._logger = get_logger(__name__)

    def _expires_at(self, ttl: Optional[float]) -> Optional[float]:
        if ttl is None:
            return None
        return self.clock.monotonic() + ttl

    def _live_value(self, key: str) -> Optional[Any]:
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and self.clock.monotonic() >= expires_at:
            del self._data[key]
            return None
        return value

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            return self._live_value(key)

    async def put(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        async with self._lock:
            self._data[key] = (value, self._expires_at(ttl))

    async def increment(self, key: str, window_ttl: float, amount: int = 1) -> int:
        async with self._lock:
            current = self._live_value(key)
            if current is None:
                new_value = amount
                expires_at = self._expires_at(window_ttl)
            else:
                new_value = int(current) + amount
                expires_at = self._data[key][1]
            self._data[key] = (new_value, expires_at)
            return new_value

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    async def clear(self) -> None:
        async with self._lock:
            self._data.clear()
        self._logger.debug("In-memory store cleared")

    def __len__(self) -> int:
        return len(self._data)
