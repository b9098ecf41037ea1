"""
Response Cache

TTL cache with single-flight de-duplication for public, read-only endpoints.

Behaviour of get_or_fetch(key, ttl, fetch):
    - Fresh entry in the store          -> returned without calling fetch
    - Another caller is already fetching -> wait for that fetch and share its
                                            result or its error
    - Otherwise                          -> become the owner, call fetch once,
                                            store the value, wake the waiters

Failures are never cached: the previous entry (if any) is left untouched and the
next caller fetches again. If the owner is cancelled, the in-flight marker is
removed and the waiters retry the fetch themselves.

Values live in the shared KeyValueStore; the in-flight futures are process-local.
Every caller receives its own copy of the value, so mutating a result never
changes what other callers or later cache hits see.
"""

import asyncio
import copy
from typing import Any, Awaitable, Callable, Dict, Optional

from core.logging import get_logger
from core.schemas import CacheEntry
from core.utils.time import Clock, SystemClock
from storage.base import KeyValueStore


FetchFn = Callable[[], Awaitable[Any]]


class ResponseCache:
    """
    Single-flight TTL cache.

    Attributes:
        store: Shared store holding CacheEntry objects
        clock: Monotonic time source for expiry checks

    Example:
        >>> cache = ResponseCache(InMemoryStore())
        >>> info = await cache.get_or_fetch("exchange_info", 3600, fetch_exchange_info)
    """

    KEY_PREFIX = "cache"

    def __init__(self, store: KeyValueStore, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or SystemClock()
        self._in_flight: Dict[str, asyncio.Future] = {}
        self.logger = get_logger(__name__)

    def _store_key(self, key: str) -> str:
        return f"{self.KEY_PREFIX}:{key}"

    def is_in_flight(self, key: str) -> bool:
        """True while a fetch for `key` is running."""
        return key in self._in_flight

    async def get(self, key: str) -> Optional[CacheEntry]:
        """Fresh entry for `key`, or None."""
        entry = await self.store.get(self._store_key(key))
        if entry is None or entry.is_expired(self.clock.monotonic()):
            return None
        return entry

    async def invalidate(self, key: str) -> None:
        """Drop the entry for `key`. A fetch already in flight is not affected."""
        await self.store.delete(self._store_key(key))
        self.logger.debug(f"Cache entry invalidated: {key}")

    async def get_or_fetch(self, key: str, ttl: float, fetch: FetchFn) -> Any:
        """
        Return the cached value for `key`, fetching it at most once concurrently.

        Args:
            key: Cache key
            ttl: Time-to-live in seconds for a freshly fetched value
            fetch: Zero-argument coroutine function performing the upstream call

        Returns:
            The cached or freshly fetched value

        Raises:
            Whatever fetch raised, for the owner and every waiter of that fetch
        """
        while True:
            entry = await self.get(key)
            if entry is not None:
                self.logger.debug(f"Cache hit: {key}")
                return copy.deepcopy(entry.value)

            future = self._in_flight.get(key)
            if future is None:
                return await self._fetch_as_owner(key, ttl, fetch)

            self.logger.debug(f"Waiting for in-flight fetch: {key}")
            # asyncio.wait does not cancel the shared future if this waiter is cancelled
            await asyncio.wait({future})
            if future.cancelled():
                # Owner was cancelled; try again, possibly as the new owner
                continue
            return copy.deepcopy(future.result())

    async def _fetch_as_owner(self, key: str, ttl: float, fetch: FetchFn) -> Any:
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._in_flight[key] = future
        self.logger.debug(f"Cache miss, fetching: {key}")

        try:
            value = await fetch()
        except asyncio.CancelledError:
            self._in_flight.pop(key, None)
            future.cancel()
            raise
        except Exception as e:
            self._in_flight.pop(key, None)
            future.set_exception(e)
            # Mark retrieved so an error nobody waited for is not reported as unhandled
            future.exception()
            raise

        entry = CacheEntry(key=key, value=copy.deepcopy(value), expires_at=self.clock.monotonic() + ttl)
        try:
            await self.store.put(self._store_key(key), entry, ttl)
        finally:
            self._in_flight.pop(key, None)
            if not future.done():
                future.set_result(entry.value)
        return value
