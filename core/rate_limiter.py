"""
Rate Limiter

Local admission check for the three exchange rate-limit windows:

    PER_MINUTE_WEIGHT  - every request, weight 1 unless the endpoint declares more
    PER_SECOND_ORDERS  - order placements and cancellations
    PER_DAY_ORDERS     - order placements, resets at the UTC day boundary

Windows are fixed and aligned to the epoch: the counter key contains the index
of the current window, so a new window starts from zero without any explicit
reset. Counters live in the shared KeyValueStore.

Atomicity:
    Admission is decided by the store's atomic increment. A reservation
    increments every window it touches (in WindowKind declaration order); if
    any new count is above its limit, all of its increments are rolled back and
    the request is rejected. Two callers racing for the last slot can never
    both be admitted, even through different RateLimiter instances sharing one
    store, and a rejected request never keeps budget in another window.

    Each window also has a process-local asyncio.Lock, so reservations made
    through the same limiter do not see each other's transient increments.

The limiter never sleeps. A rejection raises RateLimitExceeded with the time
left until the offending window resets; waiting is the RetryPolicy's job.
"""

import asyncio
from contextlib import AsyncExitStack
from typing import Dict, List, Mapping, Optional, Tuple

from core.errors import RateLimitExceeded
from core.logging import get_logger
from core.schemas import RateWindow, WindowKind, default_window_limits
from core.utils.time import Clock, SystemClock, ms_until_next_boundary, window_index
from storage.base import KeyValueStore


class RateLimiter:
    """
    Shared-counter rate limiter.

    Attributes:
        store: Counter store shared by every request of the process
        limits: Threshold per window kind
        clock: Wall-clock source for window boundaries

    Example:
        >>> limiter = RateLimiter(InMemoryStore(), {WindowKind.PER_SECOND_ORDERS: 2})
        >>> await limiter.reserve(WindowKind.PER_SECOND_ORDERS)
        >>> await limiter.reserve(WindowKind.PER_SECOND_ORDERS)
        >>> await limiter.reserve(WindowKind.PER_SECOND_ORDERS)  # raises RateLimitExceeded
    """

    KEY_PREFIX = "ratelimit"

    def __init__(
        self,
        store: KeyValueStore,
        limits: Mapping[WindowKind, int],
        clock: Optional[Clock] = None
    ):
        self.store = store
        self.limits: Dict[WindowKind, int] = dict(limits)
        self.clock = clock or SystemClock()
        self._locks: Dict[WindowKind, asyncio.Lock] = {kind: asyncio.Lock() for kind in WindowKind}
        self.logger = get_logger(__name__)

    @classmethod
    def from_settings(cls, settings, store: KeyValueStore, clock: Optional[Clock] = None) -> "RateLimiter":
        """Build a limiter from the three configured thresholds."""
        limits = default_window_limits(
            settings.rate_limit_requests_per_minute,
            settings.rate_limit_orders_per_second,
            settings.rate_limit_orders_per_day,
        )
        return cls(store, limits, clock)

    # ============================================
    # Keys and Boundaries
    # ============================================

    def _key(self, kind: WindowKind, now_ms: int) -> str:
        return f"{self.KEY_PREFIX}:{kind.value}:{window_index(now_ms, kind.length_ms)}"

    def _boundary_ms(self, kind: WindowKind, now_ms: int) -> int:
        return now_ms + ms_until_next_boundary(now_ms, kind.length_ms)

    # ============================================
    # Admission
    # ============================================

    async def reserve(self, kind: WindowKind, cost: int = 1) -> RateWindow:
        """
        Consume `cost` units of a single window.

        Returns:
            RateWindow snapshot after the increment

        Raises:
            RateLimitExceeded: If the window has fewer than `cost` units left
        """
        windows = await self.reserve_many({kind: cost})
        return windows[0]

    async def reserve_many(self, costs: Mapping[WindowKind, int]) -> List[RateWindow]:
        """
        Atomically consume budget from several windows.

        Either every window is charged or none is.

        Args:
            costs: Units to consume per window kind (zero entries are ignored)

        Returns:
            RateWindow snapshots after the increments, in WindowKind order

        Raises:
            RateLimitExceeded: For the first window that cannot admit the request
        """
        kinds = [kind for kind in WindowKind if costs.get(kind, 0) > 0 and kind in self.limits]

        async with AsyncExitStack() as stack:
            for kind in kinds:
                await stack.enter_async_context(self._locks[kind])

            now_ms = self.clock.now_ms()
            applied: List[Tuple[str, float, int]] = []
            snapshots: List[RateWindow] = []
            try:
                for kind in kinds:
                    key = self._key(kind, now_ms)
                    ttl = kind.length_ms / 1000
                    cost = costs[kind]
                    limit = self.limits[kind]

                    # The store's atomic increment decides admission
                    count = await self.store.increment(key, ttl, cost)
                    applied.append((key, ttl, cost))

                    if count > limit:
                        current = count - cost
                        retry_after = ms_until_next_boundary(now_ms, kind.length_ms) / 1000
                        self.logger.warning(
                            f"Rate limit reached for {kind.value}: {current}/{limit}, "
                            f"window resets in {retry_after:.3f}s"
                        )
                        raise RateLimitExceeded(kind, current, limit, retry_after)

                    snapshots.append(RateWindow(
                        kind=kind,
                        current=count,
                        limit=limit,
                        boundary_ms=self._boundary_ms(kind, now_ms)
                    ))
            except BaseException:
                # Rejected, cancelled or failed part-way: give back what was taken
                await asyncio.shield(self._rollback(applied))
                raise

        return snapshots

    async def _rollback(self, applied: List[Tuple[str, float, int]]) -> None:
        for key, ttl, cost in applied:
            await self.store.increment(key, ttl, -cost)

    # ============================================
    # Introspection
    # ============================================

    async def status(self) -> Dict[WindowKind, RateWindow]:
        """
        Current usage of every configured window.

        Returns:
            Mapping of window kind to RateWindow (current, limit, percentage via property)
        """
        now_ms = self.clock.now_ms()
        result = {}
        for kind, limit in self.limits.items():
            current = int(await self.store.get(self._key(kind, now_ms)) or 0)
            result[kind] = RateWindow(
                kind=kind,
                current=current,
                limit=limit,
                boundary_ms=self._boundary_ms(kind, now_ms)
            )
        return result

    async def reset(self) -> None:
        """Drop the counters of the current windows."""
        now_ms = self.clock.now_ms()
        for kind in self.limits:
            async with self._locks[kind]:
                await self.store.delete(self._key(kind, now_ms))
        self.logger.info("Rate limit counters reset")
