"""
Binance REST API Client

This module provides the outward contract of the request pipeline for the
Binance Spot REST API:

- execute_public(path, params)            -> decoded JSON
- execute_signed(path, params, method)    -> decoded JSON

Both raise a ClassifiedError subclass on failure (ConfigurationError when a
signed call is made without credentials). Endpoint-specific methods
(orders, account, market data) are thin parameter marshaling on top of these
two calls and belong to the caller.

The client wires the pipeline together:
- RateLimiter for requests/minute, orders/second and orders/day
- ResponseCache with single-flight for opt-in public reads
- RetryPolicy with exponential backoff
- HMAC-SHA256 signer
- aiohttp transport

API Documentation:
    https://developers.binance.com/docs/binance-spot-api-docs/rest-api

Usage:
    async with BinanceAPIClient(Settings(binance_api_key="...", binance_api_secret="...")) as client:
        price = await client.execute_public("/ticker/price", {"symbol": "BTCUSDT"})
        order = await client.execute_signed(
            "/order",
            {"symbol": "BTCUSDT", "side": "BUY", "type": "MARKET", "quantity": "0.001"},
            method="POST",
            order_action=OrderAction.PLACE,
        )
"""

import asyncio
from typing import Any, Dict, Mapping, Optional

from core.cache import ResponseCache
from core.config import Settings
from core.dispatcher import RequestDispatcher, SleepFn
from core.logging import get_logger
from core.rate_limiter import RateLimiter
from core.retry import RetryPolicy
from core.schemas import AuthMode, HTTPMethod, OrderAction, RequestSpec
from core.transport import AiohttpTransport, Transport
from core.utils.time import Clock, SystemClock, to_utc_datetime
from exchanges.binance.signer import sign
from storage.base import KeyValueStore
from storage.memory import InMemoryStore


# Request weights of the convenience endpoints (Binance Spot)
EXCHANGE_INFO_WEIGHT = 20


class BinanceAPIClient:
    """
    Async client for the Binance REST API.

    Attributes:
        settings: Client configuration
        transport: HTTP transport (AiohttpTransport unless injected)
        store: Shared counter/cache store
        rate_limiter: Three-window rate limiter
        cache: Single-flight response cache
        retry_policy: Backoff policy
        dispatcher: Pipeline orchestrator

    Example:
        >>> async with BinanceAPIClient() as client:
        ...     await client.ping()
        ...     info = await client.exchange_info()

    Notes:
        - Uses context manager for automatic transport cleanup
        - Several clients may share one store (and thus one rate budget)
        - No credentials needed for public endpoints
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[Transport] = None,
        store: Optional[KeyValueStore] = None,
        clock: Optional[Clock] = None,
        sleep: SleepFn = asyncio.sleep
    ):
        """
        Initialize the Binance API client.

        Args:
            settings: Configuration (defaults to Settings() loaded from the environment)
            transport: HTTP transport (defaults to an owned AiohttpTransport)
            store: Counter/cache store (defaults to a new InMemoryStore)
            clock: Time source (defaults to SystemClock)
            sleep: Coroutine used for backoff waits
        """
        self.settings = settings or Settings()
        self.clock = clock or SystemClock()
        self._owns_transport = transport is None
        self.transport = transport or AiohttpTransport()
        self.store = store or InMemoryStore(self.clock)
        self.rate_limiter = RateLimiter.from_settings(self.settings, self.store, self.clock)
        self.cache = ResponseCache(self.store, self.clock)
        self.retry_policy = RetryPolicy.from_settings(self.settings)
        self.dispatcher = RequestDispatcher(
            self.settings,
            self.transport,
            self.rate_limiter,
            self.retry_policy,
            sign,
            cache=self.cache,
            clock=self.clock,
            sleep=sleep
        )
        self.logger = get_logger(__name__)

    # ============================================
    # Context Manager for Transport Management
    # ============================================

    async def __aenter__(self):
        """
        Enter async context.

        Returns:
            Self for use in async with statement
        """
        if self._owns_transport:
            await self.transport.__aenter__()
        self.logger.debug(f"BinanceAPIClient ready ({self.settings.effective_base_url})")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        """Close the transport if this client created it."""
        if self._owns_transport:
            await self.transport.close()
            self.logger.debug("BinanceAPIClient transport closed")

    # ============================================
    # Outward Contract
    # ============================================

    async def execute_public(
        self,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        weight: int = 1,
        cache_ttl: Optional[float] = None,
        timeout: Optional[float] = None
    ) -> Any:
        """
        Execute an unauthenticated GET request.

        Args:
            path: Endpoint path (e.g., "/ticker/price"); the API prefix is added
            params: Query parameters, sent in the given order
            weight: Request weight charged to the per-minute window
            cache_ttl: Opt-in cache TTL in seconds; None disables caching for this call.
                settings.cache_ttl_market_data is the preset for market data reads
            timeout: Per-send timeout in seconds

        Returns:
            Decoded JSON response

        Raises:
            ClassifiedError: On any failure that was not resolved by retrying
        """
        spec = RequestSpec(
            path=path,
            method=HTTPMethod.GET,
            params=params,
            auth_mode=AuthMode.PUBLIC,
            weight=weight
        )
        return await self.dispatcher.execute(spec, cache_ttl=cache_ttl, timeout=timeout)

    async def execute_signed(
        self,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        method: str = "GET",
        order_action: OrderAction = OrderAction.NONE,
        weight: int = 1,
        timeout: Optional[float] = None
    ) -> Any:
        """
        Execute an authenticated request.

        timestamp, recvWindow and signature are added by the pipeline for
        every attempt; callers must not supply them.

        Args:
            path: Endpoint path (e.g., "/order")
            params: Request parameters, sent in the given order
            method: HTTP method ("GET", "POST", "PUT", "DELETE")
            order_action: PLACE for order placement, CANCEL for cancellation
            weight: Request weight charged to the per-minute window
            timeout: Per-send timeout in seconds

        Returns:
            Decoded JSON response

        Raises:
            ConfigurationError: If API key or secret is missing
            ClassifiedError: On any failure that was not resolved by retrying
        """
        spec = RequestSpec(
            path=path,
            method=HTTPMethod(method.upper()),
            params=params,
            auth_mode=AuthMode.SIGNED,
            weight=weight,
            order_action=order_action
        )
        return await self.dispatcher.execute(spec, timeout=timeout)

    # ============================================
    # Convenience Endpoints
    # ============================================

    async def ping(self) -> Dict[str, Any]:
        """
        Test connectivity to the REST API.

        Binance Endpoint:
            GET /api/v3/ping
        """
        return await self.execute_public("/ping")

    async def server_time(self) -> int:
        """
        Fetch the exchange server time.

        Binance Endpoint:
            GET /api/v3/time

        Response Format:
            {"serverTime": 1499827319559}

        Returns:
            Server time in milliseconds since epoch
        """
        data = await self.execute_public("/time")
        return int(data["serverTime"])

    async def exchange_info(self) -> Dict[str, Any]:
        """
        Fetch exchange trading rules and symbol information.

        Cached for `cache_ttl_exchange_info` seconds when caching is enabled;
        concurrent callers share a single upstream request.

        Binance Endpoint:
            GET /api/v3/exchangeInfo
        """
        return await self.execute_public(
            "/exchangeInfo",
            weight=EXCHANGE_INFO_WEIGHT,
            cache_ttl=self.settings.cache_ttl_exchange_info
        )

    async def sync_time(self) -> int:
        """
        Calibrate the offset between local and server clocks.

        The offset is the server time minus the midpoint of the local request
        window, and is added to the timestamp of every later signed request.

        Returns:
            The new offset in milliseconds
        """
        before = self.clock.now_ms()
        server_ms = await self.server_time()
        after = self.clock.now_ms()

        offset = server_ms - (before + after) // 2
        self.dispatcher.time_offset_ms = offset
        self.logger.info(
            f"Server time {to_utc_datetime(server_ms).isoformat()}, offset calibrated: {offset} ms"
        )
        return offset

    async def rate_limit_status(self) -> Dict[str, Dict[str, float]]:
        """
        Current usage of the three rate-limit windows.

        Returns:
            {"PER_MINUTE_WEIGHT": {"current": ..., "limit": ..., "percentage": ...}, ...}
        """
        windows = await self.rate_limiter.status()
        return {
            kind.value: {
                "current": window.current,
                "limit": window.limit,
                "percentage": window.percentage,
            }
            for kind, window in windows.items()
        }

    async def reset_rate_limits(self) -> None:
        """Clear the counters of the current rate-limit windows."""
        await self.rate_limiter.reset()

    async def invalidate_cache(self, path: str, params: Optional[Mapping[str, Any]] = None) -> None:
        """
        Drop the cached response of a public GET request.

        Args:
            path: Endpoint path as passed to execute_public
            params: Parameters as passed to execute_public
        """
        spec = RequestSpec(path=path, params=params)
        await self.cache.invalidate(spec.cache_key)
