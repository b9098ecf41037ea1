"""
Request Dispatcher

Orchestrates one logical API call through the pipeline:

    BUILD -> (CACHE_CHECK) -> RATE_CHECK -> SIGN -> SEND -> CLASSIFY -> (RETRY -> RATE_CHECK ...) -> DONE

- CACHE_CHECK: only for PUBLIC GET calls given a cache TTL; a hit returns
  immediately and consumes no rate-limit budget
- RATE_CHECK: every attempt reserves budget in the RateLimiter; a local
  rejection is a RATE_LIMIT failure like any other
- SIGN: SIGNED calls get a fresh timestamp, recvWindow and signature right
  before each send, never before the rate check and never reused by a retry
- SEND: awaited under the per-call timeout; expiry classifies as TRANSPORT
- CLASSIFY / RETRY: failures are classified, then the RetryPolicy either
  returns a delay (the call sleeps without blocking other calls) or gives up,
  in which case the last ClassifiedError is raised to the caller

All shared state (rate-limit counters, cache entries) lives in the limiter and
cache passed in at construction.
"""

import asyncio
import json
import time
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple, Union

from core.classifier import classify
from core.config import Settings
from core.errors import ClassifiedError, ConfigurationError, ErrorKind, RateLimitExceeded
from core.logging import get_logger, log_api_request, log_api_response
from core.cache import ResponseCache
from core.rate_limiter import RateLimiter
from core.retry import RetryPolicy
from core.schemas import HTTPMethod, RequestSpec, SignedEnvelope, build_query_string
from core.transport import Transport
from core.utils.time import Clock, SystemClock


SignFn = Callable[[Mapping[str, str], Union[bytes, str]], str]
SleepFn = Callable[[float], Awaitable[Any]]

# Methods whose parameters travel in the request body rather than the query string
BODY_METHODS = (HTTPMethod.POST, HTTPMethod.PUT)


class RequestDispatcher:
    """
    Executes RequestSpecs with rate limiting, caching, signing and retries.

    Attributes:
        settings: Credentials, base URL, default timeout, recvWindow, logging toggles
        transport: HTTP collaborator
        rate_limiter: Shared admission check
        retry_policy: Backoff policy
        signer: Function computing the signature of an ordered parameter mapping
        cache: Optional response cache for public reads
        clock: Wall clock used for request timestamps
        time_offset_ms: Server time minus local time, added to every timestamp

    Example:
        >>> dispatcher = RequestDispatcher(settings, transport, limiter, RetryPolicy(), sign, cache)
        >>> await dispatcher.execute(RequestSpec(path="/ping"))
        {}
    """

    def __init__(
        self,
        settings: Settings,
        transport: Transport,
        rate_limiter: RateLimiter,
        retry_policy: RetryPolicy,
        signer: SignFn,
        cache: Optional[ResponseCache] = None,
        clock: Optional[Clock] = None,
        sleep: SleepFn = asyncio.sleep
    ):
        self.settings = settings
        self.transport = transport
        self.rate_limiter = rate_limiter
        self.retry_policy = retry_policy
        self.signer = signer
        self.cache = cache
        self.clock = clock or SystemClock()
        self.time_offset_ms = 0
        self._sleep = sleep
        self.logger = get_logger(__name__)

    # ============================================
    # Public Entry Point
    # ============================================

    async def execute(
        self,
        spec: RequestSpec,
        cache_ttl: Optional[float] = None,
        timeout: Optional[float] = None
    ) -> Any:
        """
        Run one logical call to completion.

        Args:
            spec: The request to execute
            cache_ttl: Opt-in cache TTL in seconds (PUBLIC GET calls only)
            timeout: Per-send timeout in seconds (defaults to settings.request_timeout)

        Returns:
            Decoded JSON payload

        Raises:
            ConfigurationError: SIGNED call without API key and secret (no I/O attempted)
            ClassifiedError: Terminal failure, or the last failure once retries are exhausted
        """
        if spec.is_signed and not self.settings.has_credentials:
            raise ConfigurationError("API key and secret are required for signed requests")

        if self._is_cacheable(spec, cache_ttl):
            return await self.cache.get_or_fetch(
                spec.cache_key,
                cache_ttl,
                lambda: self._run(spec, timeout)
            )

        return await self._run(spec, timeout)

    def _is_cacheable(self, spec: RequestSpec, cache_ttl: Optional[float]) -> bool:
        return (
            self.cache is not None
            and self.settings.cache_enabled
            and cache_ttl is not None
            and cache_ttl > 0
            and not spec.is_signed
            and spec.method is HTTPMethod.GET
        )

    # ============================================
    # Retry Loop
    # ============================================

    async def _run(self, spec: RequestSpec, timeout: Optional[float]) -> Any:
        attempt = 0
        while True:
            attempt += 1
            payload, error = await self._attempt(spec, attempt, timeout)
            if error is None:
                return payload

            decision = self.retry_policy.should_retry(attempt, error)
            if not decision.retry:
                self._log_failure(spec, error, attempt)
                raise error

            self.logger.warning(
                f"{spec.method.value} {spec.path} failed with {error} "
                f"(attempt {attempt}/{self.retry_policy.max_attempts}). "
                f"Retrying in {decision.delay:.3f}s..."
            )
            await self._sleep(decision.delay)

    async def _attempt(
        self,
        spec: RequestSpec,
        attempt: int,
        timeout: Optional[float]
    ) -> Tuple[Any, Optional[ClassifiedError]]:
        """One pass through RATE_CHECK -> SIGN -> SEND -> CLASSIFY."""
        try:
            await self.rate_limiter.reserve_many(spec.window_costs())
        except RateLimitExceeded as e:
            return None, e

        params = self._build_params(spec)
        url, headers, body = self._build_http_request(spec, params)
        timeout = timeout if timeout is not None else self.settings.request_timeout

        if self.settings.log_requests:
            log_api_request(spec.method.value, spec.path, params, attempt)

        started = time.perf_counter()
        try:
            async with asyncio.timeout(timeout):
                response = await self.transport.send(spec.method.value, url, headers, body, timeout)
        except Exception as e:
            return None, classify(e)

        if self.settings.log_responses:
            log_api_response(spec.method.value, spec.path, response.status, time.perf_counter() - started)

        if not response.ok:
            return None, classify(response)

        if not response.body:
            return None, None

        try:
            return json.loads(response.body), None
        except ValueError:
            return None, classify(response)

    # ============================================
    # Request Building
    # ============================================

    def current_timestamp(self) -> int:
        """Local wall clock corrected by the calibrated server offset (ms)."""
        return self.clock.now_ms() + self.time_offset_ms

    def _build_params(self, spec: RequestSpec) -> Dict[str, str]:
        if not spec.is_signed:
            return spec.params_dict

        timestamp = self.current_timestamp()
        unsigned = SignedEnvelope(
            spec=spec,
            timestamp=timestamp,
            recv_window=self.settings.recv_window,
            signature=""
        )
        envelope = unsigned.model_copy(update={
            "signature": self.signer(unsigned.signing_params, self.settings.binance_api_secret)
        })
        return envelope.wire_params

    def _url(self, spec: RequestSpec) -> str:
        prefix = self.settings.api_prefix.rstrip("/")
        path = spec.path if spec.path.startswith(f"{prefix}/") else f"{prefix}{spec.path}"
        return f"{self.settings.effective_base_url}{path}"

    def _build_http_request(
        self,
        spec: RequestSpec,
        params: Dict[str, str]
    ) -> Tuple[str, Dict[str, str], Optional[str]]:
        url = self._url(spec)
        headers = self.settings.get_binance_headers() if spec.is_signed else {"Accept": "application/json"}
        query = build_query_string(params) if params else ""

        if spec.method in BODY_METHODS:
            headers["Content-Type"] = "application/x-www-form-urlencoded"
            return url, headers, query or None

        return (f"{url}?{query}" if query else url), headers, None

    # ============================================
    # Logging
    # ============================================

    def _log_failure(self, spec: RequestSpec, error: ClassifiedError, attempts: int) -> None:
        if error.kind is ErrorKind.UNKNOWN_UPSTREAM:
            self.logger.error(
                f"{spec.method.value} {spec.path} failed after {attempts} attempt(s) "
                f"with unclassified upstream error: {error.to_dict()}"
            )
        elif self.settings.log_errors:
            self.logger.error(
                f"{spec.method.value} {spec.path} failed after {attempts} attempt(s): "
                f"{error} | {error.friendly_message}"
            )
