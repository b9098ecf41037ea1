"""
Unit Tests for the Request Dispatcher

These tests verify the pipeline end to end with a fake transport:
- Retryable failures are retried with backoff, terminal ones are not
- Signed retries are re-signed with a fresh timestamp
- Rate-limit rejections happen before signing and sending
- Cache hits consume no rate-limit budget
- Cancelled calls stop cleanly and keep the budget of attempts already sent
- Requests are built with the right URL, headers and body

Run with:
    pytest tests/unit/test_dispatcher.py -v
"""

import asyncio
from unittest.mock import MagicMock
from urllib.parse import parse_qsl, urlsplit

import pytest

from core.cache import ResponseCache
from core.dispatcher import RequestDispatcher
from core.errors import (
    ConfigurationError,
    ErrorKind,
    InsufficientBalanceError,
    RateLimitExceeded,
    TransportError,
)
from core.rate_limiter import RateLimiter
from core.retry import RetryPolicy
from core.schemas import AuthMode, HTTPMethod, OrderAction, RequestSpec, WindowKind, build_query_string
from exchanges.binance.signer import sign
from tests.unit.fakes import START_MS, FakeTransport, json_response


ORDER_PARAMS = {"symbol": "BTCUSDT", "side": "BUY", "type": "MARKET", "quantity": "0.001"}


def make_dispatcher(settings, transport, store, clock, sleep, signer=sign):
    return RequestDispatcher(
        settings,
        transport,
        RateLimiter.from_settings(settings, store, clock),
        RetryPolicy.from_settings(settings),
        signer,
        cache=ResponseCache(store, clock),
        clock=clock,
        sleep=sleep,
    )


def order_spec(action=OrderAction.PLACE):
    return RequestSpec(
        path="/order",
        method=HTTPMethod.POST,
        params=ORDER_PARAMS,
        auth_mode=AuthMode.SIGNED,
        order_action=action,
    )


# ============================================
# Retries
# ============================================

class TestRetries:
    """Tests for the retry loop"""

    @pytest.mark.asyncio
    async def test_three_timeouts_fail_with_transport_after_three_sends(
        self, signed_settings, store, clock, recording_sleep
    ):
        """Verify 3 timeouts -> TRANSPORT error, 3 sends, 2 backoff waits of 1s and 2s"""
        transport = FakeTransport(asyncio.TimeoutError())
        dispatcher = make_dispatcher(signed_settings, transport, store, clock, recording_sleep)

        with pytest.raises(TransportError) as exc_info:
            await dispatcher.execute(RequestSpec(path="/ticker/price", params={"symbol": "BTCUSDT"}))

        assert exc_info.value.kind is ErrorKind.TRANSPORT
        assert len(transport.calls) == 3
        assert recording_sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self, signed_settings, store, clock, recording_sleep):
        transport = FakeTransport(
            ConnectionResetError("reset"),
            json_response('{"price": "43000.00"}'),
        )
        dispatcher = make_dispatcher(signed_settings, transport, store, clock, recording_sleep)

        result = await dispatcher.execute(RequestSpec(path="/ticker/price", params={"symbol": "BTCUSDT"}))

        assert result == {"price": "43000.00"}
        assert len(transport.calls) == 2
        assert recording_sleep.delays == [1.0]

    @pytest.mark.asyncio
    async def test_terminal_error_is_not_retried(self, signed_settings, store, clock, recording_sleep):
        """Verify INSUFFICIENT_BALANCE surfaces after a single send"""
        transport = FakeTransport(
            json_response('{"code": -2010, "msg": "Account has insufficient balance."}', status=400)
        )
        dispatcher = make_dispatcher(signed_settings, transport, store, clock, recording_sleep)

        with pytest.raises(InsufficientBalanceError) as exc_info:
            await dispatcher.execute(order_spec())

        assert exc_info.value.code == -2010
        assert len(transport.calls) == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_upstream_retry_after_is_used_as_delay(self, signed_settings, store, clock, recording_sleep):
        transport = FakeTransport(
            json_response('{"code": -1003, "msg": "Too many requests."}', status=429, headers={"Retry-After": "3"}),
            json_response("{}"),
        )
        dispatcher = make_dispatcher(signed_settings, transport, store, clock, recording_sleep)

        assert await dispatcher.execute(RequestSpec(path="/ping")) == {}
        assert recording_sleep.delays == [3.0]

    @pytest.mark.asyncio
    async def test_signed_retry_uses_fresh_timestamp_and_signature(self, signed_settings, store, clock):
        """Verify each attempt is signed again with the current time"""
        transport = FakeTransport(asyncio.TimeoutError(), json_response('{"orderId": 1}'))

        async def advancing_sleep(delay):
            clock.advance(delay)

        dispatcher = make_dispatcher(signed_settings, transport, store, clock, advancing_sleep)

        result = await dispatcher.execute(order_spec())

        assert result == {"orderId": 1}
        first, second = (dict(parse_qsl(call["body"])) for call in transport.calls)
        assert first["timestamp"] == str(START_MS)
        assert second["timestamp"] == str(START_MS + 1000)
        assert first["signature"] != second["signature"]
        for call in transport.calls:
            pairs = parse_qsl(call["body"])
            assert [key for key, _ in pairs][-3:] == ["timestamp", "recvWindow", "signature"]
            unsigned = dict(pairs[:-1])
            assert pairs[-1][1] == sign(unsigned, "S")


# ============================================
# Credentials and Rate Limits
# ============================================

class TestAdmission:
    """Tests for checks that happen before any I/O"""

    @pytest.mark.asyncio
    async def test_signed_call_without_credentials_fails_without_io(self, public_settings, store, clock, recording_sleep):
        transport = FakeTransport()
        dispatcher = make_dispatcher(public_settings, transport, store, clock, recording_sleep)

        with pytest.raises(ConfigurationError):
            await dispatcher.execute(order_spec())

        assert transport.calls == []
        status = await dispatcher.rate_limiter.status()
        assert status[WindowKind.PER_MINUTE_WEIGHT].current == 0

    @pytest.mark.asyncio
    async def test_rate_rejection_happens_before_signing_and_sending(self, signed_settings, store, clock, recording_sleep):
        """Verify an exhausted order window stops the call before sign and send"""
        settings = signed_settings.model_copy(update={"rate_limit_orders_per_second": 1, "retry_max_attempts": 1})
        transport = FakeTransport(json_response('{"orderId": 1}'))
        signer = MagicMock(side_effect=sign)
        dispatcher = make_dispatcher(settings, transport, store, clock, recording_sleep, signer=signer)

        await dispatcher.execute(order_spec())
        with pytest.raises(RateLimitExceeded) as exc_info:
            await dispatcher.execute(order_spec())

        assert exc_info.value.window is WindowKind.PER_SECOND_ORDERS
        assert signer.call_count == 1
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_local_rejection_is_retried_after_window_resets(self, signed_settings, store, clock):
        settings = signed_settings.model_copy(update={"rate_limit_orders_per_second": 1})
        transport = FakeTransport(json_response('{"orderId": 1}'))
        delays = []

        async def advancing_sleep(delay):
            delays.append(delay)
            clock.advance(delay)

        dispatcher = make_dispatcher(settings, transport, store, clock, advancing_sleep)

        await dispatcher.execute(order_spec())
        result = await dispatcher.execute(order_spec(OrderAction.CANCEL))

        assert result == {"orderId": 1}
        assert delays == [pytest.approx(1.0)]
        assert len(transport.calls) == 2

    @pytest.mark.asyncio
    async def test_cache_hit_consumes_no_budget(self, signed_settings, store, clock, recording_sleep):
        """Verify a cached public read is served without reserving rate-limit budget"""
        settings = signed_settings.model_copy(update={"rate_limit_requests_per_minute": 1, "retry_max_attempts": 1})
        transport = FakeTransport(json_response('{"symbols": []}'))
        dispatcher = make_dispatcher(settings, transport, store, clock, recording_sleep)
        spec = RequestSpec(path="/exchangeInfo")

        first = await dispatcher.execute(spec, cache_ttl=3600)
        second = await dispatcher.execute(spec, cache_ttl=3600)

        assert first == second == {"symbols": []}
        assert len(transport.calls) == 1
        status = await dispatcher.rate_limiter.status()
        assert status[WindowKind.PER_MINUTE_WEIGHT].current == 1

    @pytest.mark.asyncio
    async def test_cache_disabled_setting_bypasses_cache(self, signed_settings, store, clock, recording_sleep):
        settings = signed_settings.model_copy(update={"cache_enabled": False})
        transport = FakeTransport(json_response("{}"))
        dispatcher = make_dispatcher(settings, transport, store, clock, recording_sleep)

        await dispatcher.execute(RequestSpec(path="/exchangeInfo"), cache_ttl=3600)
        await dispatcher.execute(RequestSpec(path="/exchangeInfo"), cache_ttl=3600)

        assert len(transport.calls) == 2

    @pytest.mark.asyncio
    async def test_params_that_look_alike_are_cached_separately(self, signed_settings, store, clock, recording_sleep):
        """Verify a value containing &limit=5 does not hit the entry of a real limit=5 request"""
        transport = FakeTransport(json_response('{"bids": []}'))
        dispatcher = make_dispatcher(signed_settings, transport, store, clock, recording_sleep)

        await dispatcher.execute(RequestSpec(path="/depth", params={"symbol": "A&limit=5"}), cache_ttl=60)
        await dispatcher.execute(RequestSpec(path="/depth", params={"symbol": "A", "limit": "5"}), cache_ttl=60)

        assert len(transport.calls) == 2


# ============================================
# Cancellation
# ============================================

def hanging(started: asyncio.Event):
    """Transport outcome that never answers"""
    async def respond():
        started.set()
        await asyncio.Event().wait()
    return respond


async def let_tasks_run(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class TestCancellation:
    """Tests for calls cancelled while waiting on the network or a backoff"""

    @pytest.mark.asyncio
    async def test_cancel_during_send_keeps_budget_of_sent_attempt(self, signed_settings, store, clock, recording_sleep):
        """Verify a cancelled in-flight order stays charged, as it may have reached the exchange"""
        started = asyncio.Event()
        transport = FakeTransport(hanging(started))
        dispatcher = make_dispatcher(signed_settings, transport, store, clock, recording_sleep)

        task = asyncio.create_task(dispatcher.execute(order_spec()))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert len(transport.calls) == 1
        assert recording_sleep.delays == []
        status = await dispatcher.rate_limiter.status()
        assert status[WindowKind.PER_MINUTE_WEIGHT].current == 1
        assert status[WindowKind.PER_SECOND_ORDERS].current == 1
        assert status[WindowKind.PER_DAY_ORDERS].current == 1

    @pytest.mark.asyncio
    async def test_cancel_during_backoff_stops_retrying(self, signed_settings, store, clock):
        """Verify a call cancelled while sleeping between attempts sends nothing more"""
        delays = []
        sleeping = asyncio.Event()

        async def blocking_sleep(delay):
            delays.append(delay)
            sleeping.set()
            await asyncio.Event().wait()

        transport = FakeTransport(asyncio.TimeoutError())
        dispatcher = make_dispatcher(signed_settings, transport, store, clock, blocking_sleep)

        task = asyncio.create_task(dispatcher.execute(order_spec()))
        await sleeping.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert delays == [pytest.approx(1.0)]
        assert len(transport.calls) == 1
        status = await dispatcher.rate_limiter.status()
        assert status[WindowKind.PER_MINUTE_WEIGHT].current == 1
        assert status[WindowKind.PER_SECOND_ORDERS].current == 1

    @pytest.mark.asyncio
    async def test_cancelled_cached_read_releases_in_flight_marker(self, signed_settings, store, clock, recording_sleep):
        started = asyncio.Event()
        transport = FakeTransport(hanging(started), json_response('{"symbols": []}'))
        dispatcher = make_dispatcher(signed_settings, transport, store, clock, recording_sleep)
        spec = RequestSpec(path="/exchangeInfo")

        task = asyncio.create_task(dispatcher.execute(spec, cache_ttl=60))
        await started.wait()
        assert dispatcher.cache.is_in_flight(spec.cache_key)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert not dispatcher.cache.is_in_flight(spec.cache_key)
        assert await dispatcher.cache.get(spec.cache_key) is None
        assert await dispatcher.execute(spec, cache_ttl=60) == {"symbols": []}
        assert len(transport.calls) == 2

    @pytest.mark.asyncio
    async def test_waiter_refetches_when_cached_read_owner_is_cancelled(
        self, signed_settings, store, clock, recording_sleep
    ):
        """Verify a caller waiting on a cancelled fetch sends its own request"""
        started = asyncio.Event()
        transport = FakeTransport(hanging(started), json_response('{"symbols": []}'))
        dispatcher = make_dispatcher(signed_settings, transport, store, clock, recording_sleep)
        spec = RequestSpec(path="/exchangeInfo")

        owner = asyncio.create_task(dispatcher.execute(spec, cache_ttl=60))
        await started.wait()
        waiter = asyncio.create_task(dispatcher.execute(spec, cache_ttl=60))
        await let_tasks_run()

        owner.cancel()

        assert await waiter == {"symbols": []}
        with pytest.raises(asyncio.CancelledError):
            await owner
        assert len(transport.calls) == 2
        status = await dispatcher.rate_limiter.status()
        assert status[WindowKind.PER_MINUTE_WEIGHT].current == 2


# ============================================
# Timeouts
# ============================================

class TestTimeout:
    """Tests for the per-send timeout"""

    @pytest.mark.asyncio
    async def test_slow_send_is_classified_as_transport(self, signed_settings, store, clock, recording_sleep):
        settings = signed_settings.model_copy(update={"retry_max_attempts": 1})

        async def never_answers():
            await asyncio.sleep(10)

        transport = FakeTransport(never_answers)
        dispatcher = make_dispatcher(settings, transport, store, clock, recording_sleep)

        with pytest.raises(TransportError):
            await dispatcher.execute(RequestSpec(path="/ping"), timeout=0.01)

        assert transport.calls[0]["timeout"] == 0.01


# ============================================
# Request Building
# ============================================

class TestRequestBuilding:
    """Tests for URL, header and body construction"""

    @pytest.mark.asyncio
    async def test_public_get_puts_params_in_query(self, signed_settings, store, clock, recording_sleep):
        transport = FakeTransport(json_response('{"price": "1"}'))
        dispatcher = make_dispatcher(signed_settings, transport, store, clock, recording_sleep)

        await dispatcher.execute(RequestSpec(path="/ticker/price", params={"symbol": "BTCUSDT"}))

        call = transport.calls[0]
        assert call["method"] == "GET"
        assert call["url"] == "https://api.binance.com/api/v3/ticker/price?symbol=BTCUSDT"
        assert call["body"] is None
        assert "X-MBX-APIKEY" not in call["headers"]

    @pytest.mark.asyncio
    async def test_signed_get_sends_api_key_and_signed_query(self, signed_settings, store, clock, recording_sleep):
        transport = FakeTransport(json_response('{"balances": []}'))
        dispatcher = make_dispatcher(signed_settings, transport, store, clock, recording_sleep)

        await dispatcher.execute(RequestSpec(path="/account", auth_mode=AuthMode.SIGNED))

        call = transport.calls[0]
        query = urlsplit(call["url"]).query
        expected_unsigned = {"timestamp": str(START_MS), "recvWindow": "5000"}
        assert call["headers"]["X-MBX-APIKEY"] == "K"
        assert query == f"{build_query_string(expected_unsigned)}&signature={sign(expected_unsigned, 'S')}"

    @pytest.mark.asyncio
    async def test_post_sends_form_body(self, signed_settings, store, clock, recording_sleep):
        transport = FakeTransport(json_response('{"orderId": 1}'))
        dispatcher = make_dispatcher(signed_settings, transport, store, clock, recording_sleep)

        await dispatcher.execute(order_spec())

        call = transport.calls[0]
        assert call["url"] == "https://api.binance.com/api/v3/order"
        assert call["headers"]["Content-Type"] == "application/x-www-form-urlencoded"
        assert call["body"].startswith("symbol=BTCUSDT&side=BUY&type=MARKET&quantity=0.001&timestamp=")

    @pytest.mark.asyncio
    async def test_time_offset_is_added_to_timestamp(self, signed_settings, store, clock, recording_sleep):
        transport = FakeTransport(json_response("{}"))
        dispatcher = make_dispatcher(signed_settings, transport, store, clock, recording_sleep)
        dispatcher.time_offset_ms = -250

        await dispatcher.execute(RequestSpec(path="/account", auth_mode=AuthMode.SIGNED))

        params = dict(parse_qsl(urlsplit(transport.calls[0]["url"]).query))
        assert params["timestamp"] == str(START_MS - 250)

    @pytest.mark.asyncio
    async def test_empty_success_body_returns_none(self, signed_settings, store, clock, recording_sleep):
        transport = FakeTransport(json_response(""))
        dispatcher = make_dispatcher(signed_settings, transport, store, clock, recording_sleep)

        assert await dispatcher.execute(RequestSpec(path="/userDataStream", method=HTTPMethod.DELETE)) is None
