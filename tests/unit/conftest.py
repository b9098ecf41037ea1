"""
Shared fixtures for the pipeline unit tests.
"""

import pytest

from core.config import Settings
from storage.memory import InMemoryStore
from tests.unit.fakes import FakeClock, RecordingSleep


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryStore(clock)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def signed_settings():
    """Settings with credentials and deterministic retry parameters"""
    return Settings(
        binance_api_key="K",
        binance_api_secret="S",
        binance_base_url="https://api.binance.com",
        binance_testnet=False,
        retry_max_attempts=3,
        retry_base_delay_ms=1000,
        retry_multiplier=2,
        retry_max_delay_ms=60_000,
        cache_enabled=True,
        log_requests=False,
        log_responses=False,
    )


@pytest.fixture
def public_settings():
    """Settings without credentials"""
    return Settings(
        binance_api_key="",
        binance_api_secret="",
        binance_base_url="https://api.binance.com",
        binance_testnet=False,
    )
