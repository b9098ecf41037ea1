"""
Configuration Management Module

This module handles loading, validating, and providing access to client configuration
from environment variables (.env file).

Uses Pydantic Settings for automatic validation and type conversion.

Key Features:
- Loads configuration from .env file
- Credentials, base URL and per-call timeout
- Thresholds for the three rate-limit windows
- Retry policy (max attempts, base delay, multiplier)
- Cache enable flag and per-resource TTLs

Usage:
    from core.config import Settings

    settings = Settings(binance_api_key="...", binance_api_secret="...")
    print(settings.effective_base_url)

The pipeline never reads the module-level `settings` instance implicitly;
components receive a Settings object at construction.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


TESTNET_BASE_URL = "https://testnet.binance.vision"

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class Settings(BaseSettings):
    """
    Client Settings

    Values are automatically loaded from environment variables or .env file.

    Attributes:
        binance_api_key: API key sent in the X-MBX-APIKEY header of signed calls
        binance_api_secret: Secret used to compute request signatures
        binance_base_url: REST API base URL
        binance_testnet: Use the spot testnet instead of binance_base_url
        api_prefix: Path prefix joined in front of every endpoint path
        request_timeout: Default timeout for a single HTTP exchange (seconds)
        recv_window: Receive-window sent with signed requests (ms)
        rate_limit_requests_per_minute: Request weight admitted per minute
        rate_limit_orders_per_second: Order placements/cancellations per second
        rate_limit_orders_per_day: Order placements per UTC day
        retry_max_attempts: Total attempts per call (1 = no retries)
        retry_base_delay_ms: Delay before the first retry
        retry_multiplier: Growth factor of the retry delay
        retry_max_delay_ms: Longest wait the retry policy accepts
        cache_enabled: Master switch for the response cache
        cache_ttl_market_data: cache_ttl preset callers pass for market data reads (seconds)
        cache_ttl_exchange_info: TTL used by exchange_info() (seconds)
        log_level / log_requests / log_responses / log_errors: Logging controls
    """

    # ============================================
    # Binance API Configuration
    # ============================================

    binance_api_key: str = Field(
        default="",
        description="Binance API key (required for signed endpoints)"
    )

    binance_api_secret: str = Field(
        default="",
        description="Binance API secret (required for signed endpoints)"
    )

    binance_base_url: str = Field(
        default="https://api.binance.com",
        description="Binance REST API base URL"
    )

    binance_testnet: bool = Field(
        default=False,
        description="Use testnet.binance.vision instead of the base URL"
    )

    api_prefix: str = Field(
        default="/api/v3",
        description="Path prefix for REST endpoints"
    )

    request_timeout: float = Field(
        default=30,
        description="HTTP request timeout in seconds"
    )

    recv_window: int = Field(
        default=5000,
        description="recvWindow for signed requests (ms)"
    )

    # ============================================
    # Rate Limiting
    # ============================================

    rate_limit_requests_per_minute: int = Field(
        default=1200,
        description="Request weight admitted per minute"
    )

    rate_limit_orders_per_second: int = Field(
        default=10,
        description="Order placements and cancellations admitted per second"
    )

    rate_limit_orders_per_day: int = Field(
        default=200_000,
        description="Order placements admitted per UTC day"
    )

    # ============================================
    # Retry Configuration
    # ============================================

    retry_max_attempts: int = Field(
        default=3,
        description="Total attempts per call, including the first one"
    )

    retry_base_delay_ms: int = Field(
        default=1000,
        description="Delay before the first retry (ms)"
    )

    retry_multiplier: float = Field(
        default=2,
        description="Exponential backoff multiplier"
    )

    retry_max_delay_ms: int = Field(
        default=60_000,
        description="Longest wait accepted before giving up (ms)"
    )

    # ============================================
    # Caching Configuration
    # ============================================

    cache_enabled: bool = Field(
        default=True,
        description="Enable the response cache for public read-only endpoints"
    )

    cache_ttl_market_data: int = Field(
        default=60,
        description="Caller-side cache_ttl preset for market data reads via execute_public (seconds)"
    )

    cache_ttl_exchange_info: int = Field(
        default=3600,
        description="TTL for exchange information (seconds)"
    )

    # ============================================
    # Logging
    # ============================================

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    log_requests: bool = Field(
        default=False,
        description="Log outgoing requests (signature redacted)"
    )

    log_responses: bool = Field(
        default=False,
        description="Log response status and timing"
    )

    log_errors: bool = Field(
        default=True,
        description="Log classified failures"
    )

    # ============================================
    # Pydantic Settings Configuration
    # ============================================

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False
    )

    # ============================================
    # Properties
    # ============================================

    @property
    def effective_base_url(self) -> str:
        """
        Base URL actually used for requests.

        Returns:
            The testnet URL when binance_testnet is set, binance_base_url otherwise,
            without a trailing slash
        """
        url = TESTNET_BASE_URL if self.binance_testnet else self.binance_base_url
        return url.rstrip("/")

    @property
    def has_credentials(self) -> bool:
        """True if both API key and secret are configured."""
        return bool(self.binance_api_key) and bool(self.binance_api_secret)

    def get_binance_headers(self) -> dict:
        """
        Get HTTP headers for Binance API requests.

        Returns:
            Dictionary of headers including API key if configured
        """
        headers = {
            "Accept": "application/json",
        }

        if self.binance_api_key:
            headers["X-MBX-APIKEY"] = self.binance_api_key

        return headers


# ============================================
# Global Settings Instance
# ============================================

settings = Settings()


# ============================================
# Configuration Validation
# ============================================

def validate_configuration(config: Settings) -> None:
    """
    Validate the settings consumed by the request pipeline.

    Args:
        config: Settings instance to check

    Raises:
        ValueError: If a threshold, retry parameter, URL or log level is invalid
    """
    from core.logging import logger

    if not config.effective_base_url.startswith(("http://", "https://")):
        raise ValueError(f"Invalid base URL: '{config.effective_base_url}'. Must start with http(s)://")

    limits = {
        "RATE_LIMIT_REQUESTS_PER_MINUTE": config.rate_limit_requests_per_minute,
        "RATE_LIMIT_ORDERS_PER_SECOND": config.rate_limit_orders_per_second,
        "RATE_LIMIT_ORDERS_PER_DAY": config.rate_limit_orders_per_day,
    }
    for name, value in limits.items():
        if value <= 0:
            raise ValueError(f"{name} must be positive, got {value}")

    if config.request_timeout <= 0:
        raise ValueError(f"REQUEST_TIMEOUT must be positive, got {config.request_timeout}")

    if config.retry_max_attempts < 1:
        raise ValueError(f"RETRY_MAX_ATTEMPTS must be at least 1, got {config.retry_max_attempts}")

    if config.retry_multiplier < 1:
        raise ValueError(f"RETRY_MULTIPLIER must be at least 1, got {config.retry_multiplier}")

    if config.retry_base_delay_ms < 0:
        raise ValueError(f"RETRY_BASE_DELAY_MS cannot be negative, got {config.retry_base_delay_ms}")

    if config.log_level.upper() not in VALID_LOG_LEVELS:
        raise ValueError(
            f"Invalid LOG_LEVEL: '{config.log_level}'. "
            f"Must be one of: {', '.join(VALID_LOG_LEVELS)}"
        )

    logger.info("Configuration validated successfully")
    logger.info(f"Binance API: {config.effective_base_url}{config.api_prefix}")
    logger.info(
        f"Rate limits: {config.rate_limit_requests_per_minute}/min, "
        f"{config.rate_limit_orders_per_second} orders/s, "
        f"{config.rate_limit_orders_per_day} orders/day"
    )
    logger.info(f"Credentials: {'configured' if config.has_credentials else 'not configured'}")
    logger.info(f"Cache: {'enabled' if config.cache_enabled else 'disabled'}")
