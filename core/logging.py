"""
Unified Logging Configuration

This module sets up a centralized logging system for the client library.
All modules should import and use the logger from this module.

Usage:
    from core.logging import get_logger

    logger = get_logger(__name__)
    logger.info("Dispatcher ready")

Secrets:
    The API secret is never passed to any logging call. Request parameters are
    logged through log_api_request(), which drops the `signature` parameter.

Configuration:
    Log level is controlled by the LOG_LEVEL setting in .env file.
"""

import logging
import sys
from typing import Any, Mapping, Optional


ROOT_LOGGER_NAME = "binance_pipeline"

REDACTED_PARAMS = ("signature",)


def setup_logging(
    log_level: str = "INFO",
    log_format: Optional[str] = None,
    include_timestamp: bool = True,
    include_module: bool = True
) -> logging.Logger:
    """
    Configure and return the library logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Custom log format string (uses default if None)
        include_timestamp: Include timestamp in log messages
        include_module: Include logger name in log messages

    Returns:
        logging.Logger: Configured logger instance

    Example:
        >>> logger = setup_logging(log_level="DEBUG")
        >>> logger.info("Client started")
        2024-01-01 12:00:00 [INFO] binance_pipeline Client started
    """
    if log_format is None:
        format_parts = []

        if include_timestamp:
            format_parts.append("%(asctime)s")

        format_parts.append("[%(levelname)s]")

        if include_module:
            format_parts.append("%(name)s")

        format_parts.append("%(message)s")

        log_format = " ".join(format_parts)

    level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)

    # A library must not reconfigure the root logger; attach one handler to ours
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(log_format, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)

    return logger


# ============================================
# Initialize Logger with Settings
# ============================================

try:
    from core.config import settings
    log_level = settings.log_level
except ImportError:
    log_level = "INFO"

logger = setup_logging(log_level=log_level)


# ============================================
# Convenience Functions
# ============================================

def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a specific module or component.

    Args:
        name: Name for the logger (typically __name__)

    Returns:
        logging.Logger: Child of the library logger

    Example:
        logger = get_logger(__name__)  # "binance_pipeline.core.dispatcher"
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def set_log_level(level: str) -> None:
    """
    Change the log level at runtime.

    Args:
        level: New log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))


def redact_params(params: Optional[Mapping[str, Any]]) -> dict:
    """Copy of params without the signature."""
    if not params:
        return {}
    return {key: value for key, value in params.items() if key not in REDACTED_PARAMS}


# ============================================
# Log Helper Functions
# ============================================

def log_api_request(method: str, endpoint: str, params: Optional[Mapping[str, Any]] = None,
                    attempt: int = 1) -> None:
    """
    Log an API request with consistent formatting.

    Args:
        method: HTTP method
        endpoint: API endpoint being called
        params: Request parameters (signature is removed before logging)
        attempt: Attempt number, starting at 1

    Example:
        >>> log_api_request("GET", "/api/v3/ticker/price", {"symbol": "BTCUSDT"})
        [INFO] API Request: GET /api/v3/ticker/price | Attempt: 1 | Params: {'symbol': 'BTCUSDT'}
    """
    safe_params = redact_params(params)
    params_str = f" | Params: {safe_params}" if safe_params else ""
    logger.info(f"API Request: {method} {endpoint} | Attempt: {attempt}{params_str}")


def log_api_response(method: str, endpoint: str, status: int, response_time: float = None) -> None:
    """
    Log an API response with status and timing information.

    Args:
        method: HTTP method
        endpoint: API endpoint
        status: HTTP status code
        response_time: Response time in seconds (optional)

    Example:
        >>> log_api_response("GET", "/api/v3/ping", 200, 0.042)
        [INFO] API Response: GET /api/v3/ping | Status: 200 | Time: 0.042s
    """
    time_str = f" | Time: {response_time:.3f}s" if response_time is not None else ""
    logger.info(f"API Response: {method} {endpoint} | Status: {status}{time_str}")
