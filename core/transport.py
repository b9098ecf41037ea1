"""
HTTP Transport

This module provides the HTTP collaborator of the request pipeline.

The dispatcher only depends on the Transport contract:

    send(method, url, headers, body, timeout) -> TransportResponse

A response is returned for every HTTP status, including 4xx/5xx; classifying
those is the ErrorClassifier's job. Only failures where no HTTP response was
obtained (connection refused, DNS, timeout) raise TransportError.

Usage:
    async with AiohttpTransport() as transport:
        response = await transport.send("GET", url, {}, None, timeout=10)
        print(response.status, response.body)
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Dict, Mapping, Optional

import aiohttp
from pydantic import BaseModel, Field

from core.errors import TransportError
from core.logging import get_logger


class TransportResponse(BaseModel):
    """
    Raw HTTP response.

    Attributes:
        status: HTTP status code
        body: Response body decoded as text
        headers: Response headers
    """

    status: int
    body: str = ""
    headers: Dict[str, str] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """True for 2xx statuses."""
        return 200 <= self.status < 300

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


class Transport(ABC):
    """
    Abstract HTTP transport.

    Implementations must raise TransportError (or let asyncio.TimeoutError
    propagate) when no response could be obtained.
    """

    @abstractmethod
    async def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: Optional[str],
        timeout: float
    ) -> TransportResponse:
        """
        Perform one HTTP exchange.

        Args:
            method: HTTP method
            url: Absolute URL including the query string
            headers: Request headers
            body: Form-encoded request body, or None
            timeout: Total timeout for the exchange in seconds

        Returns:
            TransportResponse with status, body text and headers

        Raises:
            TransportError: On connection failure or timeout
        """
        pass

    async def close(self) -> None:
        """Release transport resources. Default implementation does nothing."""
        pass


class AiohttpTransport(Transport):
    """
    Transport backed by an aiohttp ClientSession.

    The session is created lazily on first use or when entering the async
    context, and closed by close() / __aexit__.

    Example:
        >>> async with AiohttpTransport() as transport:
        ...     response = await transport.send("GET", "https://api.binance.com/api/v3/ping", {}, None, 10)
    """

    def __init__(self, session: Optional[aiohttp.ClientSession] = None):
        """
        Initialize the transport.

        Args:
            session: Optional externally owned session (not closed by close())
        """
        self.session = session
        self._owns_session = session is None
        self.logger = get_logger(__name__)

    # ============================================
    # Context Manager for Session Management
    # ============================================

    async def __aenter__(self):
        self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession()
            self._owns_session = True
            self.logger.debug("AiohttpTransport session created")
        return self.session

    async def close(self) -> None:
        if self.session and self._owns_session and not self.session.closed:
            await self.session.close()
            self.logger.debug("AiohttpTransport session closed")

    # ============================================
    # HTTP Exchange
    # ============================================

    async def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: Optional[str],
        timeout: float
    ) -> TransportResponse:
        session = self._ensure_session()

        try:
            async with session.request(
                method,
                url,
                headers=dict(headers),
                data=body,
                timeout=aiohttp.ClientTimeout(total=timeout)
            ) as resp:
                text = await resp.text()
                return TransportResponse(
                    status=resp.status,
                    body=text,
                    headers={key: value for key, value in resp.headers.items()}
                )

        except asyncio.TimeoutError as e:
            raise TransportError(f"Timeout after {timeout}s on {method} {url}") from e

        except aiohttp.ClientError as e:
            raise TransportError(f"Connection failed on {method} {url}: {e}") from e
