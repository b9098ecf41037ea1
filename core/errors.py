"""
Error Taxonomy

Every failure the pipeline surfaces is a ClassifiedError: transport problems,
local rate-limit rejections and upstream error payloads are all normalized into
one of seven kinds.

Kinds:
    TRANSPORT            - connection error, timeout, malformed response (retryable)
    RATE_LIMIT           - local admission or upstream throttling (retryable)
    AUTH                 - bad key, signature or timestamp skew (terminal)
    INSUFFICIENT_BALANCE - not enough funds (terminal)
    INVALID_SYMBOL       - unknown trading pair (terminal)
    VALIDATION           - malformed or illegal parameters (terminal)
    UNKNOWN_UPSTREAM     - anything else the exchange returned (terminal)

Each kind has its own exception subclass so callers can write
`except InsufficientBalanceError:` as well as inspect `error.kind`.
"""

from enum import Enum
from typing import Any, Dict, Optional

from core.schemas import WindowKind


class ErrorKind(str, Enum):
    """Classification of a failed request."""
    TRANSPORT = "TRANSPORT"
    AUTH = "AUTH"
    RATE_LIMIT = "RATE_LIMIT"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    INVALID_SYMBOL = "INVALID_SYMBOL"
    VALIDATION = "VALIDATION"
    UNKNOWN_UPSTREAM = "UNKNOWN_UPSTREAM"


RETRYABLE_KINDS = frozenset({ErrorKind.TRANSPORT, ErrorKind.RATE_LIMIT})


FRIENDLY_MESSAGES: Dict[int, str] = {
    -1003: "Too many requests. Please wait and try again.",
    -1013: "Invalid quantity or amount.",
    -1015: "Too many requests per minute.",
    -1021: "Timestamp for this request is outside the valid time window.",
    -1022: "Invalid signature provided.",
    -2010: "Insufficient account balance.",
    -2014: "API key format invalid.",
    -2015: "Invalid API key, IP, or permissions for action.",
    -1100: "Illegal characters found in parameter.",
    -1121: "Invalid symbol.",
}


class ConfigurationError(Exception):
    """Client is missing configuration required for the call (e.g., API credentials)."""
    pass


class ClassifiedError(Exception):
    """
    Normalized failure record.

    Attributes:
        kind: ErrorKind of the failure
        code: Upstream error code (None for transport and local failures)
        message: Upstream message, or a description of the local failure
        retry_after: Suggested wait in seconds before retrying (None = no hint)
        status_code: HTTP status (None when no response was received)
        payload: Raw response body or decoded error payload
    """

    kind: ErrorKind = ErrorKind.UNKNOWN_UPSTREAM

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        retry_after: Optional[float] = None,
        status_code: Optional[int] = None,
        payload: Any = None,
    ) -> None:
        self.message = message
        self.code = code
        self.retry_after = retry_after
        self.status_code = status_code
        self.payload = payload
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    @property
    def friendly_message(self) -> str:
        """Human-readable explanation for well-known upstream codes."""
        if self.code is not None and self.code in FRIENDLY_MESSAGES:
            return FRIENDLY_MESSAGES[self.code]
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to a dictionary for structured logging."""
        return {
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
            "retry_after": self.retry_after,
            "status_code": self.status_code,
            "payload": self.payload,
        }

    def __str__(self) -> str:
        code = f" ({self.code})" if self.code is not None else ""
        return f"{self.kind.value}{code}: {self.message}"


# Connection and infrastructure errors (retryable)
class TransportError(ClassifiedError):
    """Connection error, timeout or malformed response."""
    kind = ErrorKind.TRANSPORT


# Rate limiting errors (retryable with backoff or hint)
class RateLimitError(ClassifiedError):
    """Upstream throttling."""
    kind = ErrorKind.RATE_LIMIT


class RateLimitExceeded(RateLimitError):
    """
    Local admission check rejected the request before it was sent.

    Attributes:
        window: The window that would have been exceeded
        current: Count already consumed in that window
        limit: Configured threshold
    """

    def __init__(self, window: WindowKind, current: int, limit: int, retry_after: float) -> None:
        self.window = window
        self.current = current
        self.limit = limit
        super().__init__(
            f"{window.value} limit exceeded: {current}/{limit}",
            retry_after=retry_after,
        )


# Authentication errors (terminal, configuration problem)
class AuthenticationError(ClassifiedError):
    """API key, signature or timestamp rejected."""
    kind = ErrorKind.AUTH


# Request-semantic errors (terminal, caller must change input)
class InsufficientBalanceError(ClassifiedError):
    """Insufficient balance for the operation."""
    kind = ErrorKind.INSUFFICIENT_BALANCE


class InvalidSymbolError(ClassifiedError):
    """Invalid or non-existent trading symbol."""
    kind = ErrorKind.INVALID_SYMBOL


class ValidationError(ClassifiedError):
    """Invalid request parameters."""
    kind = ErrorKind.VALIDATION


class UnknownUpstreamError(ClassifiedError):
    """Upstream failure outside the known code table."""
    kind = ErrorKind.UNKNOWN_UPSTREAM


ERROR_CLASSES = {
    ErrorKind.TRANSPORT: TransportError,
    ErrorKind.AUTH: AuthenticationError,
    ErrorKind.RATE_LIMIT: RateLimitError,
    ErrorKind.INSUFFICIENT_BALANCE: InsufficientBalanceError,
    ErrorKind.INVALID_SYMBOL: InvalidSymbolError,
    ErrorKind.VALIDATION: ValidationError,
    ErrorKind.UNKNOWN_UPSTREAM: UnknownUpstreamError,
}


def error_for_kind(kind: ErrorKind, message: str, **kwargs: Any) -> ClassifiedError:
    """Instantiate the ClassifiedError subclass for `kind`."""
    return ERROR_CLASSES[kind](message, **kwargs)
