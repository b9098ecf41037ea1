"""
Request Pipeline Schemas

This module defines the Pydantic models and enums that flow through the request
execution pipeline.

Models:
    - RequestSpec: Immutable description of one logical API call
    - SignedEnvelope: A RequestSpec plus timestamp, receive-window and signature
    - RateWindow: Snapshot of one rate-limit counter
    - CacheEntry: A cached response value with its expiry

Enums:
    - HTTPMethod, AuthMode, OrderAction, WindowKind
"""

from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Mapping, Tuple
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ============================================
# Enums
# ============================================

class HTTPMethod(str, Enum):
    """HTTP methods supported by the exchange REST API."""
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"


class AuthMode(str, Enum):
    """Whether a call is sent as-is or signed with the API secret."""
    PUBLIC = "PUBLIC"
    SIGNED = "SIGNED"


class OrderAction(str, Enum):
    """
    Order rate class of an endpoint.

    PLACE consumes the per-second and per-day order windows,
    CANCEL consumes only the per-second window.
    """
    NONE = "NONE"
    PLACE = "PLACE"
    CANCEL = "CANCEL"


class WindowKind(str, Enum):
    """The three independent rate-limit windows."""
    PER_MINUTE_WEIGHT = "PER_MINUTE_WEIGHT"
    PER_SECOND_ORDERS = "PER_SECOND_ORDERS"
    PER_DAY_ORDERS = "PER_DAY_ORDERS"

    @property
    def length_ms(self) -> int:
        """Window length in milliseconds."""
        return WINDOW_LENGTHS_MS[self]


WINDOW_LENGTHS_MS: Dict[WindowKind, int] = {
    WindowKind.PER_MINUTE_WEIGHT: 60_000,
    WindowKind.PER_SECOND_ORDERS: 1_000,
    WindowKind.PER_DAY_ORDERS: 86_400_000,
}


# ============================================
# Parameter Encoding
# ============================================

def stringify_param(value: Any) -> str:
    """
    Convert a parameter value to its wire representation.

    - bool -> "true" / "false"
    - float / Decimal -> plain decimal notation (never scientific)
    - anything else -> str(value)

    Examples:
        >>> stringify_param(0.00001)
        '0.00001'
        >>> stringify_param(True)
        'true'
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        value = Decimal(repr(value))
    if isinstance(value, Decimal):
        text = format(value, "f")
        if "." in text:
            text = text.rstrip("0").rstrip(".")
        return text
    return str(value)


def build_query_string(params: Mapping[str, str]) -> str:
    """
    Form-encode parameters as `key=value` pairs joined by `&`, in insertion order.

    Examples:
        >>> build_query_string({"symbol": "BTCUSDT", "side": "BUY"})
        'symbol=BTCUSDT&side=BUY'
    """
    return urlencode(list(params.items()))


# ============================================
# RequestSpec
# ============================================

class RequestSpec(BaseModel):
    """
    Immutable description of one logical API call.

    Attributes:
        path: Endpoint path relative to the API prefix (e.g., "/ticker/price")
        method: HTTP method
        params: Ordered (key, value) pairs; keys are unique, values are strings
        auth_mode: PUBLIC or SIGNED
        weight: Cost charged against the per-minute weight window
        order_action: Order rate class (NONE, PLACE, CANCEL)

    Example:
        >>> spec = RequestSpec(path="/order", method="POST",
        ...                    params={"symbol": "BTCUSDT", "side": "BUY"},
        ...                    auth_mode=AuthMode.SIGNED, order_action=OrderAction.PLACE)
        >>> spec.params
        (('symbol', 'BTCUSDT'), ('side', 'BUY'))
    """

    model_config = ConfigDict(frozen=True)

    path: str
    method: HTTPMethod = HTTPMethod.GET
    params: Tuple[Tuple[str, str], ...] = Field(default_factory=tuple)
    auth_mode: AuthMode = AuthMode.PUBLIC
    weight: int = Field(default=1, ge=1)
    order_action: OrderAction = OrderAction.NONE

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Ensure the path starts with a slash"""
        return v if v.startswith("/") else f"/{v}"

    @field_validator("params", mode="before")
    @classmethod
    def normalize_params(cls, v: Any) -> Tuple[Tuple[str, str], ...]:
        """Accept a mapping or pairs; drop None values; reject duplicate keys"""
        if v is None:
            return ()
        pairs = v.items() if isinstance(v, Mapping) else v
        normalized = []
        seen = set()
        for key, value in pairs:
            if value is None:
                continue
            if key in seen:
                raise ValueError(f"Duplicate parameter: {key}")
            seen.add(key)
            normalized.append((str(key), stringify_param(value)))
        return tuple(normalized)

    @property
    def params_dict(self) -> Dict[str, str]:
        """Parameters as an insertion-ordered dict."""
        return dict(self.params)

    @property
    def is_signed(self) -> bool:
        return self.auth_mode is AuthMode.SIGNED

    @property
    def cache_key(self) -> str:
        """Key identifying this request in the response cache."""
        return f"response:{self.method.value}:{self.path}?{build_query_string(self.params_dict)}"

    def window_costs(self) -> Dict[WindowKind, int]:
        """
        Cost this request charges to each rate-limit window.

        Every request consumes its weight from the minute window; order
        endpoints additionally consume one unit from the order windows.
        """
        costs = {WindowKind.PER_MINUTE_WEIGHT: self.weight}
        if self.order_action in (OrderAction.PLACE, OrderAction.CANCEL):
            costs[WindowKind.PER_SECOND_ORDERS] = 1
        if self.order_action is OrderAction.PLACE:
            costs[WindowKind.PER_DAY_ORDERS] = 1
        return costs


# ============================================
# SignedEnvelope
# ============================================

class SignedEnvelope(BaseModel):
    """
    A RequestSpec authenticated for exactly one send.

    Created immediately before each send attempt and discarded afterwards;
    a retry builds a new envelope with a fresh timestamp.

    Attributes:
        spec: The request being signed
        timestamp: Milliseconds since epoch at signing time
        recv_window: Receive-window in milliseconds
        signature: Lower-case hex HMAC-SHA256 over query_string
    """

    model_config = ConfigDict(frozen=True)

    spec: RequestSpec
    timestamp: int
    recv_window: int
    signature: str = Field(repr=False)

    @property
    def signing_params(self) -> Dict[str, str]:
        """Parameters covered by the signature, in wire order."""
        params = self.spec.params_dict
        params.pop("timestamp", None)
        params.pop("recvWindow", None)
        params["timestamp"] = str(self.timestamp)
        params["recvWindow"] = str(self.recv_window)
        return params

    @property
    def wire_params(self) -> Dict[str, str]:
        """Signed parameters followed by the signature."""
        params = self.signing_params
        params["signature"] = self.signature
        return params


# ============================================
# RateWindow
# ============================================

class RateWindow(BaseModel):
    """
    Snapshot of one rate-limit counter.

    Attributes:
        kind: Window kind
        current: Count consumed in the current window
        limit: Configured threshold
        boundary_ms: Wall-clock time (ms) at which the window resets
    """

    kind: WindowKind
    current: int
    limit: int
    boundary_ms: int

    @property
    def remaining(self) -> int:
        return max(self.limit - self.current, 0)

    @property
    def percentage(self) -> float:
        """Share of the limit already consumed, in percent."""
        return (self.current / self.limit) * 100 if self.limit else 0.0


# ============================================
# CacheEntry
# ============================================

class CacheEntry(BaseModel):
    """
    A cached response.

    Attributes:
        key: Cache key
        value: Decoded JSON payload
        expires_at: Monotonic time (seconds) after which the entry is stale
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    key: str
    value: Any = None
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


def default_window_limits(requests_per_minute: int, orders_per_second: int,
                          orders_per_day: int) -> Dict[WindowKind, int]:
    """Map the three configured thresholds to their window kinds."""
    return {
        WindowKind.PER_MINUTE_WEIGHT: requests_per_minute,
        WindowKind.PER_SECOND_ORDERS: orders_per_second,
        WindowKind.PER_DAY_ORDERS: orders_per_day,
    }
