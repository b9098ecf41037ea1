"""
HMAC-SHA256 request signing for the Binance REST API.

Signed endpoints (SIGNED / USER_DATA / TRADE) require a `signature` parameter:
the lower-case hex HMAC-SHA256, keyed by the API secret, of the query string
exactly as it is sent.

Canonical query string:
    - parameters in the order supplied by the caller (NOT sorted)
    - `timestamp` and `recvWindow` are the last two entries
    - values form-encoded (urllib.parse.urlencode)

The signer is pure: no clock, no I/O, no logging. The secret and the
signature never leave the single request they authenticate.
"""

import hashlib
import hmac
from typing import Mapping, Union

from core.schemas import build_query_string


def sign(params: Mapping[str, str], secret: Union[bytes, str]) -> str:
    """
    Compute the request signature.

    Args:
        params: Ordered parameters, timestamp and recvWindow included
        secret: API secret (str is UTF-8 encoded)

    Returns:
        Lower-case hex HMAC-SHA256 of the canonical query string

    Example:
        >>> sign({"symbol": "BTCUSDT", "timestamp": "1000"}, b"S")  # doctest: +SKIP
        '...'
    """
    if isinstance(secret, str):
        secret = secret.encode("utf-8")
    return hmac.new(
        secret,
        build_query_string(params).encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
