"""
Error Classifier

Maps a transport outcome to exactly one ClassifiedError.

Transport outcome:
    - an exception raised while sending (connection error, timeout), or
    - a TransportResponse that was not a usable success

Rules:
    1. Exceptions                        -> TRANSPORT, no upstream code
    2. 2xx with a body that is not JSON  -> TRANSPORT (malformed response)
    3. Non-2xx with {"code": int, "msg": str}
                                         -> kind from ERROR_CODE_TABLE,
                                            UNKNOWN_UPSTREAM for unmapped codes
    4. Non-2xx without a parseable body  -> UNKNOWN_UPSTREAM, HTTP status only

Binance Error Codes:
    https://developers.binance.com/docs/binance-spot-api-docs/errors
"""

import asyncio
import json
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple, Union

from core.errors import ClassifiedError, ErrorKind, TransportError, error_for_kind
from core.transport import TransportResponse


def _table(*groups: Tuple[ErrorKind, Tuple[int, ...]]) -> Mapping[int, ErrorKind]:
    table = {}
    for kind, codes in groups:
        for code in codes:
            table[code] = kind
    return MappingProxyType(table)


ERROR_CODE_TABLE: Mapping[int, ErrorKind] = _table(
    (ErrorKind.AUTH, (-1002, -1021, -1022, -2014, -2015)),
    (ErrorKind.RATE_LIMIT, (-1003, -1015)),
    (ErrorKind.INSUFFICIENT_BALANCE, (-2010, -1013)),
    (ErrorKind.INVALID_SYMBOL, (-1121,)),
    (ErrorKind.VALIDATION, (
        -1100, -1101, -1102, -1103, -1104, -1105, -1106,
        -1111, -1112, -1114, -1115, -1116, -1117, -1118, -1119, -1120,
        -1125, -1127, -1128, -1130,
    )),
)


TransportOutcome = Union[TransportResponse, BaseException]


def parse_error_body(body: str) -> Optional[Tuple[int, str, Any]]:
    """
    Extract (code, msg, payload) from an upstream error body.

    Returns None unless the body is a JSON object with an integer `code`.
    """
    try:
        payload = json.loads(body)
    except (TypeError, ValueError):
        return None

    if not isinstance(payload, dict):
        return None

    code = payload.get("code")
    if not isinstance(code, int) or isinstance(code, bool):
        return None

    message = payload.get("msg")
    return code, message if isinstance(message, str) else "", payload


def parse_retry_after(response: TransportResponse) -> Optional[float]:
    """Retry-After header in seconds, if present and numeric."""
    value = response.header("Retry-After")
    if value is None:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def classify(outcome: TransportOutcome) -> ClassifiedError:
    """
    Classify a failed transport outcome.

    Args:
        outcome: The exception raised by the transport, or the response received

    Returns:
        ClassifiedError subclass matching the failure kind

    Examples:
        >>> error = classify(TransportResponse(status=400, body='{"code": -2010, "msg": "Account has insufficient balance."}'))
        >>> error.kind, error.code
        (<ErrorKind.INSUFFICIENT_BALANCE: 'INSUFFICIENT_BALANCE'>, -2010)
    """
    if isinstance(outcome, ClassifiedError):
        return outcome

    if isinstance(outcome, BaseException):
        if isinstance(outcome, asyncio.TimeoutError):
            return TransportError("Request timed out")
        return TransportError(f"Transport failure: {type(outcome).__name__}: {outcome}")

    response = outcome

    if response.ok:
        return TransportError(
            f"Malformed response (HTTP {response.status})",
            status_code=response.status,
            payload=response.body,
        )

    parsed = parse_error_body(response.body)
    if parsed is None:
        return error_for_kind(
            ErrorKind.UNKNOWN_UPSTREAM,
            f"HTTP {response.status}",
            status_code=response.status,
            payload=response.body,
        )

    code, message, payload = parsed
    kind = ERROR_CODE_TABLE.get(code, ErrorKind.UNKNOWN_UPSTREAM)
    retry_after = parse_retry_after(response) if kind is ErrorKind.RATE_LIMIT else None

    return error_for_kind(
        kind,
        message or f"HTTP {response.status}",
        code=code,
        retry_after=retry_after,
        status_code=response.status,
        payload=payload,
    )
