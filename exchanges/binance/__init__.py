"""
Binance Connector

Binance-specific pieces of the request pipeline:

    exchanges/binance/
    ├── __init__.py          # This file
    ├── api_client.py        # BinanceAPIClient (execute_public / execute_signed)
    └── signer.py            # HMAC-SHA256 request signing
"""

from .api_client import BinanceAPIClient
from .signer import sign

__all__ = ["BinanceAPIClient", "sign"]
