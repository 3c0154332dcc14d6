"""Binance.US fetcher.

Endpoint: https://api.binance.us/api/v3/ticker/24hr?symbol=BTCUSD
Rate Limit: High (no key required for public endpoints)

Binance.US is used because it lists a native BTC/USD pair, so no USDT
conversion is needed.
"""

from typing import Any

from .base import BaseFetcher, register_fetcher


@register_fetcher
class BinanceFetcher(BaseFetcher):
    """Fetcher for the Binance.US 24h ticker."""

    name = "binance"
    endpoint = "https://api.binance.us/api/v3/ticker/24hr"
    DEFAULT_WEIGHT = 0.15

    def request_params(self) -> dict | None:
        return {"symbol": "BTCUSD"}

    def parse(self, data: Any) -> float:
        return float(data["lastPrice"])
