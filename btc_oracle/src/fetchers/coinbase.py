"""Coinbase fetcher.

Endpoint: https://api.coinbase.com/v2/prices/BTC-USD/spot
Rate Limit: High (no key required)
"""

from typing import Any

from .base import BaseFetcher, register_fetcher


@register_fetcher
class CoinbaseFetcher(BaseFetcher):
    """Fetcher for the Coinbase spot price API.

    No API key required for the public spot endpoint.
    """

    name = "coinbase"
    endpoint = "https://api.coinbase.com/v2/prices/BTC-USD/spot"
    DEFAULT_WEIGHT = 0.15

    def parse(self, data: Any) -> float:
        # {"data": {"base": "BTC", "currency": "USD", "amount": "95000.12"}}
        return float(data["data"]["amount"])
