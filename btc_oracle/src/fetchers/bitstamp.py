"""Bitstamp fetcher.

Endpoint: https://www.bitstamp.net/api/v2/ticker/btcusd/
Rate Limit: High (no key required)
"""

from typing import Any

from .base import BaseFetcher, register_fetcher


@register_fetcher
class BitstampFetcher(BaseFetcher):
    """Fetcher for Bitstamp public API."""

    name = "bitstamp"
    endpoint = "https://www.bitstamp.net/api/v2/ticker/btcusd/"
    DEFAULT_WEIGHT = 0.1

    def parse(self, data: Any) -> float:
        return float(data["last"])
