"""Gemini fetcher.

Endpoint: https://api.gemini.com/v1/pubticker/btcusd
Rate Limit: 120 requests/min (public)
"""

from typing import Any

from .base import BaseFetcher, register_fetcher


@register_fetcher
class GeminiFetcher(BaseFetcher):
    """Fetcher for Gemini public ticker."""

    name = "gemini"
    endpoint = "https://api.gemini.com/v1/pubticker/btcusd"
    DEFAULT_WEIGHT = 0.05

    def parse(self, data: Any) -> float:
        return float(data["last"])
