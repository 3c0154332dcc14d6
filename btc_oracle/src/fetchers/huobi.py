"""Huobi (HTX) fetcher.

Endpoint: https://api.huobi.pro/market/detail/merged?symbol=btcusdt
Rate Limit: High (no key required)

Huobi only quotes BTC against USDT; the USDT price is used as-is and the
source carries a low weight accordingly.
"""

from typing import Any

from .base import BaseFetcher, MalformedResponseError, register_fetcher


@register_fetcher
class HuobiFetcher(BaseFetcher):
    """Fetcher for Huobi merged market detail."""

    name = "huobi"
    endpoint = "https://api.huobi.pro/market/detail/merged"
    DEFAULT_WEIGHT = 0.05

    def request_params(self) -> dict | None:
        return {"symbol": "btcusdt"}

    def parse(self, data: Any) -> float:
        if data.get("status") == "error":
            raise MalformedResponseError(f"[huobi] API error: {data.get('err-msg')}")
        return data["tick"]["close"]
