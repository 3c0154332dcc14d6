"""CoinGecko fetcher.

Endpoint: https://api.coingecko.com/api/v3/simple/price?ids=bitcoin&vs_currencies=usd
Rate Limit: 30 calls/min (free), higher with API key
"""

from typing import Any

from .base import BaseFetcher, register_fetcher


@register_fetcher
class CoinGeckoFetcher(BaseFetcher):
    """Fetcher for CoinGecko's simple price API.

    API tiers:
        - Free: api.coingecko.com (no key, 30 calls/min)
        - Demo: api.coingecko.com + x-cg-demo-api-key header
        - Pro: pro-api.coingecko.com + x-cg-pro-api-key header

    To use a demo key, prefix with "demo:": API_KEY_COINGECKO=demo:CG-xxxxx
    Pro keys need no prefix: API_KEY_COINGECKO=xxxxx
    """

    name = "coingecko"
    endpoint = "https://api.coingecko.com/api/v3/simple/price"
    PRO_ENDPOINT = "https://pro-api.coingecko.com/api/v3/simple/price"
    DEFAULT_WEIGHT = 0.2

    def __init__(
        self,
        api_key: str | None = None,
        timeout: float | None = None,
        weight: float | None = None,
    ):
        """Initialize with optional demo: prefix handling."""
        self._is_demo = False
        if api_key and api_key.lower().startswith("demo:"):
            self._is_demo = True
            api_key = api_key[5:]  # Strip "demo:" prefix
        super().__init__(api_key=api_key, timeout=timeout, weight=weight)

    def request_url(self) -> str:
        # Demo keys use the free URL, pro keys use the pro URL
        if self.has_api_key and not self._is_demo:
            return self.PRO_ENDPOINT
        return self.endpoint

    def request_params(self) -> dict | None:
        return {"ids": "bitcoin", "vs_currencies": "usd"}

    def request_headers(self) -> dict | None:
        if not self.has_api_key:
            return None
        header_name = "x-cg-demo-api-key" if self._is_demo else "x-cg-pro-api-key"
        return {header_name: self.api_key}

    def parse(self, data: Any) -> float:
        # {"bitcoin": {"usd": 95000.0}}
        return data["bitcoin"]["usd"]
