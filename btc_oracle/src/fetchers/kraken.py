"""Kraken fetcher.

Endpoint: https://api.kraken.com/0/public/Ticker?pair=XBTUSD
Rate Limit: High (no key required)
"""

from typing import Any

from .base import BaseFetcher, MalformedResponseError, register_fetcher


@register_fetcher
class KrakenFetcher(BaseFetcher):
    """Fetcher for Kraken public API.

    Kraken uses XBT instead of BTC and answers with its own canonical pair
    key (XXBTZUSD), so the result is looked up by key first and falls back
    to the only entry in the result map.
    """

    name = "kraken"
    endpoint = "https://api.kraken.com/0/public/Ticker"
    DEFAULT_WEIGHT = 0.15

    PAIR = "XBTUSD"
    RESULT_KEY = "XXBTZUSD"

    def request_params(self) -> dict | None:
        return {"pair": self.PAIR}

    def parse(self, data: Any) -> float:
        errors = data.get("error")
        if errors:
            raise MalformedResponseError(f"[kraken] API error for {self.PAIR}: {errors}")

        result = data["result"]
        pair_data = result.get(self.RESULT_KEY)
        if pair_data is None:
            # Kraken may answer with a slightly different key
            pair_data = list(result.values())[0]

        # 'c' is the last trade closed array: [price, lot volume]
        return float(pair_data["c"][0])
