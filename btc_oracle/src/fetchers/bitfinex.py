"""Bitfinex fetcher.

Endpoint: https://api-pub.bitfinex.com/v2/ticker/tBTCUSD
Rate Limit: 90 requests/min (public)
"""

from typing import Any

from .base import BaseFetcher, register_fetcher


@register_fetcher
class BitfinexFetcher(BaseFetcher):
    """Fetcher for Bitfinex v2 ticker.

    The v2 ticker is a flat array:
    [BID, BID_SIZE, ASK, ASK_SIZE, DAILY_CHANGE, DAILY_CHANGE_RELATIVE,
     LAST_PRICE, VOLUME, HIGH, LOW]
    """

    name = "bitfinex"
    endpoint = "https://api-pub.bitfinex.com/v2/ticker/tBTCUSD"
    DEFAULT_WEIGHT = 0.1

    LAST_PRICE_INDEX = 6

    def parse(self, data: Any) -> float:
        return float(data[self.LAST_PRICE_INDEX])
