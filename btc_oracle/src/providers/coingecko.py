"""CoinGecko daily history provider (fallback, close only).

Endpoint: https://api.coingecko.com/api/v3/coins/bitcoin/market_chart
The free tier serves at most 365 days of daily data. With interval=daily the
rows sit on UTC midnights except the last, which is the live price.
"""

from __future__ import annotations

from ..fetchers.base import MalformedResponseError
from ..models import MS_PER_DAY
from .base import (
    BaseHistoricalProvider,
    HistoricalCandle,
    positive_or_none,
    register_provider,
)


@register_provider
class CoinGeckoHistoricalProvider(BaseHistoricalProvider):
    """Daily closes from CoinGecko's market_chart API."""

    name = "coingecko_historical"
    endpoint = "https://api.coingecko.com/api/v3/coins/bitcoin/market_chart"
    MAX_DAYS = 365

    async def fetch_daily(
        self, days: int, now_ms: int | None = None
    ) -> list[HistoricalCandle]:
        # market_chart always ends at the present; now_ms only bounds the result
        params = {
            "vs_currency": "usd",
            "days": self.clamp_days(days),
            "interval": "daily",
        }
        headers = {"x-cg-demo-api-key": self.api_key} if self.has_api_key else None
        data = await self._get_json(self.endpoint, params=params, headers=headers)
        candles = self.parse(data)
        if now_ms is not None:
            candles = [c for c in candles if c.timestamp <= now_ms]
        return candles

    def parse(self, data) -> list[HistoricalCandle]:
        """Map ``{"prices": [[ts_ms, price], ...]}`` to candles on day boundaries.

        :raises MalformedResponseError: If ``prices`` is missing or malformed.
        """
        try:
            rows = data["prices"]
        except (KeyError, TypeError) as e:
            raise MalformedResponseError(f"[{self.name}] Missing prices") from e
        if not isinstance(rows, list):
            raise MalformedResponseError(f"[{self.name}] prices is not a list")

        candles: dict[int, HistoricalCandle] = {}
        for row in rows:
            try:
                timestamp, raw_price = int(row[0]), row[1]
            except (IndexError, TypeError, ValueError) as e:
                raise MalformedResponseError(f"[{self.name}] Bad row: {row!r}") from e
            # intraday rows are the live price, not a daily close
            if timestamp % MS_PER_DAY:
                continue
            close = positive_or_none(raw_price)
            if close is None:
                continue
            # later rows win on duplicate times
            candles[timestamp] = HistoricalCandle(timestamp=timestamp, close=close)
        return [candles[ts] for ts in sorted(candles)]
