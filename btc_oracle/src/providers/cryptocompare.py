"""CryptoCompare daily history provider (primary, full OHLCV).

Endpoint: https://min-api.cryptocompare.com/data/v2/histoday
Requires an API key (API_KEY_CRYPTOCOMPARE).
"""

from __future__ import annotations

import logging
import time

from ..fetchers.base import FetcherConfigError, MalformedResponseError
from .base import (
    BaseHistoricalProvider,
    HistoricalCandle,
    positive_or_none,
    register_provider,
)

logger = logging.getLogger(__name__)


@register_provider
class CryptoCompareProvider(BaseHistoricalProvider):
    """Daily OHLCV candles from CryptoCompare's histoday API.

    ``limit`` counts the candles *before* ``toTs``, so asking for N days
    means ``limit=N-1``.
    """

    name = "cryptocompare"
    endpoint = "https://min-api.cryptocompare.com/data/v2/histoday"

    async def fetch_daily(
        self, days: int, now_ms: int | None = None
    ) -> list[HistoricalCandle]:
        days = self.clamp_days(days)
        if not self.has_api_key:
            raise FetcherConfigError(f"[{self.name}] API key is required")

        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        params = {
            "fsym": "BTC",
            "tsym": "USD",
            "limit": days - 1,
            "toTs": now_ms // 1000,
            "api_key": self.api_key,
        }
        data = await self._get_json(self.endpoint, params=params)
        return self.parse(data)

    def parse(self, data) -> list[HistoricalCandle]:
        """Map a histoday body to candles, skipping rows without a close.

        :raises MalformedResponseError: On an error body or missing ``Data.Data``.
        """
        if not isinstance(data, dict):
            raise MalformedResponseError(f"[{self.name}] Unexpected body type")
        if data.get("Response") == "Error":
            raise MalformedResponseError(f"[{self.name}] {data.get('Message')}")
        try:
            rows = data["Data"]["Data"]
        except (KeyError, TypeError) as e:
            raise MalformedResponseError(f"[{self.name}] Missing Data.Data") from e
        if not isinstance(rows, list):
            raise MalformedResponseError(f"[{self.name}] Data.Data is not a list")

        candles: list[HistoricalCandle] = []
        for row in rows:
            try:
                timestamp = int(row["time"]) * 1000
            except (KeyError, TypeError, ValueError) as e:
                raise MalformedResponseError(f"[{self.name}] Bad row: {row!r}") from e
            close = positive_or_none(row.get("close"))
            if close is None:
                # Days before listing come back as all-zero rows
                logger.debug(f"[{self.name}] Skipping row without close at {timestamp}")
                continue
            candles.append(
                HistoricalCandle(
                    timestamp=timestamp,
                    close=close,
                    open=positive_or_none(row.get("open")),
                    high=positive_or_none(row.get("high")),
                    low=positive_or_none(row.get("low")),
                    volume=positive_or_none(row.get("volumefrom")),
                )
            )
        return sorted(candles, key=lambda c: c.timestamp)
