"""HistoricalStore: Daily BTC/USD series ingestion and range reads.

Ingestion walks an ordered list of providers and upserts the first non-empty
result on ``(source, timestamp)``, so re-ingesting a day replaces it rather
than duplicating it. Rows from different providers can cover the same day,
so daily reads bucket on ``day_index`` and keep one close per day, preferring
providers in the order they are tried. Reads are timestamp-bounded and never
fetch.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .fetchers.base import FetcherError
from .models import MS_PER_DAY
from .providers import DEFAULT_PROVIDERS

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .models import HistoricalPricePoint
    from .PriceStore import PriceStore
    from .providers import BaseHistoricalProvider

logger = logging.getLogger(__name__)

# 360 prior days plus today.
BULK_DAYS = 361

# Re-covers the last completed day so its close is refreshed.
INCREMENTAL_DAYS = 3


class ProviderExhaustedError(Exception):
    """Raised when every historical provider failed to return data."""

    def __init__(self, failures: dict[str, str]):
        self.failures = failures
        detail = "; ".join(f"{name}: {err}" for name, err in failures.items())
        super().__init__(f"All historical providers failed ({detail})")


@dataclass
class IngestionResult:
    """Outcome of one ingestion run.

    :ivar source: Provider whose data was stored.
    :ivar fetched: Candles returned by the provider.
    :ivar inserted: New rows written.
    :ivar updated: Existing rows replaced.
    """

    source: str
    fetched: int
    inserted: int
    updated: int


@dataclass
class PriceRange:
    """High/low over a window.

    :ivar high: Highest price seen.
    :ivar low: Lowest price seen.
    """

    high: float
    low: float

    @property
    def range(self) -> float:
        return self.high - self.low

    def to_dict(self) -> dict[str, float]:
        return {"high": self.high, "low": self.low, "range": self.range}


class HistoricalStore:
    """Keeps the daily price series used for volatility.

    :ivar store: Persistence collaborator.
    :ivar providers: Providers in the order they are tried.
    """

    def __init__(
        self,
        store: PriceStore,
        providers: list[BaseHistoricalProvider],
    ) -> None:
        """Initialize the historical store.

        :param store: Persistence collaborator.
        :param providers: Providers, primary first.
        """
        self.store = store
        self.providers = providers

    async def ingest_bulk(
        self, days: int = BULK_DAYS, now_ms: int | None = None
    ) -> IngestionResult:
        """Backfill or refresh the last ``days`` daily points.

        :raises ProviderExhaustedError: If no provider returned data.
        """
        return await self._ingest(days, now_ms, mode="bulk")

    async def ingest_incremental(self, now_ms: int | None = None) -> IngestionResult:
        """Refresh the most recent completed days.

        :raises ProviderExhaustedError: If no provider returned data.
        """
        return await self._ingest(INCREMENTAL_DAYS, now_ms, mode="incremental")

    async def _ingest(
        self, days: int, now_ms: int | None, mode: str
    ) -> IngestionResult:
        failures: dict[str, str] = {}
        for provider in self.providers:
            try:
                candles = await provider.fetch_daily(days, now_ms=now_ms)
            except FetcherError as e:
                logger.warning(f"[{provider.name}] Historical {mode} fetch failed: {e}")
                failures[provider.name] = str(e)
                continue
            if not candles:
                logger.warning(f"[{provider.name}] Historical {mode} fetch returned no data")
                failures[provider.name] = "no data"
                continue

            counts = self.store.upsert_historical(
                candle.to_point(provider.name) for candle in candles
            )
            result = IngestionResult(
                source=provider.name,
                fetched=len(candles),
                inserted=counts.inserted,
                updated=counts.updated,
            )
            logger.info(
                f"[{provider.name}] Historical {mode} ingestion: "
                f"fetched={result.fetched}, inserted={result.inserted}, "
                f"updated={result.updated}"
            )
            return result

        raise ProviderExhaustedError(failures)

    def has_data(self) -> bool:
        return self.store.has_historical()

    def get_daily_prices(self, start: int, end: int) -> list[HistoricalPricePoint]:
        """One daily point per day with ``start < timestamp <= end``, ascending."""
        return self._one_per_day(self.store.get_historical_range(start, end))

    def get_historical_price(self, target: int) -> float | None:
        """Close of the latest day with a point at or before ``target``."""
        point = self.store.get_historical_at_or_before(target)
        if point is None:
            return None
        day_start = point.day_index * MS_PER_DAY
        same_day = self.store.get_historical_range(day_start - 1, target)
        return self._one_per_day(same_day)[-1].price

    def _source_rank(self, source: str | None) -> int:
        order = [provider.name for provider in self.providers] + DEFAULT_PROVIDERS
        return order.index(source) if source in order else len(order)

    def _one_per_day(
        self, points: Iterable[HistoricalPricePoint]
    ) -> list[HistoricalPricePoint]:
        best: dict[int, HistoricalPricePoint] = {}
        for point in points:
            key = (self._source_rank(point.source), point.timestamp)
            current = best.get(point.day_index)
            if current is None or key < (
                self._source_rank(current.source),
                current.timestamp,
            ):
                best[point.day_index] = point
        return [best[day] for day in sorted(best)]

    def get_24h_range(self, now_ms: int | None = None) -> PriceRange | None:
        """High/low over the last 24 hours.

        Uses daily points (their high/low, falling back to the close) and, when
        there are none in the window, the raw price-feed rows.

        :returns: PriceRange, or None if there is no data in the window.
        """
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        start = now_ms - MS_PER_DAY

        highs: list[float] = []
        lows: list[float] = []
        for point in self.store.get_historical_range(start, now_ms):
            highs.append(point.high if point.high is not None else point.price)
            lows.append(point.low if point.low is not None else point.price)

        if not highs:
            feed = self.store.get_price_feed_range(start, now_ms)
            highs = lows = [record.price for record in feed]

        if not highs:
            return None
        return PriceRange(high=max(highs), low=min(lows))
