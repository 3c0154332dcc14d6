"""VolatilityEngine: Annualized historical volatility over standard timeframes.

Algorithm (per timeframe of T days, window ``(end - T days, end]``):
    1. Require at least 2 daily points
    2. Log returns ln(P[i] / P[i-1]), skipping pairs with a non-positive price
    3. Require at least 1 return
    4. Population standard deviation (divide by N) of the returns
    5. Annualize: std * sqrt(365)

A single return therefore yields 0 regardless of its size.

.. code-block:: python

    >>> engine = VolatilityEngine(store, historical)
    >>> engine.calculate_and_store_all()
    5
    >>> engine.get_for_duration(45 * 86400)   # nearest timeframe is 30
    0.52
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .models import MS_PER_DAY

if TYPE_CHECKING:
    from .HistoricalStore import HistoricalStore
    from .PriceStore import PriceStore

logger = logging.getLogger(__name__)

STANDARD_TIMEFRAMES: tuple[int, ...] = (30, 60, 90, 180, 360)

TRADING_DAYS_PER_YEAR = 365

CALCULATION_METHOD = "standard"


class VolatilityUnavailableError(Exception):
    """Raised when a caller requires volatility and none is stored."""

    pass


@dataclass
class VolatilityResult:
    """Volatility computed for one timeframe.

    :ivar timeframe: Window length in days.
    :ivar volatility: Annualized volatility (0.5 means 50%).
    :ivar data_points: Price points used.
    :ivar start_timestamp: Timestamp of the first point used.
    :ivar end_timestamp: Timestamp of the last point used.
    """

    timeframe: int
    volatility: float
    data_points: int
    start_timestamp: int
    end_timestamp: int

    @property
    def period(self) -> int:
        """Window length in milliseconds."""
        return self.timeframe * MS_PER_DAY


def annualized_volatility(prices: list[float]) -> float | None:
    """Annualized population std dev of daily log returns.

    :param prices: Prices in ascending time order.
    :returns: Volatility, or None with fewer than 2 prices or no valid return.
    """
    if len(prices) < 2:
        return None
    returns = [
        math.log(curr / prev)
        for prev, curr in zip(prices, prices[1:])
        if prev > 0 and curr > 0
    ]
    if not returns:
        return None
    mean = sum(returns) / len(returns)
    variance = sum((r - mean) ** 2 for r in returns) / len(returns)
    return math.sqrt(variance) * math.sqrt(TRADING_DAYS_PER_YEAR)


def nearest_timeframe(
    days: float, timeframes: tuple[int, ...] = STANDARD_TIMEFRAMES
) -> int:
    """Timeframe closest to ``days``; ties go to the first candidate."""
    return min(timeframes, key=lambda tf: abs(days - tf))


def timeframes_by_distance(
    days: float, timeframes: tuple[int, ...] = STANDARD_TIMEFRAMES
) -> list[int]:
    """Timeframes ordered by distance from ``days`` (stable on ties)."""
    return sorted(timeframes, key=lambda tf: abs(days - tf))


class VolatilityEngine:
    """Computes, stores and looks up volatility.

    :ivar store: Persistence collaborator.
    :ivar historical: Source of the daily price series.
    :ivar timeframes: Timeframes (days) recomputed on each run.
    """

    def __init__(
        self,
        store: PriceStore,
        historical: HistoricalStore,
        timeframes: tuple[int, ...] = STANDARD_TIMEFRAMES,
    ) -> None:
        self.store = store
        self.historical = historical
        self.timeframes = timeframes

    def calculate_for_timeframe(
        self, days: int, end_ms: int | None = None
    ) -> VolatilityResult | None:
        """Compute volatility over the ``days`` ending at ``end_ms``.

        :returns: VolatilityResult, or None if there is not enough data.
        """
        end_ms = end_ms if end_ms is not None else int(time.time() * 1000)
        points = self.historical.get_daily_prices(end_ms - days * MS_PER_DAY, end_ms)

        volatility = annualized_volatility([p.price for p in points])
        if volatility is None:
            logger.warning(
                f"Insufficient data for {days}-day volatility "
                f"({len(points)} daily points)"
            )
            return None

        return VolatilityResult(
            timeframe=days,
            volatility=volatility,
            data_points=len(points),
            start_timestamp=points[0].timestamp,
            end_timestamp=points[-1].timestamp,
        )

    def calculate_and_store_all(self, now_ms: int | None = None) -> int:
        """Recompute and store every timeframe independently.

        :returns: Number of timeframes stored.
        """
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        stored = 0
        for days in self.timeframes:
            try:
                result = self.calculate_for_timeframe(days, end_ms=now_ms)
                if result is None:
                    continue
                self.store.append_volatility(
                    period=result.period,
                    volatility=result.volatility,
                    timestamp=now_ms,
                    timeframe=result.timeframe,
                    calculation_method=CALCULATION_METHOD,
                    data_points=result.data_points,
                    start_timestamp=result.start_timestamp,
                    end_timestamp=result.end_timestamp,
                )
                stored += 1
                logger.info(
                    f"{days}-day volatility: {result.volatility:.4f} "
                    f"({result.data_points} points)"
                )
            except Exception:
                logger.exception(f"Failed to compute {days}-day volatility")

        logger.info(f"Stored volatility for {stored}/{len(self.timeframes)} timeframes")
        return stored

    def get_latest(self, timeframe: int) -> float | None:
        record = self.store.get_latest_volatility(timeframe)
        return record.volatility if record is not None else None

    def nearest_timeframe(self, days: float) -> int:
        return nearest_timeframe(days, self.timeframes)

    def get_for_duration(self, duration_seconds: float) -> float | None:
        """Latest volatility for the timeframe nearest a duration.

        Falls back to the other timeframes in increasing distance.

        :param duration_seconds: Target duration in seconds.
        :returns: Volatility, or None if no timeframe has data.
        """
        days = round(duration_seconds / 86400)
        for timeframe in timeframes_by_distance(days, self.timeframes):
            volatility = self.get_latest(timeframe)
            if volatility is not None:
                if timeframe != self.nearest_timeframe(days):
                    logger.debug(
                        f"No volatility for nearest timeframe to {days} days, "
                        f"using {timeframe}-day"
                    )
                return volatility
        logger.warning(f"No volatility data for a {days}-day duration")
        return None

    def require_for_duration(self, duration_seconds: float) -> float:
        """Like get_for_duration, for callers that cannot proceed without it.

        :raises VolatilityUnavailableError: If no timeframe has data.
        """
        volatility = self.get_for_duration(duration_seconds)
        if volatility is None:
            raise VolatilityUnavailableError(
                f"No volatility available for a {duration_seconds}s duration"
            )
        return volatility
