"""Base interface for daily historical-price providers.

Providers share the HTTP plumbing of the spot fetchers and are tried in order
by HistoricalStore until one succeeds.

.. code-block:: python

    @register_provider
    class MyProvider(BaseHistoricalProvider):
        name = "myprovider"

        async def fetch_daily(self, days, now_ms=None):
            data = await self._get_json("https://api.example.com/daily")
            return [HistoricalCandle(ts, close) for ts, close in data]
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import ClassVar

from ..fetchers.base import HttpSource


@dataclass(frozen=True)
class HistoricalCandle:
    """One daily candle as returned by a provider.

    :ivar timestamp: Candle time in epoch milliseconds.
    :ivar close: Closing price (stored as the point's price).
    :ivar open: Opening price, if the provider has it.
    :ivar high: Daily high, if the provider has it.
    :ivar low: Daily low, if the provider has it.
    :ivar volume: Traded volume in BTC, if the provider has it.
    """

    timestamp: int
    close: float
    open: float | None = None
    high: float | None = None
    low: float | None = None
    volume: float | None = None

    def to_point(self, source: str) -> dict:
        """Row values for the historical table."""
        return {
            "source": source,
            "timestamp": self.timestamp,
            "price": self.close,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "volume": self.volume,
        }


class BaseHistoricalProvider(HttpSource, ABC):
    """Abstract base class for daily BTC/USD history providers.

    :cvar name: Source label stored on every point from this provider.
    :cvar MAX_DAYS: Largest window the provider serves (None for no cap).
    """

    name: ClassVar[str] = ""
    MAX_DAYS: ClassVar[int | None] = None

    def clamp_days(self, days: int) -> int:
        if days < 1:
            raise ValueError(f"[{self.name}] days must be at least 1, got {days}")
        if self.MAX_DAYS is not None:
            return min(days, self.MAX_DAYS)
        return days

    @abstractmethod
    async def fetch_daily(
        self, days: int, now_ms: int | None = None
    ) -> list[HistoricalCandle]:
        """Fetch the most recent ``days`` daily candles up to ``now_ms``.

        :param days: Number of daily points wanted.
        :param now_ms: End of the window (default: now).
        :returns: Candles in ascending timestamp order.
        :raises SourceUnavailableError: On network, timeout or non-2xx errors.
        :raises MalformedResponseError: On unexpected response shape.
        :raises FetcherConfigError: If a required API key is missing.
        """
        pass


def positive_or_none(value) -> float | None:
    """Optional OHLCV field: a finite positive number, else None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return number


# Registry of available providers (populated by subclass imports)
PROVIDER_REGISTRY: dict[str, type[BaseHistoricalProvider]] = {}


def register_provider(
    cls: type[BaseHistoricalProvider],
) -> type[BaseHistoricalProvider]:
    """Decorator to register a provider class in the global registry.

    :raises ValueError: If provider has no name defined.
    """
    if not cls.name:
        raise ValueError(f"Provider {cls.__name__} must define a 'name' class variable")
    PROVIDER_REGISTRY[cls.name] = cls
    return cls


def get_provider(
    name: str, api_key: str | None = None, timeout: float | None = None
) -> BaseHistoricalProvider:
    """Get a provider instance by name.

    :raises ValueError: If provider name is unknown.
    """
    if name not in PROVIDER_REGISTRY:
        available = ", ".join(sorted(PROVIDER_REGISTRY.keys()))
        raise ValueError(f"Unknown provider '{name}'. Available: {available}")
    return PROVIDER_REGISTRY[name](api_key=api_key, timeout=timeout)
