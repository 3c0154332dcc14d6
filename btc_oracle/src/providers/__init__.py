"""
Daily BTC/USD history providers.

Providers are tried in order by HistoricalStore; the first to return data
wins.

Usage:
    from btc_oracle.src.providers import get_provider

    provider = get_provider("cryptocompare", api_key="...")
    candles = await provider.fetch_daily(361)
"""

from .base import (
    PROVIDER_REGISTRY,
    BaseHistoricalProvider,
    HistoricalCandle,
    get_provider,
    register_provider,
)
from .coingecko import CoinGeckoHistoricalProvider
from .cryptocompare import CryptoCompareProvider

# Primary first, fallback after.
DEFAULT_PROVIDERS = ["cryptocompare", "coingecko_historical"]

__all__ = [
    "BaseHistoricalProvider",
    "HistoricalCandle",
    "PROVIDER_REGISTRY",
    "DEFAULT_PROVIDERS",
    "register_provider",
    "get_provider",
    "CoinGeckoHistoricalProvider",
    "CryptoCompareProvider",
]
