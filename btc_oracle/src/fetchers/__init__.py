"""
BTC/USD spot-price fetchers for multiple exchange sources.

This module provides a unified interface for fetching the current Bitcoin
price from various exchanges and aggregator APIs.

Usage:
    from btc_oracle.src.fetchers import get_fetcher, get_available_fetchers

    # Get list of available fetchers
    available = get_available_fetchers()
    # ['binance', 'bitfinex', 'bitstamp', 'coinbase', 'coingecko', 'gemini', 'huobi', 'kraken']

    # Create a fetcher instance
    fetcher = get_fetcher("coinbase")
    price = await fetcher.fetch()

    # Override the aggregation weight
    fetcher = get_fetcher("kraken", weight=0.3)
"""

# Import base classes and utilities
from .base import (
    FETCHER_REGISTRY,
    BaseFetcher,
    FetcherConfigError,
    FetcherError,
    FetcherHTTPError,
    HttpSource,
    MalformedResponseError,
    SourceUnavailableError,
    get_available_fetchers,
    get_fetcher,
    register_fetcher,
    validate_price,
)

# Import all fetcher implementations to trigger registration
from .binance import BinanceFetcher
from .bitfinex import BitfinexFetcher
from .bitstamp import BitstampFetcher
from .coinbase import CoinbaseFetcher
from .coingecko import CoinGeckoFetcher
from .gemini import GeminiFetcher
from .huobi import HuobiFetcher
from .kraken import KrakenFetcher

# Sources queried when none are configured, in the order they are logged.
DEFAULT_SOURCES = [
    "coingecko",
    "binance",
    "kraken",
    "coinbase",
    "bitstamp",
    "gemini",
    "huobi",
    "bitfinex",
]

__all__ = [
    # Base classes
    "BaseFetcher",
    "HttpSource",
    "FetcherError",
    "FetcherConfigError",
    "FetcherHTTPError",
    "MalformedResponseError",
    "SourceUnavailableError",
    # Registry functions
    "register_fetcher",
    "get_fetcher",
    "get_available_fetchers",
    "validate_price",
    "FETCHER_REGISTRY",
    "DEFAULT_SOURCES",
    # Fetcher implementations
    "BinanceFetcher",
    "BitfinexFetcher",
    "BitstampFetcher",
    "CoinbaseFetcher",
    "CoinGeckoFetcher",
    "GeminiFetcher",
    "HuobiFetcher",
    "KrakenFetcher",
]
