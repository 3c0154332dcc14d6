"""
BTC Price Oracle - Aggregation, Volatility and Submission Module

This module provides the BTC/USD oracle pipeline:
- SourceFetcher: Concurrent spot-price fetching from exchange APIs
- PriceAggregator: Weighted mean with IQR outlier rejection
- HistoricalStore: Daily price series with provider fallback
- VolatilityEngine: Annualized volatility over standard timeframes
- SubmissionGate: Decides when the price is published on-chain
- PriceOracle: Main orchestrator for the scheduled cycles
- fetchers / providers: Modular spot and history source implementations
"""

from .ChainPublisher import ChainPublisher, ChainPublishError, PublishResult
from .HistoricalStore import HistoricalStore, IngestionResult, ProviderExhaustedError
from .OracleConfig import OracleConfig
from .PriceAggregator import AggregationResult, PriceAggregator
from .PriceOracle import PriceOracle
from .PriceStore import PriceStore
from .SourceFetcher import SourceFetcher
from .SourceQuote import SourceQuote
from .SubmissionGate import (
    SubmissionDecision,
    SubmissionGate,
    SubmissionThresholds,
    evaluate_submission,
)
from .VolatilityEngine import (
    STANDARD_TIMEFRAMES,
    VolatilityEngine,
    VolatilityUnavailableError,
)

__all__ = [
    "AggregationResult",
    "ChainPublishError",
    "ChainPublisher",
    "HistoricalStore",
    "IngestionResult",
    "OracleConfig",
    "PriceAggregator",
    "PriceOracle",
    "PriceStore",
    "ProviderExhaustedError",
    "PublishResult",
    "STANDARD_TIMEFRAMES",
    "SourceFetcher",
    "SourceQuote",
    "SubmissionDecision",
    "SubmissionGate",
    "SubmissionThresholds",
    "VolatilityEngine",
    "VolatilityUnavailableError",
    "evaluate_submission",
]
