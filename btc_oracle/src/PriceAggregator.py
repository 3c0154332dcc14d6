"""PriceAggregator: Weighted-mean aggregation with IQR outlier rejection.

Algorithm:
    1. Remove outliers with the IQR filter (skipped below 4 quotes)
    2. Sum price * weight and weight over the remaining quotes
    3. Return None if no quotes remain or the total weight is not positive
    4. Otherwise return weighted_sum / total_weight

.. code-block:: python

    >>> aggregator = PriceAggregator()
    >>> result = aggregator.aggregate([
    ...     SourceQuote("coinbase", 100.0, 0.5),
    ...     SourceQuote("kraken", 102.0, 0.5),
    ... ])
    >>> result.success
    True
    >>> result.price
    101.0
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TypedDict

from .OutlierFilter import IQR_MULTIPLIER, filter_outliers
from .SourceQuote import SourceQuote


class AggregationError(TypedDict, total=False):
    """Error information when aggregation fails.

    :ivar error: Error type identifier.
    :ivar available: Number of quotes available after filtering.
    :ivar dropped: Dict of sources dropped as outliers.
    """

    error: str
    available: int
    dropped: dict[str, float]


class AggregationMetadata(TypedDict, total=False):
    """Metadata about a successful aggregation.

    :ivar sources: List of sources used in final calculation.
    :ivar dropped: Dict of sources dropped as outliers.
    :ivar count: Number of sources used.
    :ivar weighted_sum: Sum of price * weight over the sources used.
    :ivar total_weight: Sum of weights over the sources used.
    :ivar lower_bound: IQR lower fence, absent if filtering was skipped.
    :ivar upper_bound: IQR upper fence, absent if filtering was skipped.
    """

    sources: list[str]
    dropped: dict[str, float]
    count: int
    weighted_sum: float
    total_weight: float
    lower_bound: float
    upper_bound: float


@dataclass
class AggregationResult:
    """Result of price aggregation.

    :ivar price: Aggregated price, or None if aggregation failed.
    :ivar metadata: Additional information about the aggregation.
    """

    price: float | None
    metadata: AggregationMetadata | AggregationError

    @property
    def success(self) -> bool:
        """Check if aggregation was successful."""
        return self.price is not None

    @property
    def error(self) -> str | None:
        """Get error type if aggregation failed."""
        if self.price is None:
            return self.metadata.get("error")
        return None

    @property
    def source_count(self) -> int:
        """Number of quotes the price was computed from (0 on failure)."""
        if self.price is None:
            return 0
        return self.metadata.get("count", 0)


class PriceAggregator:
    """Combines quotes from several sources into one weighted price.

    :ivar iqr_multiplier: Fence multiplier passed to the outlier filter.

    .. code-block:: python

        >>> agg = PriceAggregator()
        >>> agg.aggregate([SourceQuote("a", 100.0, 0.2)]).price
        100.0
    """

    def __init__(self, iqr_multiplier: float = IQR_MULTIPLIER) -> None:
        """Initialize the aggregator.

        :param iqr_multiplier: IQR fence multiplier (default 1.5).
        :raises ValueError: If the multiplier is not positive.
        """
        if iqr_multiplier <= 0:
            raise ValueError("iqr_multiplier must be positive")
        self.iqr_multiplier = iqr_multiplier

    def aggregate(self, quotes: list[SourceQuote]) -> AggregationResult:
        """Aggregate quotes into a single weighted-average price.

        :param quotes: Validated quotes from this cycle.
        :returns: AggregationResult with price and metadata, or None price
            with error info.
        """
        if not quotes:
            return AggregationResult(
                price=None,
                metadata={"error": "no_quotes", "available": 0},
            )

        filtered = filter_outliers(quotes, multiplier=self.iqr_multiplier)
        dropped = {q.source: q.price for q in filtered.dropped}

        weighted_sum = sum(q.weighted_price for q in filtered.kept)
        total_weight = sum(q.weight for q in filtered.kept)

        if not filtered.kept:
            return AggregationResult(
                price=None,
                metadata={"error": "no_quotes", "available": 0, "dropped": dropped},
            )

        if total_weight <= 0:
            return AggregationResult(
                price=None,
                metadata={
                    "error": "zero_weight",
                    "available": len(filtered.kept),
                    "dropped": dropped,
                },
            )

        metadata: AggregationMetadata = {
            "sources": [q.source for q in filtered.kept],
            "dropped": dropped,
            "count": len(filtered.kept),
            "weighted_sum": weighted_sum,
            "total_weight": total_weight,
        }
        if not filtered.skipped:
            metadata["lower_bound"] = filtered.lower_bound
            metadata["upper_bound"] = filtered.upper_bound

        # A single quote aggregates to its own price exactly
        if len(filtered.kept) == 1:
            price = filtered.kept[0].price
        else:
            price = weighted_sum / total_weight

        return AggregationResult(price=price, metadata=metadata)
