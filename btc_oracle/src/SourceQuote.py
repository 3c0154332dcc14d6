"""SourceQuote: One validated price reading from one exchange.

Quotes are ephemeral. They exist for the length of a single aggregation
cycle; what survives is the PriceFeedRecord written for each one.

.. code-block:: python

    >>> quote = SourceQuote("kraken", 95000.0, 0.15, fetched_at=1700000000000)
    >>> quote.weighted_price
    14250.0
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SourceQuote:
    """A price from a single source, with the weight it carries.

    :ivar source: Source name (e.g., "coinbase").
    :ivar price: Price in USD, always > 0.
    :ivar weight: Aggregation weight in [0, 1].
    :ivar fetched_at: Fetch time in epoch milliseconds.
    """

    source: str
    price: float
    weight: float
    fetched_at: int = 0

    def __post_init__(self) -> None:
        if self.price <= 0:
            raise ValueError(f"[{self.source}] price must be positive, got {self.price}")
        if not 0.0 <= self.weight <= 1.0:
            raise ValueError(
                f"[{self.source}] weight must be within [0, 1], got {self.weight}"
            )

    @property
    def weighted_price(self) -> float:
        """Price multiplied by weight."""
        return self.price * self.weight
