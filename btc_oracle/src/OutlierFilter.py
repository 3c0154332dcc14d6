"""OutlierFilter: Interquartile-range rejection of anomalous quotes.

Algorithm:
    1. Skip filtering when fewer than MIN_SAMPLES quotes are available
    2. Sort quotes ascending by price
    3. Q1 = price at index n // 4, Q3 = price at index (3 * n) // 4
    4. Keep quotes inside [Q1 - 1.5 * IQR, Q3 + 1.5 * IQR] (inclusive)

Whatever survives is aggregated, however few quotes that is. With n >= 4
the quotes sitting at the Q1 and Q3 indexes are always inside the bounds,
so at least two quotes survive.

.. code-block:: python

    >>> quotes = [SourceQuote(s, p, 0.1) for s, p in
    ...           [("a", 100), ("b", 101), ("c", 99), ("d", 102), ("e", 1000)]]
    >>> result = filter_outliers(quotes)
    >>> [q.source for q in result.dropped]
    ['e']
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .SourceQuote import SourceQuote

logger = logging.getLogger(__name__)

# Quartile estimation is meaningless on smaller samples.
MIN_SAMPLES = 4

IQR_MULTIPLIER = 1.5


@dataclass
class OutlierFilterResult:
    """Outcome of IQR filtering.

    :ivar kept: Quotes inside the bounds, sorted ascending by price.
    :ivar dropped: Quotes outside the bounds.
    :ivar skipped: True if the sample was too small to filter.
    :ivar q1: First quartile price (None when skipped).
    :ivar q3: Third quartile price (None when skipped).
    :ivar lower_bound: Lowest accepted price (None when skipped).
    :ivar upper_bound: Highest accepted price (None when skipped).
    """

    kept: list[SourceQuote]
    dropped: list[SourceQuote] = field(default_factory=list)
    skipped: bool = False
    q1: float | None = None
    q3: float | None = None
    lower_bound: float | None = None
    upper_bound: float | None = None

    @property
    def removed_count(self) -> int:
        """Number of quotes rejected as outliers."""
        return len(self.dropped)


def filter_outliers(
    quotes: list[SourceQuote],
    *,
    multiplier: float = IQR_MULTIPLIER,
) -> OutlierFilterResult:
    """Remove statistically anomalous quotes using the IQR method.

    :param quotes: Validated quotes from this cycle.
    :param multiplier: IQR multiplier for the fences (default 1.5).
    :returns: OutlierFilterResult with kept and dropped quotes.
    """
    n = len(quotes)
    if n < MIN_SAMPLES:
        logger.debug(
            f"Skipping IQR outlier detection: not enough quotes ({n} < {MIN_SAMPLES})"
        )
        return OutlierFilterResult(kept=list(quotes), skipped=True)

    ordered = sorted(quotes, key=lambda q: q.price)
    q1 = ordered[n // 4].price
    q3 = ordered[(3 * n) // 4].price
    iqr = q3 - q1
    lower = q1 - multiplier * iqr
    upper = q3 + multiplier * iqr

    kept = [q for q in ordered if lower <= q.price <= upper]
    dropped = [q for q in ordered if not lower <= q.price <= upper]

    logger.debug(
        f"IQR outlier detection: count={n}, Q1={q1}, Q3={q3}, IQR={iqr}, "
        f"bounds=[{lower}, {upper}]"
    )
    if dropped:
        logger.warning(
            f"Removed {len(dropped)} outlier(s) based on IQR: "
            f"{', '.join(f'{q.source}=${q.price:.2f}' for q in dropped)}"
        )

    return OutlierFilterResult(
        kept=kept,
        dropped=dropped,
        q1=q1,
        q3=q3,
        lower_bound=lower,
        upper_bound=upper,
    )
