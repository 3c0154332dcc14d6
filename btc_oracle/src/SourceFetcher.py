"""SourceFetcher: Concurrent spot-price fetching across all configured sources.

Architecture:
    - Fires one fetch per source concurrently
    - Bounds every fetch with its own timeout
    - Excludes failed or timed-out sources for this cycle only (no retries)
    - Returns only after every attempt has resolved
    - Records one price-feed row per successful quote
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from .SourceQuote import SourceQuote

if TYPE_CHECKING:
    from .fetchers import BaseFetcher
    from .PriceStore import PriceStore

logger = logging.getLogger(__name__)


class SourceFetcher:
    """Fetches the BTC/USD price from every configured source.

    :ivar fetchers: Dict mapping source names to fetcher instances.
    :ivar fetch_timeout: Timeout for each fetch in seconds.
    :ivar store: Optional store that receives a price-feed row per quote.
    """

    def __init__(
        self,
        fetchers: dict[str, BaseFetcher],
        fetch_timeout: float = 10.0,
        store: PriceStore | None = None,
    ) -> None:
        """Initialize the source fetcher.

        :param fetchers: Dict mapping source names to fetcher instances.
        :param fetch_timeout: Timeout for fetch requests (default: 10.0).
        :param store: Store for price-feed rows (None to skip recording).
        """
        self.fetchers = fetchers
        self.fetch_timeout = fetch_timeout
        self.store = store

    async def fetch_all(self, now_ms: int | None = None) -> list[SourceQuote]:
        """Fetch every source once and return the validated quotes.

        :param now_ms: Timestamp stamped on the quotes (default: now).
        :returns: Quotes from the sources that succeeded, in source order.
        """
        if not self.fetchers:
            logger.warning("No sources configured")
            return []

        fetched_at = now_ms if now_ms is not None else int(time.time() * 1000)

        sources = list(self.fetchers)
        prices = await asyncio.gather(
            *(self._fetch_single(self.fetchers[source]) for source in sources)
        )

        quotes: list[SourceQuote] = []
        for source, price in zip(sources, prices, strict=True):
            if price is None:
                continue
            quote = SourceQuote(
                source=source,
                price=price,
                weight=self.fetchers[source].weight,
                fetched_at=fetched_at,
            )
            quotes.append(quote)
            if self.store is not None:
                self.store.append_price_feed(
                    quote.source, quote.price, quote.weight, quote.fetched_at
                )

        if not quotes:
            logger.warning(f"No valid quotes from any of {len(sources)} sources")
        else:
            logger.info(
                f"Fetched {len(quotes)}/{len(sources)} sources: "
                f"{', '.join(self._format_price(q) for q in quotes)}"
            )
        return quotes

    async def _fetch_single(self, fetcher: BaseFetcher) -> float | None:
        """Fetch one source with timeout.

        :param fetcher: Fetcher instance to use.
        :returns: Price or None on failure.
        """
        try:
            return await asyncio.wait_for(fetcher.fetch(), timeout=self.fetch_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[{fetcher.name}] Timeout fetching BTC/USD")
            return None
        except Exception as e:
            logger.warning(f"[{fetcher.name}] Error fetching BTC/USD: {e}")
            return None

    def _format_price(self, quote: SourceQuote) -> str:
        """Format a quote with API key indicator for logging.

        :returns: Formatted string like "coingecko[key]=$95000.00".
        """
        fetcher = self.fetchers.get(quote.source)
        api_tag = "[key]" if fetcher and fetcher.has_api_key else ""
        return f"{quote.source}{api_tag}=${quote.price:.2f}"
