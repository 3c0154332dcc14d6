"""Unit tests for SourceFetcher."""

import asyncio

from btc_oracle.src.fetchers import (
    BaseFetcher,
    MalformedResponseError,
    SourceUnavailableError,
)
from btc_oracle.src.PriceStore import PriceStore
from btc_oracle.src.SourceFetcher import SourceFetcher

NOW = 1_700_000_000_000


class StubFetcher(BaseFetcher):
    """Fetcher returning a canned price, raising, or hanging."""

    endpoint = "https://example.invalid/ticker"

    def __init__(self, name: str, result, weight: float = 0.1, delay: float = 0.0):
        super().__init__(weight=weight)
        self.name = name
        self.result = result
        self.delay = delay
        self.calls = 0

    def parse(self, data) -> float:
        return float(data)

    async def fetch(self) -> float:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class TestSourceFetcher:
    """Test concurrent fetching and failure exclusion."""

    def test_all_succeed(self) -> None:
        """Every successful source yields a quote with its weight."""
        fetchers = {
            "a": StubFetcher("a", 100.0, weight=0.2),
            "b": StubFetcher("b", 101.0, weight=0.15),
        }
        quotes = asyncio.run(SourceFetcher(fetchers).fetch_all(now_ms=NOW))

        assert [(q.source, q.price, q.weight) for q in quotes] == [
            ("a", 100.0, 0.2),
            ("b", 101.0, 0.15),
        ]
        assert all(q.fetched_at == NOW for q in quotes)

    def test_failures_excluded(self) -> None:
        """Failed sources are dropped, the rest are kept."""
        fetchers = {
            "ok": StubFetcher("ok", 100.0),
            "down": StubFetcher("down", SourceUnavailableError("503")),
            "garbled": StubFetcher("garbled", MalformedResponseError("bad body")),
            "broken": StubFetcher("broken", RuntimeError("bug")),
        }
        quotes = asyncio.run(SourceFetcher(fetchers).fetch_all(now_ms=NOW))

        assert [q.source for q in quotes] == ["ok"]
        assert all(f.calls == 1 for f in fetchers.values())

    def test_timeout_excluded(self) -> None:
        """A hung source times out without holding up the others."""
        fetchers = {
            "fast": StubFetcher("fast", 100.0),
            "slow": StubFetcher("slow", 101.0, delay=5.0),
        }
        quotes = asyncio.run(
            SourceFetcher(fetchers, fetch_timeout=0.05).fetch_all(now_ms=NOW)
        )

        assert [q.source for q in quotes] == ["fast"]

    def test_zero_successes(self, caplog) -> None:
        """No successes returns an empty list with a warning."""
        fetchers = {"down": StubFetcher("down", SourceUnavailableError("503"))}
        quotes = asyncio.run(SourceFetcher(fetchers).fetch_all(now_ms=NOW))

        assert quotes == []
        assert "No valid quotes" in caplog.text

    def test_no_fetchers(self) -> None:
        """An empty source set fetches nothing."""
        assert asyncio.run(SourceFetcher({}).fetch_all()) == []

    def test_records_price_feed(self) -> None:
        """Each success appends one price-feed row; failures append none."""
        store = PriceStore("sqlite://")
        fetchers = {
            "a": StubFetcher("a", 100.0, weight=0.2),
            "down": StubFetcher("down", SourceUnavailableError("503")),
        }
        asyncio.run(SourceFetcher(fetchers, store=store).fetch_all(now_ms=NOW))

        rows = store.get_price_feed_range(NOW, NOW)
        assert [(r.source, r.price, r.weight, r.timestamp) for r in rows] == [
            ("a", 100.0, 0.2, NOW)
        ]
