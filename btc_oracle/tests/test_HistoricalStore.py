"""Unit tests for HistoricalStore and the history providers."""

import asyncio

import httpx
import pytest

from btc_oracle.src.fetchers import (
    FetcherConfigError,
    HttpSource,
    MalformedResponseError,
    SourceUnavailableError,
)
from btc_oracle.src.HistoricalStore import (
    BULK_DAYS,
    HistoricalStore,
    ProviderExhaustedError,
)
from btc_oracle.src.models import MS_PER_DAY
from btc_oracle.src.PriceStore import PriceStore
from btc_oracle.src.providers import (
    BaseHistoricalProvider,
    CoinGeckoHistoricalProvider,
    CryptoCompareProvider,
    HistoricalCandle,
)

DAY0 = 19_000 * MS_PER_DAY
NOW = DAY0 + 10 * MS_PER_DAY


class StubProvider(BaseHistoricalProvider):
    """Provider returning canned candles or raising."""

    def __init__(self, name: str, result):
        super().__init__()
        self.name = name
        self.result = result
        self.requested: list[int] = []

    async def fetch_daily(self, days, now_ms=None):
        self.requested.append(days)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def candles(closes: list[float], start: int = DAY0) -> list[HistoricalCandle]:
    return [
        HistoricalCandle(timestamp=start + i * MS_PER_DAY, close=close)
        for i, close in enumerate(closes)
    ]


def run_provider(provider: BaseHistoricalProvider, handler, days: int, now_ms: int | None = None):
    async def _run():
        HttpSource.set_shared_client(
            httpx.AsyncClient(transport=httpx.MockTransport(handler))
        )
        try:
            return await provider.fetch_daily(days, now_ms=now_ms)
        finally:
            await HttpSource.close_shared_client()

    return asyncio.run(_run())


class TestIngestion:
    """Test provider fallback and upserts."""

    def test_primary_success(self) -> None:
        """The primary's data is stored and the fallback is never asked."""
        store = PriceStore("sqlite://")
        primary = StubProvider("cryptocompare", candles([100.0, 101.0, 102.0]))
        fallback = StubProvider("coingecko_historical", candles([1.0]))
        historical = HistoricalStore(store, [primary, fallback])

        result = asyncio.run(historical.ingest_bulk(now_ms=NOW))

        assert (result.source, result.fetched, result.inserted, result.updated) == (
            "cryptocompare", 3, 3, 0,
        )
        assert primary.requested == [BULK_DAYS]
        assert fallback.requested == []

    def test_fallback_on_failure(self) -> None:
        """A failing primary falls through to the next provider."""
        store = PriceStore("sqlite://")
        primary = StubProvider("cryptocompare", SourceUnavailableError("timeout"))
        fallback = StubProvider("coingecko_historical", candles([100.0, 101.0]))
        historical = HistoricalStore(store, [primary, fallback])

        result = asyncio.run(historical.ingest_bulk(now_ms=NOW))

        assert result.source == "coingecko_historical"
        rows = store.get_historical_range(0, NOW)
        assert {r.source for r in rows} == {"coingecko_historical"}

    def test_fallback_on_empty(self) -> None:
        """An empty result counts as a failure."""
        store = PriceStore("sqlite://")
        historical = HistoricalStore(
            store,
            [
                StubProvider("cryptocompare", []),
                StubProvider("coingecko_historical", candles([100.0])),
            ],
        )
        assert asyncio.run(historical.ingest_incremental(now_ms=NOW)).source == (
            "coingecko_historical"
        )

    def test_all_fail_writes_nothing(self) -> None:
        """Exhausting every provider raises and stores nothing."""
        store = PriceStore("sqlite://")
        historical = HistoricalStore(
            store,
            [
                StubProvider("cryptocompare", FetcherConfigError("API key is required")),
                StubProvider("coingecko_historical", MalformedResponseError("no prices")),
            ],
        )

        with pytest.raises(ProviderExhaustedError) as exc_info:
            asyncio.run(historical.ingest_bulk(now_ms=NOW))
        assert set(exc_info.value.failures) == {"cryptocompare", "coingecko_historical"}
        assert not historical.has_data()

    def test_incremental_refreshes_last_days(self) -> None:
        """Incremental asks for three days and replaces existing closes."""
        store = PriceStore("sqlite://")
        provider = StubProvider("cryptocompare", candles([100.0, 101.0, 102.0]))
        historical = HistoricalStore(store, [provider])
        asyncio.run(historical.ingest_bulk(now_ms=NOW))

        provider.result = candles([101.0, 103.5], start=DAY0 + MS_PER_DAY)
        result = asyncio.run(historical.ingest_incremental(now_ms=NOW))

        assert provider.requested[-1] == 3
        assert (result.inserted, result.updated) == (0, 2)
        prices = [p.price for p in historical.get_daily_prices(0, NOW)]
        assert prices == [100.0, 101.0, 103.5]


class TestReads:
    """Test historical reads."""

    def test_historical_price_at_or_before(self) -> None:
        store = PriceStore("sqlite://")
        historical = HistoricalStore(store, [])
        store.upsert_historical(c.to_point("cryptocompare") for c in candles([100.0, 101.0]))

        assert historical.get_historical_price(DAY0 + MS_PER_DAY + 5) == 101.0
        assert historical.get_historical_price(DAY0 + 5) == 100.0
        assert historical.get_historical_price(DAY0 - 1) is None

    def test_one_close_per_day_across_providers(self) -> None:
        """A fallback run over stored days does not duplicate them."""
        store = PriceStore("sqlite://")
        historical = HistoricalStore(store, [])
        store.upsert_historical(c.to_point("cryptocompare") for c in candles([100.0, 110.0]))
        store.upsert_historical(
            c.to_point("coingecko_historical") for c in candles([99.0, 111.0, 120.0])
        )

        points = historical.get_daily_prices(0, NOW)

        assert [(p.source, p.price) for p in points] == [
            ("cryptocompare", 100.0),
            ("cryptocompare", 110.0),
            ("coingecko_historical", 120.0),
        ]
        assert store.count_historical() == 5

    def test_historical_price_prefers_primary(self) -> None:
        store = PriceStore("sqlite://")
        historical = HistoricalStore(store, [])
        store.upsert_historical(
            c.to_point("coingecko_historical") for c in candles([99.0, 111.0])
        )
        store.upsert_historical(c.to_point("cryptocompare") for c in candles([100.0, 110.0]))

        assert historical.get_historical_price(DAY0 + MS_PER_DAY + 5) == 110.0

    def test_provider_order_sets_preference(self) -> None:
        """Configured provider order wins over the default order."""
        store = PriceStore("sqlite://")
        historical = HistoricalStore(
            store, [StubProvider("coingecko_historical", []), StubProvider("cryptocompare", [])]
        )
        store.upsert_historical(c.to_point("cryptocompare") for c in candles([100.0]))
        store.upsert_historical(c.to_point("coingecko_historical") for c in candles([99.0]))

        assert [p.price for p in historical.get_daily_prices(0, NOW)] == [99.0]

    def test_24h_range_uses_high_low(self) -> None:
        """Daily high/low are preferred over the close."""
        store = PriceStore("sqlite://")
        historical = HistoricalStore(store, [])
        store.upsert_historical(
            [
                {"source": "cryptocompare", "timestamp": NOW - 1000, "price": 100.0,
                 "high": 110.0, "low": 90.0},
                {"source": "cryptocompare", "timestamp": NOW - 2 * MS_PER_DAY,
                 "price": 500.0, "high": 600.0, "low": 50.0},
            ]
        )

        price_range = historical.get_24h_range(NOW)
        assert price_range.to_dict() == {"high": 110.0, "low": 90.0, "range": 20.0}

    def test_24h_range_falls_back_to_close(self) -> None:
        """Points without high/low use their close."""
        store = PriceStore("sqlite://")
        historical = HistoricalStore(store, [])
        store.upsert_historical(
            [
                {"source": "coingecko_historical", "timestamp": NOW - 1000, "price": 100.0},
                {"source": "cryptocompare", "timestamp": NOW - 2000, "price": 104.0},
            ]
        )

        assert historical.get_24h_range(NOW).to_dict() == {
            "high": 104.0, "low": 100.0, "range": 4.0,
        }

    def test_24h_range_from_price_feed(self) -> None:
        """Without daily points, the raw feed is scanned."""
        store = PriceStore("sqlite://")
        historical = HistoricalStore(store, [])
        store.append_price_feed("kraken", 95000.0, 0.15, NOW - 1000)
        store.append_price_feed("gemini", 95300.0, 0.05, NOW - 2000)
        store.append_price_feed("gemini", 10.0, 0.05, NOW - 2 * MS_PER_DAY)

        assert historical.get_24h_range(NOW).range == pytest.approx(300.0)

    def test_24h_range_absent(self) -> None:
        historical = HistoricalStore(PriceStore("sqlite://"), [])
        assert historical.get_24h_range(NOW) is None


class TestCryptoCompareProvider:
    """Test the histoday provider."""

    BODY = {
        "Response": "Success",
        "Data": {
            "Data": [
                {"time": 1_641_600_000, "open": 0, "high": 0, "low": 0, "close": 0,
                 "volumefrom": 0},
                {"time": 1_641_686_400, "open": 41500.0, "high": 42300.0,
                 "low": 41000.0, "close": 42000.0, "volumefrom": 12345.6},
                {"time": 1_641_772_800, "open": 42000.0, "high": 43000.0,
                 "low": 41800.0, "close": 42800.0, "volumefrom": 23456.7},
            ]
        },
    }

    def test_parses_ohlcv(self) -> None:
        """Rows map to OHLCV candles in ms; all-zero rows are skipped."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=self.BODY)

        provider = CryptoCompareProvider(api_key="secret")
        result = run_provider(provider, handler, days=3, now_ms=1_641_800_000_000)

        assert [c.timestamp for c in result] == [1_641_686_400_000, 1_641_772_800_000]
        assert result[0] == HistoricalCandle(
            timestamp=1_641_686_400_000, close=42000.0, open=41500.0,
            high=42300.0, low=41000.0, volume=12345.6,
        )
        params = seen[0].url.params
        assert params["limit"] == "2"
        assert params["toTs"] == "1641800000"
        assert params["fsym"] == "BTC"
        assert params["api_key"] == "secret"

    def test_requires_api_key(self) -> None:
        """Without a key the provider refuses before any request."""
        with pytest.raises(FetcherConfigError):
            run_provider(CryptoCompareProvider(), lambda r: httpx.Response(200), days=3)

    def test_error_body(self) -> None:
        """Error responses are malformed."""
        body = {"Response": "Error", "Message": "rate limit"}
        with pytest.raises(MalformedResponseError, match="rate limit"):
            run_provider(
                CryptoCompareProvider(api_key="k"),
                lambda r: httpx.Response(200, json=body),
                days=3,
            )

    def test_missing_data(self) -> None:
        with pytest.raises(MalformedResponseError, match="Missing Data.Data"):
            run_provider(
                CryptoCompareProvider(api_key="k"),
                lambda r: httpx.Response(200, json={"Response": "Success"}),
                days=3,
            )


class TestCoinGeckoHistoricalProvider:
    """Test the market_chart provider."""

    def test_parses_prices_and_caps_days(self) -> None:
        """Closes are read from prices; days are capped at 365."""
        seen: list[httpx.Request] = []
        body = {
            "prices": [[1_641_686_400_000, 42000.0], [1_641_772_800_000, 42800.0]],
            "total_volumes": [],
        }

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=body)

        result = run_provider(CoinGeckoHistoricalProvider(), handler, days=400)

        assert [(c.timestamp, c.close, c.high) for c in result] == [
            (1_641_686_400_000, 42000.0, None),
            (1_641_772_800_000, 42800.0, None),
        ]
        assert seen[0].url.params["days"] == "365"
        assert seen[0].url.params["interval"] == "daily"

    def test_filters_after_now(self) -> None:
        """Candles after now_ms are dropped."""
        body = {"prices": [[DAY0, 1.0], [DAY0 + MS_PER_DAY, 2.0]]}
        result = run_provider(
            CoinGeckoHistoricalProvider(),
            lambda r: httpx.Response(200, json=body),
            days=2,
            now_ms=DAY0 + MS_PER_DAY // 2,
        )
        assert [c.timestamp for c in result] == [DAY0]

    def test_drops_live_row(self) -> None:
        """The trailing intraday row is not a daily close."""
        body = {"prices": [[DAY0, 100.0], [DAY0 + MS_PER_DAY, 101.0], [NOW - 1234, 102.0]]}
        result = run_provider(
            CoinGeckoHistoricalProvider(),
            lambda r: httpx.Response(200, json=body),
            days=2,
        )
        assert [c.close for c in result] == [100.0, 101.0]

    def test_repeated_ingestion_keeps_one_row_per_day(self) -> None:
        """Hourly fallback runs with a moving live row do not add rows."""
        store = PriceStore("sqlite://")
        historical = HistoricalStore(store, [CoinGeckoHistoricalProvider()])
        series = [[DAY0 + i * MS_PER_DAY, 100.0 + i] for i in range(3)]

        async def ingest_hourly():
            for hour in range(5):
                live_at = DAY0 + 2 * MS_PER_DAY + (hour + 1) * 3_600_000
                body = {"prices": series + [[live_at, 150.0]]}
                HttpSource.set_shared_client(
                    httpx.AsyncClient(
                        transport=httpx.MockTransport(
                            lambda r, body=body: httpx.Response(200, json=body)
                        )
                    )
                )
                try:
                    await historical.ingest_bulk(days=3, now_ms=live_at)
                finally:
                    await HttpSource.close_shared_client()

        asyncio.run(ingest_hourly())

        assert store.count_historical() == 3
        assert historical.get_historical_price(NOW) == 102.0

    def test_missing_prices(self) -> None:
        with pytest.raises(MalformedResponseError, match="Missing prices"):
            run_provider(
                CoinGeckoHistoricalProvider(),
                lambda r: httpx.Response(200, json={"error": "nope"}),
                days=2,
            )

    def test_invalid_days(self) -> None:
        with pytest.raises(ValueError, match="days must be at least 1"):
            run_provider(CoinGeckoHistoricalProvider(), lambda r: httpx.Response(200), days=0)
