"""PriceOracle: Main orchestrator for the BTC/USD price pipeline.

This module fetches BTC/USD quotes from multiple exchanges, aggregates them
into a weighted price, keeps a daily history for volatility, and publishes the
price on-chain when the submission gate allows it.

Architecture:
    - Price cycle: SourceFetcher -> PriceAggregator -> aggregated price row
    - Historical cycles: providers -> HistoricalStore -> VolatilityEngine
    - Submission cycle: SubmissionGate -> ChainPublisher -> submission ledger
    - Each cycle runs in its own loop on its own interval and never raises
    - Reads (latest price, 24h range, volatility) only touch the database
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from .ChainPublisher import ChainPublisher, ContractPublisher
from .ContractUtility import ContractUtility
from .fetchers import BaseFetcher, HttpSource, get_fetcher
from .HistoricalStore import HistoricalStore, ProviderExhaustedError
from .PriceAggregator import PriceAggregator
from .PriceStore import PriceStore
from .providers import DEFAULT_PROVIDERS, BaseHistoricalProvider, get_provider
from .SourceFetcher import SourceFetcher
from .SubmissionGate import REASON_ERROR, SubmissionGate
from .VolatilityEngine import VolatilityEngine

if TYPE_CHECKING:
    from .models import AggregatedPriceRecord, PriceFeedRecord
    from .OracleConfig import OracleConfig

logger = logging.getLogger(__name__)

# Volatility stamped on each aggregated price.
AGGREGATE_VOLATILITY_TIMEFRAME = 30


def _now_ms() -> int:
    return int(time.time() * 1000)


class PriceOracle:
    """Main orchestrator for the BTC/USD oracle.

    :ivar config: Process configuration.
    :ivar store: Persistence collaborator.
    :ivar source_fetcher: Concurrent spot-price fetcher.
    :ivar aggregator: Weighted-mean aggregator.
    :ivar historical: Daily price series.
    :ivar volatility: Volatility engine.
    :ivar gate: Submission gate.
    """

    def __init__(
        self,
        config: OracleConfig,
        store: PriceStore | None = None,
        fetchers: dict[str, BaseFetcher] | None = None,
        providers: list[BaseHistoricalProvider] | None = None,
        publisher: ChainPublisher | None = None,
    ) -> None:
        """Wire up the pipeline.

        :param config: Process configuration.
        :param store: Store to use (default: one opened on config.database_url).
        :param fetchers: Spot-price fetchers (default: built from config.sources).
        :param providers: Historical providers, primary first (default:
            cryptocompare then coingecko_historical).
        :param publisher: ChainPublisher (default: a ContractPublisher when an
            oracle address is configured, otherwise none).
        :raises ValueError: If a configured source or provider is unknown.
        """
        self.config = config
        self.store = store or PriceStore(config.database_url)

        if fetchers is None:
            fetchers = {
                source: get_fetcher(
                    source,
                    api_key=config.api_keys.get(source),
                    weight=config.source_weights.get(source),
                    timeout=config.fetch_timeout,
                )
                for source in config.sources
            }
        self.fetchers = fetchers

        if providers is None:
            providers = [
                get_provider(
                    name,
                    api_key=config.api_keys.get(name),
                    timeout=config.fetch_timeout,
                )
                for name in DEFAULT_PROVIDERS
            ]

        if config.dry_run:
            publisher = None
        elif publisher is None and config.publishing_enabled:
            contract_utility = ContractUtility(
                config.network,
                rpc_url=config.rpc_url,
                signer_key=config.signer_key,
            )
            publisher = ContractPublisher(contract_utility, config.oracle_address)

        self.source_fetcher = SourceFetcher(
            fetchers=self.fetchers,
            fetch_timeout=config.fetch_timeout,
            store=self.store,
        )
        self.aggregator = PriceAggregator()
        self.historical = HistoricalStore(self.store, providers)
        self.volatility = VolatilityEngine(self.store, self.historical)
        self.gate = SubmissionGate(self.store, publisher, config.thresholds)

        logger.info(
            f"PriceOracle initialized: sources={list(self.fetchers)}, "
            f"providers={[p.name for p in providers]}, "
            f"fetch_period={config.fetch_period}s, "
            f"submit_check_period={config.submit_check_period}s, "
            f"dry_run={self.gate.dry_run}"
        )

    # -- cycles -----------------------------------------------------------

    async def run_price_cycle(self, now_ms: int | None = None) -> bool:
        """Fetch, aggregate and store one aggregated price.

        :returns: True if an aggregated price was stored.
        """
        try:
            now_ms = now_ms if now_ms is not None else _now_ms()
            quotes = await self.source_fetcher.fetch_all(now_ms=now_ms)

            result = self.aggregator.aggregate(quotes)
            if not result.success:
                logger.warning(f"Aggregation failed: {result.error}")
                return False

            volatility = self.volatility.get_latest(AGGREGATE_VOLATILITY_TIMEFRAME)
            price_range = self.historical.get_24h_range(now_ms)
            self.store.append_aggregated(
                price=result.price,
                timestamp=now_ms,
                source_count=result.source_count,
                volatility=volatility if volatility is not None else 0.0,
                range_24h=price_range.range if price_range is not None else None,
            )

            dropped = result.metadata.get("dropped") or {}
            logger.info(
                f"Aggregated BTC/USD ${result.price:.2f} from "
                f"{result.source_count} sources"
                + (f" (outliers: {', '.join(dropped)})" if dropped else "")
            )
            return True
        except Exception:
            logger.exception("Price cycle failed")
            return False

    async def run_historical_bulk_cycle(self, now_ms: int | None = None) -> bool:
        """Refresh the full daily series and recompute volatility."""
        return await self._run_historical_cycle("bulk", now_ms)

    async def run_historical_incremental_cycle(self, now_ms: int | None = None) -> bool:
        """Refresh the latest completed days and recompute volatility."""
        return await self._run_historical_cycle("incremental", now_ms)

    async def _run_historical_cycle(self, mode: str, now_ms: int | None) -> bool:
        try:
            now_ms = now_ms if now_ms is not None else _now_ms()
            if mode == "bulk":
                await self.historical.ingest_bulk(
                    self.config.historical_days, now_ms=now_ms
                )
            else:
                await self.historical.ingest_incremental(now_ms=now_ms)
        except ProviderExhaustedError as e:
            logger.error(f"Historical {mode} cycle stored nothing: {e}")
            return False
        except Exception:
            logger.exception(f"Historical {mode} cycle failed")
            return False

        try:
            self.volatility.calculate_and_store_all(now_ms=now_ms)
            return True
        except Exception:
            logger.exception("Volatility recomputation failed")
            return False

    async def run_submission_check_cycle(self, now_ms: int | None = None) -> bool:
        """Run the submission gate once.

        :returns: False only if the gate hit an unexpected error.
        """
        try:
            outcome = await self.gate.check_and_submit(now_ms=now_ms)
            return outcome.reason != REASON_ERROR
        except Exception:
            logger.exception("Submission check cycle failed")
            return False

    # -- read surface -----------------------------------------------------

    def get_latest_aggregated_price(self) -> AggregatedPriceRecord | None:
        return self.store.get_latest_aggregated()

    def get_24h_range(self, now_ms: int | None = None) -> dict[str, float] | None:
        """``{"high", "low", "range"}`` over the last 24h, or None."""
        price_range = self.historical.get_24h_range(now_ms)
        return price_range.to_dict() if price_range is not None else None

    def get_volatility_for_duration(self, duration_seconds: float) -> float | None:
        return self.volatility.get_for_duration(duration_seconds)

    def get_latest_source_prices(self) -> dict[str, PriceFeedRecord]:
        """Latest recorded quote per configured source."""
        return self.store.get_latest_source_prices(self.fetchers)

    def get_historical_price(self, target_timestamp: int) -> float | None:
        return self.historical.get_historical_price(target_timestamp)

    # -- scheduler --------------------------------------------------------

    async def bootstrap(self) -> bool:
        """Backfill history on first start so volatility is available.

        :returns: True if a backfill was run.
        """
        if self.historical.has_data():
            return False
        logger.info("No historical data stored, running initial backfill")
        await self.run_historical_bulk_cycle()
        return True

    async def _loop(
        self,
        name: str,
        period: int,
        cycle: Callable[[], Awaitable[bool]],
        skip_first: bool = False,
    ) -> None:
        logger.info(f"Starting {name} loop every {period}s")
        if skip_first:
            await asyncio.sleep(period)
        while True:
            ok = await cycle()
            if not ok:
                logger.debug(f"{name} cycle reported failure")
            await asyncio.sleep(period)

    async def run(self) -> None:
        """Run the oracle.

        Bootstraps history if needed, then runs every cycle on its own
        interval until cancelled.
        """
        try:
            backfilled = await self.bootstrap()
            await asyncio.gather(
                self._loop("price", self.config.fetch_period, self.run_price_cycle),
                self._loop(
                    "submission",
                    self.config.submit_check_period,
                    self.run_submission_check_cycle,
                ),
                self._loop(
                    "historical",
                    self.config.historical_period,
                    self.run_historical_bulk_cycle,
                    skip_first=backfilled,
                ),
                self._loop(
                    "daily",
                    self.config.daily_period,
                    self.run_historical_incremental_cycle,
                    skip_first=backfilled,
                ),
            )
        finally:
            # Clean up shared HTTP client
            await HttpSource.close_shared_client()
            self.store.close()
