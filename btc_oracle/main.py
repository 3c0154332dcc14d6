#!/usr/bin/env python3
"""BTC Price Oracle.

Fetches the BTC/USD price from multiple exchanges, aggregates it into a
weighted price with outlier rejection, tracks historical volatility and
publishes the price to an on-chain oracle contract when it has moved enough.

Run with env vars or CLI flags (CLI takes precedence). Without an oracle
address the process runs in dry-run mode and only logs its decisions.
"""

import argparse
import asyncio
import logging
import os
import sys

from .src.fetchers import DEFAULT_SOURCES, get_available_fetchers
from .src.OracleConfig import OracleConfig
from .src.PriceOracle import PriceOracle
from .src.SubmissionGate import SubmissionThresholds

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def parse_api_keys(api_key_str: str | None) -> dict[str, str]:
    """Parse comma-separated API key string into a dictionary.

    Format: source1=key1,source2=key2
    Example: coingecko=demo:abc123,cryptocompare=xyz789

    :param api_key_str: Comma-separated API key string.
    :returns: Dict mapping source names to API keys.
    """
    if not api_key_str:
        return {}

    api_keys = {}
    for item in api_key_str.split(","):
        item = item.strip()
        if "=" in item:
            source, key = item.split("=", 1)
            api_keys[source.strip().lower()] = key.strip()
    return api_keys


def parse_env_api_keys() -> dict[str, str]:
    """Parse API keys from individual environment variables.

    Looks for: API_KEY_COINGECKO, API_KEY_CRYPTOCOMPARE, etc.

    :returns: Dict mapping source names to API keys.
    """
    api_keys = {}
    prefixes = ["API_KEY_", "APIKEY_"]

    for key, value in os.environ.items():
        for prefix in prefixes:
            if key.startswith(prefix) and value:
                source = key[len(prefix):].lower()
                api_keys[source] = value
                break

    return api_keys


def parse_weights(weight_str: str | None) -> dict[str, float]:
    """Parse a weight override string like ``kraken=0.3,gemini=0.1``.

    :param weight_str: Comma-separated name=weight pairs.
    :returns: Dict mapping source names to weights.
    :raises ValueError: If a weight is not a number.
    """
    if not weight_str:
        return {}

    weights = {}
    for item in weight_str.split(","):
        item = item.strip()
        if "=" in item:
            source, weight = item.split("=", 1)
            weights[source.strip().lower()] = float(weight)
    return weights


def env_flag(name: str) -> bool:
    return (os.environ.get(name) or "").strip().lower() in ("1", "true", "yes", "on")


def build_parser() -> argparse.ArgumentParser:
    available_sources = get_available_fetchers()

    parser = argparse.ArgumentParser(
        description="BTC Price Oracle: Weighted multi-source BTC/USD feed",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Available price sources:
  {', '.join(available_sources)}

Examples:
  # Dry run with the default sources
  python -m btc_oracle.main

  # Publish to a deployed oracle on testnet
  python -m btc_oracle.main --network sapphire-testnet \\
      --oracle-address 0x... --signer-key 0x...

  # Fewer sources, custom weights, CryptoCompare history
  python -m btc_oracle.main --sources coinbase,kraken,bitstamp \\
      --weights coinbase=0.4,kraken=0.4,bitstamp=0.2 \\
      --api-keys cryptocompare=your-api-key

Environment variables (CLI args take precedence):
  SOURCES, SOURCE_WEIGHTS, FETCH_PERIOD, SUBMIT_CHECK_PERIOD,
  HISTORICAL_PERIOD, DAILY_PERIOD, FETCH_TIMEOUT, MIN_PRICE_CHANGE_PERCENT,
  MAX_TIME_BETWEEN_UPDATES, MIN_TIME_BETWEEN_UPDATES, MIN_SOURCE_COUNT,
  HISTORICAL_DAYS, DATABASE_URL, NETWORK, RPC_URL, ORACLE_ADDRESS,
  SIGNER_KEY, DRY_RUN, API_KEYS, API_KEY_COINGECKO, API_KEY_CRYPTOCOMPARE, etc.
""",
    )

    parser.add_argument(
        "--sources",
        type=str,
        help=f"Comma-separated price sources. Available: {', '.join(available_sources)}",
        default=os.environ.get("SOURCES") or ",".join(DEFAULT_SOURCES),
    )

    parser.add_argument(
        "--weights",
        type=str,
        help="Comma-separated weight overrides (e.g., kraken=0.3,gemini=0.1)",
        default=os.environ.get("SOURCE_WEIGHTS"),
    )

    parser.add_argument(
        "--fetch-period",
        dest="fetch_period",
        type=int,
        help="Seconds between price cycles (minimum: 1, default: 60)",
        default=int(os.environ.get("FETCH_PERIOD") or "60"),
    )

    parser.add_argument(
        "--submit-check-period",
        dest="submit_check_period",
        type=int,
        help="Seconds between submission checks (minimum: 1, default: 300)",
        default=int(os.environ.get("SUBMIT_CHECK_PERIOD") or "300"),
    )

    parser.add_argument(
        "--historical-period",
        dest="historical_period",
        type=int,
        help="Seconds between full historical refreshes (default: 3600)",
        default=int(os.environ.get("HISTORICAL_PERIOD") or "3600"),
    )

    parser.add_argument(
        "--daily-period",
        dest="daily_period",
        type=int,
        help="Seconds between incremental daily refreshes (default: 86400)",
        default=int(os.environ.get("DAILY_PERIOD") or "86400"),
    )

    parser.add_argument(
        "--fetch-timeout",
        dest="fetch_timeout",
        type=float,
        help="Timeout for individual fetch requests in seconds (default: 10.0)",
        default=float(os.environ.get("FETCH_TIMEOUT") or "10.0"),
    )

    parser.add_argument(
        "--min-price-change",
        dest="min_price_change",
        type=float,
        help="Price move in percent that triggers a submission (default: 0.5)",
        default=float(os.environ.get("MIN_PRICE_CHANGE_PERCENT") or "0.5"),
    )

    parser.add_argument(
        "--max-time-between-updates",
        dest="max_time_between_updates",
        type=int,
        help="Seconds after which a submission is forced (default: 21600)",
        default=int(os.environ.get("MAX_TIME_BETWEEN_UPDATES") or "21600"),
    )

    parser.add_argument(
        "--min-time-between-updates",
        dest="min_time_between_updates",
        type=int,
        help="Seconds a submission must wait after the last one (default: 1800)",
        default=int(os.environ.get("MIN_TIME_BETWEEN_UPDATES") or "1800"),
    )

    parser.add_argument(
        "--min-source-count",
        dest="min_source_count",
        type=int,
        help="Minimum sources behind a price before it is submitted (default: 3)",
        default=int(os.environ.get("MIN_SOURCE_COUNT") or "3"),
    )

    parser.add_argument(
        "--historical-days",
        dest="historical_days",
        type=int,
        help="Days fetched by a full historical refresh (default: 361)",
        default=int(os.environ.get("HISTORICAL_DAYS") or "361"),
    )

    parser.add_argument(
        "--database-url",
        dest="database_url",
        type=str,
        help="SQLAlchemy database URL (default: sqlite:///btc_oracle.db)",
        default=os.environ.get("DATABASE_URL") or "sqlite:///btc_oracle.db",
    )

    parser.add_argument(
        "--network",
        type=str,
        help="Network to connect to (sapphire, sapphire-testnet, sapphire-localnet) or an RPC URL",
        default=os.environ.get("NETWORK") or "sapphire-localnet",
    )

    parser.add_argument(
        "--rpc-url",
        dest="rpc_url",
        type=str,
        help="RPC URL overriding the network default",
        default=os.environ.get("RPC_URL"),
    )

    parser.add_argument(
        "--oracle-address",
        dest="oracle_address",
        type=str,
        help="Oracle contract address (dry run if not provided)",
        default=os.environ.get("ORACLE_ADDRESS"),
    )

    parser.add_argument(
        "--signer-key",
        dest="signer_key",
        type=str,
        help="Private key used to sign submissions",
        default=os.environ.get("SIGNER_KEY"),
    )

    parser.add_argument(
        "--dry-run",
        dest="dry_run",
        action="store_true",
        help="Evaluate submissions without publishing",
        default=env_flag("DRY_RUN"),
    )

    parser.add_argument(
        "--api-keys",
        dest="api_keys",
        type=str,
        help="Comma-separated API keys (e.g., coingecko=demo:abc,cryptocompare=xyz)",
        default=os.environ.get("API_KEYS"),
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    return parser


def build_config(
    parser: argparse.ArgumentParser, args: argparse.Namespace
) -> OracleConfig:
    """Validate parsed arguments and freeze them into an OracleConfig.

    Exits via ``parser.error`` on invalid input.
    """
    available_sources = get_available_fetchers()

    if args.fetch_period < 1:
        parser.error("--fetch-period must be at least 1 second")

    if args.submit_check_period < 1:
        parser.error("--submit-check-period must be at least 1 second")

    if args.historical_period < 1 or args.daily_period < 1:
        parser.error("--historical-period and --daily-period must be at least 1 second")

    if args.fetch_timeout <= 0:
        parser.error("--fetch-timeout must be positive")

    if args.min_source_count < 1:
        parser.error("--min-source-count must be at least 1")

    if args.min_price_change < 0:
        parser.error("--min-price-change must not be negative")

    if args.max_time_between_updates < args.min_time_between_updates:
        parser.error(
            "--max-time-between-updates must be at least --min-time-between-updates"
        )

    if args.historical_days < 2:
        parser.error("--historical-days must be at least 2")

    sources = [s.strip().lower() for s in args.sources.split(",") if s.strip()]
    if not sources:
        parser.error("At least one source must be specified")

    invalid_sources = [s for s in sources if s not in available_sources]
    if invalid_sources:
        parser.error(
            f"Unknown sources: {invalid_sources}. "
            f"Available: {', '.join(available_sources)}"
        )

    try:
        weights = parse_weights(args.weights)
    except ValueError as e:
        parser.error(f"Invalid --weights: {e}")
    bad_weights = [s for s, w in weights.items() if not 0.0 <= w <= 1.0]
    if bad_weights:
        parser.error(f"Weights must be within [0, 1]: {bad_weights}")

    # Parse API keys (CLI + environment)
    api_keys = parse_env_api_keys()
    api_keys.update(parse_api_keys(args.api_keys))

    thresholds = SubmissionThresholds(
        min_price_change_percent=args.min_price_change,
        max_time_between_updates_ms=args.max_time_between_updates * 1000,
        min_time_between_updates_ms=args.min_time_between_updates * 1000,
        min_source_count=args.min_source_count,
    )

    return OracleConfig(
        sources=tuple(sources),
        source_weights=weights,
        api_keys=api_keys,
        fetch_period=args.fetch_period,
        submit_check_period=args.submit_check_period,
        historical_period=args.historical_period,
        daily_period=args.daily_period,
        fetch_timeout=args.fetch_timeout,
        historical_days=args.historical_days,
        thresholds=thresholds,
        database_url=args.database_url,
        network=args.network,
        rpc_url=args.rpc_url,
        oracle_address=args.oracle_address,
        signer_key=args.signer_key,
        dry_run=args.dry_run,
    )


def log_banner(config: OracleConfig) -> None:
    thresholds = config.thresholds
    logger.info("=" * 60)
    logger.info("BTC Price Oracle - Weighted Aggregation")
    logger.info("=" * 60)
    logger.info(f"Network:           {config.network}")
    logger.info(f"Oracle:            {config.oracle_address or 'none'}")
    logger.info(f"Mode:              {'publish' if config.publishing_enabled else 'dry run'}")
    logger.info(f"Sources:           {', '.join(config.sources)}")
    if config.source_weights:
        logger.info(
            "Weight Overrides:  "
            + ", ".join(f"{s}={w}" for s, w in config.source_weights.items())
        )
    logger.info(f"Min Sources:       {thresholds.min_source_count}")
    logger.info(f"Min Change:        {thresholds.min_price_change_percent}%")
    logger.info(f"Min Interval:      {thresholds.min_time_between_updates_ms // 1000}s")
    logger.info(f"Max Interval:      {thresholds.max_time_between_updates_ms // 1000}s")
    logger.info(f"Fetch Period:      {config.fetch_period}s")
    logger.info(f"Submit Check:      {config.submit_check_period}s")
    logger.info(f"Historical Period: {config.historical_period}s")
    logger.info(f"Daily Period:      {config.daily_period}s")
    logger.info(f"Fetch Timeout:     {config.fetch_timeout}s")
    logger.info(f"Database:          {config.database_url.split('://', 1)[0]}")
    if config.api_keys:
        logger.info(f"API Keys:          {', '.join(config.api_keys.keys())}")
    logger.info("=" * 60)


def main() -> None:
    """Main entry point for the BTC Price Oracle CLI."""
    parser = build_parser()
    args = parser.parse_args()

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    config = build_config(parser, args)
    log_banner(config)

    try:
        price_oracle = PriceOracle(config)
        asyncio.run(price_oracle.run())
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
