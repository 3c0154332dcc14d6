"""OracleConfig: Immutable process configuration, built once in main()."""

from __future__ import annotations

from dataclasses import dataclass, field

from .fetchers import DEFAULT_SOURCES
from .HistoricalStore import BULK_DAYS
from .SubmissionGate import SubmissionThresholds


@dataclass(frozen=True)
class OracleConfig:
    """Everything the oracle needs, passed explicitly to each component.

    :ivar sources: Spot-price sources to query each cycle.
    :ivar source_weights: Per-source weight overrides.
    :ivar api_keys: Per-source (and per-provider) API keys.
    :ivar fetch_period: Seconds between price cycles.
    :ivar submit_check_period: Seconds between submission checks.
    :ivar historical_period: Seconds between bulk historical refreshes.
    :ivar daily_period: Seconds between incremental historical refreshes.
    :ivar fetch_timeout: Per-fetch timeout in seconds.
    :ivar historical_days: Days requested by a bulk refresh.
    :ivar thresholds: Submission gate configuration.
    :ivar database_url: SQLAlchemy database URL.
    :ivar network: Network name or RPC URL.
    :ivar rpc_url: RPC URL override.
    :ivar oracle_address: Oracle contract address (None for dry run).
    :ivar signer_key: Private key used to sign transactions.
    :ivar dry_run: Evaluate submissions without publishing.
    """

    sources: tuple[str, ...] = tuple(DEFAULT_SOURCES)
    source_weights: dict[str, float] = field(default_factory=dict)
    api_keys: dict[str, str] = field(default_factory=dict)
    fetch_period: int = 60
    submit_check_period: int = 300
    historical_period: int = 3600
    daily_period: int = 86400
    fetch_timeout: float = 10.0
    historical_days: int = BULK_DAYS
    thresholds: SubmissionThresholds = field(default_factory=SubmissionThresholds)
    database_url: str = "sqlite:///btc_oracle.db"
    network: str = "sapphire-localnet"
    rpc_url: str | None = None
    oracle_address: str | None = None
    signer_key: str | None = field(default=None, repr=False)
    dry_run: bool = False

    def __post_init__(self) -> None:
        if not self.sources:
            raise ValueError("At least one source must be specified")
        if self.fetch_period < 1:
            raise ValueError("fetch_period must be at least 1 second")
        if self.fetch_timeout <= 0:
            raise ValueError("fetch_timeout must be positive")
        if self.historical_days < 2:
            raise ValueError("historical_days must be at least 2")
        for source, weight in self.source_weights.items():
            if not 0.0 <= weight <= 1.0:
                raise ValueError(f"Weight for {source} must be within [0, 1]")

    @property
    def publishing_enabled(self) -> bool:
        return bool(self.oracle_address) and not self.dry_run
