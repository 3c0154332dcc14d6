"""SubmissionGate: Decides when the aggregated price goes on-chain.

Decision precedence (first match wins):
    1. No prior submission              -> update  ("initial submission")
    2. source_count < min_source_count  -> skip    ("insufficient sources")
    3. elapsed >= max time              -> update  ("max time exceeded")
    4. elapsed < min time               -> skip    ("throttled")
    5. percent change >= threshold      -> update  ("price change exceeded threshold")
       otherwise                        -> skip    ("no update needed")

Prices are compared in satoshis (price * 10**8, rounded).
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .ChainPublisher import ChainPublishError

if TYPE_CHECKING:
    from .ChainPublisher import ChainPublisher
    from .models import AggregatedPriceRecord, SubmissionRecord
    from .PriceStore import PriceStore

logger = logging.getLogger(__name__)

SATOSHIS_PER_BTC = 10**8

REASON_INITIAL = "initial submission"
REASON_INSUFFICIENT_SOURCES = "insufficient sources"
REASON_MAX_TIME = "max time exceeded"
REASON_THROTTLED = "throttled"
REASON_PRICE_CHANGE = "price change exceeded threshold"
REASON_NO_UPDATE = "no update needed"
REASON_NO_PRICE = "no aggregated price"
REASON_ERROR = "evaluation error"


def to_satoshis(price: float) -> int:
    """Convert a USD price to the integer on-chain unit."""
    return round(price * SATOSHIS_PER_BTC)


@dataclass(frozen=True)
class SubmissionThresholds:
    """Gate configuration.

    :ivar min_price_change_percent: Smallest move that triggers an update.
    :ivar max_time_between_updates_ms: Forced refresh interval.
    :ivar min_time_between_updates_ms: Throttle interval.
    :ivar min_source_count: Fewest sources a publishable price needs.
    """

    min_price_change_percent: float = 0.5
    max_time_between_updates_ms: int = 6 * 60 * 60 * 1000
    min_time_between_updates_ms: int = 30 * 60 * 1000
    min_source_count: int = 3

    def __post_init__(self) -> None:
        if self.min_price_change_percent < 0:
            raise ValueError("min_price_change_percent must not be negative")
        if self.min_time_between_updates_ms < 0:
            raise ValueError("min_time_between_updates_ms must not be negative")
        if self.max_time_between_updates_ms < self.min_time_between_updates_ms:
            raise ValueError(
                "max_time_between_updates_ms must be at least min_time_between_updates_ms"
            )
        if self.min_source_count < 1:
            raise ValueError("min_source_count must be at least 1")


@dataclass
class SubmissionDecision:
    """Outcome of one gate evaluation.

    :ivar should_update: True if the price should be published.
    :ivar reason: Which rule decided.
    :ivar price_in_satoshis: Candidate price in the on-chain unit.
    :ivar percent_change: Move vs the last submission (None if not computed).
    :ivar source_count: Sources behind the candidate price.
    :ivar timestamp: Evaluation time in epoch milliseconds.
    """

    should_update: bool
    reason: str
    price_in_satoshis: int
    percent_change: float | None
    source_count: int
    timestamp: int


def evaluate_submission(
    latest: AggregatedPriceRecord,
    last: SubmissionRecord | None,
    thresholds: SubmissionThresholds,
    now_ms: int,
) -> SubmissionDecision:
    """Apply the decision rules to the latest aggregated price.

    :param latest: Most recent aggregated price.
    :param last: Most recent published submission, or None.
    :param thresholds: Gate configuration.
    :param now_ms: Evaluation time in epoch milliseconds.
    :returns: SubmissionDecision.
    """
    new_price = to_satoshis(latest.price)

    def decide(should_update: bool, reason: str, pct: float | None = None):
        return SubmissionDecision(
            should_update=should_update,
            reason=reason,
            price_in_satoshis=new_price,
            percent_change=pct,
            source_count=latest.source_count,
            timestamp=now_ms,
        )

    if last is None:
        return decide(True, REASON_INITIAL)

    if latest.source_count < thresholds.min_source_count:
        return decide(False, REASON_INSUFFICIENT_SOURCES)

    last_price = last.submitted_price_satoshis
    pct = abs(new_price - last_price) / last_price * 100 if last_price > 0 else None

    elapsed = now_ms - last.submission_timestamp
    if elapsed >= thresholds.max_time_between_updates_ms:
        return decide(True, REASON_MAX_TIME, pct)
    if elapsed < thresholds.min_time_between_updates_ms:
        return decide(False, REASON_THROTTLED, pct)

    if pct is None or pct >= thresholds.min_price_change_percent:
        return decide(True, REASON_PRICE_CHANGE, pct)
    return decide(False, REASON_NO_UPDATE, pct)


@dataclass
class SubmissionOutcome:
    """Result of one check-and-submit run.

    :ivar updated: True only if a price was published and recorded.
    :ivar reason: Decision reason, or why nothing was evaluated.
    :ivar decision: The decision, if one was reached.
    :ivar txid: Transaction id of the publish, if any.
    """

    updated: bool
    reason: str
    decision: SubmissionDecision | None = None
    txid: str | None = None


class SubmissionGate:
    """Serializes evaluate-publish-record for one price stream.

    :ivar store: Persistence collaborator (aggregated prices and ledger).
    :ivar publisher: ChainPublisher, or None to only log decisions.
    :ivar thresholds: Gate configuration.
    """

    def __init__(
        self,
        store: PriceStore,
        publisher: ChainPublisher | None,
        thresholds: SubmissionThresholds | None = None,
    ) -> None:
        self.store = store
        self.publisher = publisher
        self.thresholds = thresholds or SubmissionThresholds()
        self._lock = asyncio.Lock()

    @property
    def dry_run(self) -> bool:
        return self.publisher is None

    async def check_and_submit(self, now_ms: int | None = None) -> SubmissionOutcome:
        """Evaluate the latest price and publish it if the rules allow.

        Never raises; unexpected errors come back as a non-update outcome.
        """
        async with self._lock:
            try:
                return await self._check_and_submit(now_ms)
            except Exception:
                logger.exception("Submission check failed")
                return SubmissionOutcome(updated=False, reason=REASON_ERROR)

    async def _check_and_submit(self, now_ms: int | None) -> SubmissionOutcome:
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)

        latest = self.store.get_latest_aggregated()
        if latest is None:
            logger.warning("No aggregated price available, skipping submission check")
            return SubmissionOutcome(updated=False, reason=REASON_NO_PRICE)

        last = self.store.get_latest_submission()
        decision = evaluate_submission(latest, last, self.thresholds, now_ms)

        pct = (
            f"{decision.percent_change:.4f}%"
            if decision.percent_change is not None
            else "n/a"
        )
        logger.info(
            f"Submission decision: update={decision.should_update}, "
            f"reason={decision.reason}, price={decision.price_in_satoshis}, "
            f"change={pct}, sources={decision.source_count}"
        )
        if not decision.should_update:
            return SubmissionOutcome(False, decision.reason, decision)

        if self.publisher is None:
            logger.info("Dry run: not publishing")
            return SubmissionOutcome(False, decision.reason, decision)

        # Another writer may have recorded a submission since we read the ledger
        current = self.store.get_latest_submission()
        if _submission_id(current) != _submission_id(last):
            logger.warning("Ledger changed since evaluation, abandoning submission")
            return SubmissionOutcome(False, decision.reason, decision)

        try:
            result = await self.publisher.publish(decision.price_in_satoshis)
        except ChainPublishError as e:
            logger.error(f"Publish failed: {e}")
            # keep the hash of a sent transaction so it can be reconciled later
            self._record(decision, txid=e.txid or "", status="failed")
            return SubmissionOutcome(False, decision.reason, decision)

        self._record(decision, txid=result.txid, status="submitted")
        return SubmissionOutcome(True, decision.reason, decision, result.txid)

    def _record(self, decision: SubmissionDecision, txid: str, status: str) -> None:
        self.store.append_submission(
            txid=txid,
            submitted_price_satoshis=decision.price_in_satoshis,
            submission_timestamp=decision.timestamp,
            status=status,
            reason=decision.reason,
            source_count=decision.source_count,
            percent_change=decision.percent_change,
        )


def _submission_id(record: SubmissionRecord | None) -> int | None:
    return record.id if record is not None else None
