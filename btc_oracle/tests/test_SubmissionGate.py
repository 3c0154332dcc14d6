"""Unit tests for SubmissionGate."""

import asyncio

import pytest

from btc_oracle.src.ChainPublisher import ChainPublisher, ChainPublishError, PublishResult
from btc_oracle.src.models import AggregatedPriceRecord, SubmissionRecord
from btc_oracle.src.PriceStore import PriceStore
from btc_oracle.src.SubmissionGate import (
    SubmissionGate,
    SubmissionThresholds,
    evaluate_submission,
    to_satoshis,
)

MINUTE = 60 * 1000
HOUR = 60 * MINUTE
NOW = 1_700_000_000_000


def latest(price: float, source_count: int = 4) -> AggregatedPriceRecord:
    return AggregatedPriceRecord(price=price, timestamp=NOW, source_count=source_count)


def last(price: float, ago_ms: int) -> SubmissionRecord:
    return SubmissionRecord(
        txid="0xprev",
        submitted_price_satoshis=to_satoshis(price),
        submission_timestamp=NOW - ago_ms,
        status="submitted",
        reason="initial submission",
        source_count=4,
    )


class FakePublisher(ChainPublisher):
    """Publisher that records calls and returns or raises on demand."""

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.published: list[int] = []

    async def publish(self, price_in_satoshis: int) -> PublishResult:
        self.published.append(price_in_satoshis)
        if self.error is not None:
            raise self.error
        return PublishResult(txid=f"0x{len(self.published):064x}")


class TestToSatoshis:
    """Test price conversion."""

    def test_rounds(self) -> None:
        assert to_satoshis(95001.15384615) == 9_500_115_384_615
        assert to_satoshis(1.0) == 100_000_000


class TestThresholds:
    """Test SubmissionThresholds defaults and validation."""

    def test_defaults(self) -> None:
        thresholds = SubmissionThresholds()
        assert thresholds.min_price_change_percent == 0.5
        assert thresholds.max_time_between_updates_ms == 6 * HOUR
        assert thresholds.min_time_between_updates_ms == 30 * MINUTE
        assert thresholds.min_source_count == 3

    def test_max_below_min(self) -> None:
        with pytest.raises(ValueError, match="must be at least min_time"):
            SubmissionThresholds(max_time_between_updates_ms=1, min_time_between_updates_ms=2)

    def test_min_source_count(self) -> None:
        with pytest.raises(ValueError, match="min_source_count"):
            SubmissionThresholds(min_source_count=0)


class TestEvaluateSubmission:
    """Test decision precedence."""

    thresholds = SubmissionThresholds()

    @pytest.mark.parametrize("source_count", [1, 4])
    def test_initial_submission(self, source_count: int) -> None:
        """No prior submission always updates, even with few sources."""
        decision = evaluate_submission(latest(95000.0, source_count), None, self.thresholds, NOW)

        assert decision.should_update
        assert decision.reason == "initial submission"
        assert decision.price_in_satoshis == 9_500_000_000_000
        assert decision.percent_change is None

    def test_insufficient_sources_beats_max_time(self) -> None:
        """Low confidence overrides the forced refresh."""
        decision = evaluate_submission(
            latest(95000.0, source_count=2), last(90000.0, 7 * HOUR), self.thresholds, NOW
        )
        assert not decision.should_update
        assert decision.reason == "insufficient sources"

    def test_max_time_exceeded(self) -> None:
        """Seven hours with no change still forces an update."""
        decision = evaluate_submission(
            latest(95000.0), last(95000.0, 7 * HOUR), self.thresholds, NOW
        )
        assert decision.should_update
        assert decision.reason == "max time exceeded"
        assert decision.percent_change == 0.0

    def test_max_time_boundary(self) -> None:
        """Exactly the max interval counts as exceeded."""
        decision = evaluate_submission(
            latest(95000.0), last(95000.0, 6 * HOUR), self.thresholds, NOW
        )
        assert decision.reason == "max time exceeded"

    def test_throttle_beats_price_change(self) -> None:
        """Ten minutes after the last submission a 5% move is still throttled."""
        decision = evaluate_submission(
            latest(99750.0), last(95000.0, 10 * MINUTE), self.thresholds, NOW
        )
        assert not decision.should_update
        assert decision.reason == "throttled"
        assert decision.percent_change == pytest.approx(5.0)

    def test_price_change_exceeded(self) -> None:
        decision = evaluate_submission(
            latest(95500.0), last(95000.0, 1 * HOUR), self.thresholds, NOW
        )
        assert decision.should_update
        assert decision.reason == "price change exceeded threshold"
        assert decision.percent_change == pytest.approx(500 / 95000 * 100)

    def test_price_change_at_threshold(self) -> None:
        """A move of exactly the threshold updates."""
        decision = evaluate_submission(
            latest(100.5), last(100.0, 1 * HOUR), self.thresholds, NOW
        )
        assert decision.should_update

    def test_no_update_needed(self) -> None:
        decision = evaluate_submission(
            latest(95100.0), last(95000.0, 1 * HOUR), self.thresholds, NOW
        )
        assert not decision.should_update
        assert decision.reason == "no update needed"
        assert decision.source_count == 4
        assert decision.timestamp == NOW


def seeded_store(price: float | None = 95000.0, source_count: int = 4) -> PriceStore:
    store = PriceStore("sqlite://")
    if price is not None:
        store.append_aggregated(price=price, timestamp=NOW, source_count=source_count)
    return store


class TestCheckAndSubmit:
    """Test the publish-and-record flow."""

    def test_no_aggregated_price(self) -> None:
        publisher = FakePublisher()
        gate = SubmissionGate(seeded_store(None), publisher)
        outcome = asyncio.run(gate.check_and_submit(now_ms=NOW))

        assert not outcome.updated
        assert outcome.reason == "no aggregated price"
        assert publisher.published == []

    def test_initial_publish_recorded(self) -> None:
        """A successful publish writes exactly one submitted entry."""
        store = seeded_store()
        publisher = FakePublisher()
        outcome = asyncio.run(SubmissionGate(store, publisher).check_and_submit(now_ms=NOW))

        assert outcome.updated
        assert publisher.published == [9_500_000_000_000]
        (record,) = store.get_submissions()
        assert record.status == "submitted"
        assert record.txid == outcome.txid
        assert record.reason == "initial submission"
        assert record.submission_timestamp == NOW

    def test_publish_failure_recorded_as_failed(self) -> None:
        """A failed publish never produces a submitted entry."""
        store = seeded_store()
        publisher = FakePublisher(error=ChainPublishError("reverted"))
        outcome = asyncio.run(SubmissionGate(store, publisher).check_and_submit(now_ms=NOW))

        assert not outcome.updated
        (record,) = store.get_submissions()
        assert record.status == "failed"
        assert record.txid == ""
        assert store.get_latest_submission() is None

    def test_unconfirmed_publish_keeps_txid(self) -> None:
        """A sent but unconfirmed transaction is recorded as failed with its hash."""
        store = seeded_store()
        publisher = FakePublisher(error=ChainPublishError("reverted", txid="0xsent"))
        outcome = asyncio.run(SubmissionGate(store, publisher).check_and_submit(now_ms=NOW))

        assert not outcome.updated
        (record,) = store.get_submissions()
        assert (record.status, record.txid) == ("failed", "0xsent")
        assert store.get_latest_submission() is None
        assert store.update_submission_status("0xsent", "confirmed")
        assert store.get_latest_submission().txid == "0xsent"

    def test_no_update_writes_nothing(self) -> None:
        store = seeded_store(95100.0)
        store.append_submission(
            "0x1", to_satoshis(95000.0), NOW - HOUR, "submitted", "initial submission", 4
        )
        publisher = FakePublisher()
        outcome = asyncio.run(SubmissionGate(store, publisher).check_and_submit(now_ms=NOW))

        assert outcome.reason == "no update needed"
        assert publisher.published == []
        assert len(store.get_submissions()) == 1

    def test_dry_run(self) -> None:
        """Without a publisher decisions are only logged."""
        store = seeded_store()
        gate = SubmissionGate(store, None)
        outcome = asyncio.run(gate.check_and_submit(now_ms=NOW))

        assert gate.dry_run
        assert outcome.decision.should_update
        assert not outcome.updated
        assert store.get_submissions() == []

    def test_unexpected_error_contained(self) -> None:
        """Errors inside the gate come back as a non-update."""
        store = seeded_store()
        publisher = FakePublisher(error=RuntimeError("bug"))
        outcome = asyncio.run(SubmissionGate(store, publisher).check_and_submit(now_ms=NOW))

        assert not outcome.updated
        assert outcome.reason == "evaluation error"
        assert store.get_submissions() == []

    def test_concurrent_checks_publish_once(self) -> None:
        """Overlapping checks are serialized; the second sees the first's write."""
        store = seeded_store()
        publisher = FakePublisher()
        gate = SubmissionGate(store, publisher)

        async def run_both():
            return await asyncio.gather(
                gate.check_and_submit(now_ms=NOW), gate.check_and_submit(now_ms=NOW)
            )

        outcomes = asyncio.run(run_both())

        assert [o.updated for o in outcomes] == [True, False]
        assert outcomes[1].reason == "throttled"
        assert len(publisher.published) == 1

    def test_ledger_changed_abandons(self) -> None:
        """A submission recorded by another writer after evaluation stops the publish."""
        store = seeded_store()
        publisher = FakePublisher()
        gate = SubmissionGate(store, publisher)
        original = store.get_latest_submission
        calls = {"n": 0}

        def racing_latest():
            calls["n"] += 1
            if calls["n"] == 2:
                store.append_submission("0xother", 1, NOW, "submitted", "initial submission", 4)
            return original()

        store.get_latest_submission = racing_latest
        outcome = asyncio.run(gate.check_and_submit(now_ms=NOW))

        assert not outcome.updated
        assert publisher.published == []
        assert [r.txid for r in store.get_submissions()] == ["0xother"]
