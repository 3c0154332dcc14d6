"""PriceStore: SQLAlchemy persistence for feeds, history, volatility and the ledger.

Every query the pipeline issues is either an indexed append, an upsert on a
composite key, a timestamp-bounded range, or a "latest by key" lookup.

.. code-block:: python

    >>> store = PriceStore("sqlite://")
    >>> store.append_price_feed("kraken", 95000.0, 0.15, 1700000000000)
    >>> store.get_latest_source_prices(["kraken"])["kraken"].price
    95000.0
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from sqlalchemy import create_engine, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import (
    MS_PER_DAY,
    SUBMISSION_STATUSES,
    AggregatedPriceRecord,
    Base,
    HistoricalPricePoint,
    PriceFeedRecord,
    SubmissionRecord,
    VolatilityRecord,
)

logger = logging.getLogger(__name__)

# Statuses that mean a price actually reached the chain.
PUBLISHED_STATUSES = ("submitted", "confirmed")


@dataclass
class UpsertCounts:
    """Rows written by an upsert batch."""

    inserted: int = 0
    updated: int = 0


def make_engine(database_url: str) -> Engine:
    """Create an engine for the given SQLAlchemy URL.

    In-memory SQLite databases are pinned to a single connection so every
    session sees the same data.

    :param database_url: SQLAlchemy database URL.
    :returns: Configured Engine.
    """
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(database_url, pool_pre_ping=True)


class PriceStore:
    """Persistence collaborator for the oracle pipeline.

    :ivar engine: SQLAlchemy engine.
    :ivar session_factory: Session factory bound to the engine.
    """

    def __init__(self, database_url: str = "sqlite:///btc_oracle.db") -> None:
        """Open (and if needed create) the database.

        :param database_url: SQLAlchemy database URL.
        """
        self.engine = make_engine(database_url)
        self.session_factory = sessionmaker(
            bind=self.engine,
            autoflush=False,
            expire_on_commit=False,
        )
        Base.metadata.create_all(self.engine)
        logger.debug(f"PriceStore ready at {self.engine.url.render_as_string()}")

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Yield a session that commits on success and rolls back on error."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self) -> None:
        self.engine.dispose()

    # -- price feed -------------------------------------------------------

    def append_price_feed(
        self, source: str, price: float, weight: float, timestamp: int
    ) -> None:
        with self.session_scope() as session:
            session.add(
                PriceFeedRecord(
                    source=source, price=price, weight=weight, timestamp=timestamp
                )
            )

    def get_price_feed_range(self, start: int, end: int) -> list[PriceFeedRecord]:
        """Price-feed rows with ``start <= timestamp <= end``, ascending."""
        with self.session_scope() as session:
            stmt = (
                select(PriceFeedRecord)
                .where(PriceFeedRecord.timestamp >= start)
                .where(PriceFeedRecord.timestamp <= end)
                .order_by(PriceFeedRecord.timestamp, PriceFeedRecord.id)
            )
            return list(session.scalars(stmt))

    def get_latest_source_prices(
        self, sources: Iterable[str]
    ) -> dict[str, PriceFeedRecord]:
        """Most recent price-feed row per source.

        Sources that never produced a quote are absent from the result.
        """
        latest: dict[str, PriceFeedRecord] = {}
        with self.session_scope() as session:
            for source in sources:
                stmt = (
                    select(PriceFeedRecord)
                    .where(PriceFeedRecord.source == source)
                    .order_by(PriceFeedRecord.timestamp.desc(), PriceFeedRecord.id.desc())
                    .limit(1)
                )
                record = session.scalars(stmt).first()
                if record is not None:
                    latest[source] = record
        return latest

    # -- historical prices ------------------------------------------------

    def upsert_historical(self, points: Iterable[dict]) -> UpsertCounts:
        """Insert or replace daily points keyed by ``(source, timestamp)``.

        Each dict needs ``source``, ``timestamp`` and ``price``; ``open``,
        ``high``, ``low`` and ``volume`` are optional. ``is_daily`` and
        ``day_index`` are derived.

        :param points: Points to write.
        :returns: How many rows were inserted and how many replaced.
        """
        counts = UpsertCounts()
        with self.session_scope() as session:
            for point in points:
                values = {
                    "price": point["price"],
                    "is_daily": True,
                    "day_index": point["timestamp"] // MS_PER_DAY,
                    "open": point.get("open"),
                    "high": point.get("high"),
                    "low": point.get("low"),
                    "volume": point.get("volume"),
                }
                existing = session.scalars(
                    select(HistoricalPricePoint)
                    .where(HistoricalPricePoint.source == point["source"])
                    .where(HistoricalPricePoint.timestamp == point["timestamp"])
                ).first()
                if existing is None:
                    session.add(
                        HistoricalPricePoint(
                            source=point["source"],
                            timestamp=point["timestamp"],
                            **values,
                        )
                    )
                    # Flush so a duplicate key later in the same batch updates
                    session.flush()
                    counts.inserted += 1
                else:
                    for key, value in values.items():
                        setattr(existing, key, value)
                    counts.updated += 1
        return counts

    def get_historical_range(self, start: int, end: int) -> list[HistoricalPricePoint]:
        """Daily points with ``start < timestamp <= end``, ascending."""
        with self.session_scope() as session:
            stmt = (
                select(HistoricalPricePoint)
                .where(HistoricalPricePoint.is_daily.is_(True))
                .where(HistoricalPricePoint.timestamp > start)
                .where(HistoricalPricePoint.timestamp <= end)
                .order_by(HistoricalPricePoint.timestamp, HistoricalPricePoint.id)
            )
            return list(session.scalars(stmt))

    def get_historical_at_or_before(self, target: int) -> HistoricalPricePoint | None:
        with self.session_scope() as session:
            stmt = (
                select(HistoricalPricePoint)
                .where(HistoricalPricePoint.is_daily.is_(True))
                .where(HistoricalPricePoint.timestamp <= target)
                .order_by(HistoricalPricePoint.timestamp.desc(), HistoricalPricePoint.id.desc())
                .limit(1)
            )
            return session.scalars(stmt).first()

    def count_historical(self) -> int:
        with self.session_scope() as session:
            return session.scalar(select(func.count(HistoricalPricePoint.id))) or 0

    def has_historical(self) -> bool:
        return self.count_historical() > 0

    # -- volatility -------------------------------------------------------

    def append_volatility(self, **fields) -> VolatilityRecord:
        record = VolatilityRecord(**fields)
        with self.session_scope() as session:
            session.add(record)
        return record

    def get_latest_volatility(self, timeframe: int) -> VolatilityRecord | None:
        """Most recently computed volatility for a timeframe (days)."""
        with self.session_scope() as session:
            stmt = (
                select(VolatilityRecord)
                .where(VolatilityRecord.timeframe == timeframe)
                .order_by(VolatilityRecord.timestamp.desc(), VolatilityRecord.id.desc())
                .limit(1)
            )
            return session.scalars(stmt).first()

    # -- aggregated prices ------------------------------------------------

    def append_aggregated(
        self,
        price: float,
        timestamp: int,
        source_count: int,
        volatility: float = 0.0,
        range_24h: float | None = None,
    ) -> AggregatedPriceRecord:
        record = AggregatedPriceRecord(
            price=price,
            timestamp=timestamp,
            volatility=volatility,
            source_count=source_count,
            range_24h=range_24h,
        )
        with self.session_scope() as session:
            session.add(record)
        return record

    def get_latest_aggregated(self) -> AggregatedPriceRecord | None:
        with self.session_scope() as session:
            stmt = (
                select(AggregatedPriceRecord)
                .order_by(AggregatedPriceRecord.timestamp.desc(), AggregatedPriceRecord.id.desc())
                .limit(1)
            )
            return session.scalars(stmt).first()

    # -- submission ledger ------------------------------------------------

    def append_submission(
        self,
        txid: str,
        submitted_price_satoshis: int,
        submission_timestamp: int,
        status: str,
        reason: str,
        source_count: int,
        percent_change: float | None = None,
    ) -> SubmissionRecord:
        """Write one ledger entry.

        :raises ValueError: On an unknown status, or a ``submitted`` entry
            without a transaction id.
        """
        if status not in SUBMISSION_STATUSES:
            raise ValueError(f"Unknown submission status: {status}")
        if status != "failed" and not txid:
            raise ValueError(f"A '{status}' submission requires a txid")
        record = SubmissionRecord(
            txid=txid,
            submitted_price_satoshis=submitted_price_satoshis,
            submission_timestamp=submission_timestamp,
            status=status,
            reason=reason,
            percent_change=percent_change,
            source_count=source_count,
        )
        with self.session_scope() as session:
            session.add(record)
        logger.info(
            f"Recorded oracle submission: txid={txid or '-'}, "
            f"price={submitted_price_satoshis}, status={status}, reason={reason}"
        )
        return record

    def get_latest_submission(self) -> SubmissionRecord | None:
        """Most recent submission whose price reached the chain.

        Failed attempts are ledger history only; they carry no on-chain price.
        """
        with self.session_scope() as session:
            stmt = (
                select(SubmissionRecord)
                .where(SubmissionRecord.status.in_(PUBLISHED_STATUSES))
                .order_by(
                    SubmissionRecord.submission_timestamp.desc(),
                    SubmissionRecord.id.desc(),
                )
                .limit(1)
            )
            return session.scalars(stmt).first()

    def get_submissions(self) -> list[SubmissionRecord]:
        """Every ledger entry, oldest first."""
        with self.session_scope() as session:
            stmt = select(SubmissionRecord).order_by(
                SubmissionRecord.submission_timestamp, SubmissionRecord.id
            )
            return list(session.scalars(stmt))

    def update_submission_status(self, txid: str, status: str) -> bool:
        """Set the status of the ledger entry for ``txid``.

        :returns: False if no entry has that txid.
        :raises ValueError: On an unknown status.
        """
        if status not in SUBMISSION_STATUSES:
            raise ValueError(f"Unknown submission status: {status}")
        with self.session_scope() as session:
            record = session.scalars(
                select(SubmissionRecord).where(SubmissionRecord.txid == txid)
            ).first()
            if record is None:
                logger.warning(f"No submission found for txid {txid}")
                return False
            record.status = status
        return True
