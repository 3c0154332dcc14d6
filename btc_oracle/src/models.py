"""SQLAlchemy models for the oracle's persisted series.

All timestamps are integer milliseconds since the Unix epoch.
"""

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Float,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()

MS_PER_DAY = 86_400_000

SUBMISSION_STATUSES = ("submitted", "confirmed", "failed")


class PriceFeedRecord(Base):
    """One validated quote from one source. Never deleted."""

    __tablename__ = "price_feed"

    id = Column(Integer, primary_key=True)
    source = Column(String(50), nullable=False)
    price = Column(Float, nullable=False)
    weight = Column(Float, nullable=False)
    timestamp = Column(BigInteger, nullable=False)

    __table_args__ = (
        Index("idx_price_feed_time", "timestamp"),
        Index("idx_price_feed_source_time", "source", "timestamp"),
    )


class HistoricalPricePoint(Base):
    """Daily OHLCV candle; ``price`` holds the close."""

    __tablename__ = "historical_prices"

    id = Column(Integer, primary_key=True)
    timestamp = Column(BigInteger, nullable=False)
    price = Column(Float, nullable=False)
    source = Column(String(50), nullable=False)
    is_daily = Column(Boolean, nullable=False, default=True)
    day_index = Column(Integer, nullable=False)
    open = Column(Float)
    high = Column(Float)
    low = Column(Float)
    volume = Column(Float)

    __table_args__ = (
        UniqueConstraint("source", "timestamp", name="uq_historical_source_time"),
        Index("idx_historical_time", "timestamp"),
        Index("idx_historical_daily_time", "is_daily", "timestamp"),
    )


class VolatilityRecord(Base):
    """Annualized volatility for one timeframe, as computed at ``timestamp``."""

    __tablename__ = "historical_volatility"

    id = Column(Integer, primary_key=True)
    period = Column(BigInteger, nullable=False)
    volatility = Column(Float, nullable=False)
    timestamp = Column(BigInteger, nullable=False)
    timeframe = Column(Integer, nullable=False)
    calculation_method = Column(String(20), nullable=False, default="standard")
    data_points = Column(Integer, nullable=False)
    start_timestamp = Column(BigInteger, nullable=False)
    end_timestamp = Column(BigInteger, nullable=False)

    __table_args__ = (
        Index("idx_volatility_timeframe_time", "timeframe", "timestamp"),
    )


class AggregatedPriceRecord(Base):
    """Output of one aggregation cycle."""

    __tablename__ = "aggregated_prices"

    id = Column(Integer, primary_key=True)
    price = Column(Float, nullable=False)
    timestamp = Column(BigInteger, nullable=False)
    volatility = Column(Float, nullable=False, default=0.0)
    source_count = Column(Integer, nullable=False)
    range_24h = Column(Float)

    __table_args__ = (Index("idx_aggregated_time", "timestamp"),)

    def to_dict(self) -> dict:
        return {
            "price": self.price,
            "timestamp": self.timestamp,
            "volatility": self.volatility,
            "source_count": self.source_count,
            "range_24h": self.range_24h,
        }


class SubmissionRecord(Base):
    """Ledger entry for one on-chain publish attempt."""

    __tablename__ = "oracle_submissions"

    id = Column(Integer, primary_key=True)
    txid = Column(String(100), nullable=False, default="")
    submitted_price_satoshis = Column(BigInteger, nullable=False)
    submission_timestamp = Column(BigInteger, nullable=False)
    status = Column(String(20), nullable=False)
    reason = Column(String(100), nullable=False)
    percent_change = Column(Float)
    source_count = Column(Integer, nullable=False)

    __table_args__ = (
        Index("idx_submissions_time", "submission_timestamp"),
        Index("idx_submissions_txid", "txid"),
    )
