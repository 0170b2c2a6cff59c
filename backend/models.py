# backend/models.py
import enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    and_,
)
from sqlalchemy.orm import foreign, relationship

from backend.database import Base, utcnow


class Side(str, enum.Enum):
    BUY = "BUY"
    SELL = "SELL"


# ---------------------------------------------------------------------
# Raw feed readings (owned by ingestion, purged after compaction)
# ---------------------------------------------------------------------
class RawSnapshot(Base):
    __tablename__ = "raw_snapshots"
    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(String(128), nullable=False)
    fetched_at = Column(DateTime, nullable=False)      # our poll time
    api_timestamp = Column(DateTime, nullable=False)   # feed-wide lastUpdated

    instant_buy_price = Column(Float, nullable=False, default=0.0)
    instant_sell_price = Column(Float, nullable=False, default=0.0)
    weighted_buy_price = Column(Float, nullable=False, default=0.0)
    weighted_sell_price = Column(Float, nullable=False, default=0.0)

    buy_moving_week = Column(BigInteger, nullable=False, default=0)
    sell_moving_week = Column(BigInteger, nullable=False, default=0)
    active_buy_orders = Column(Integer, nullable=False, default=0)
    active_sell_orders = Column(Integer, nullable=False, default=0)
    buy_volume = Column(BigInteger, nullable=False, default=0)
    sell_volume = Column(BigInteger, nullable=False, default=0)

    # [{price_per_unit, amount, orders}, ...] best price first
    buy_ladder = Column(JSON, nullable=False, default=list)
    sell_ladder = Column(JSON, nullable=False, default=list)

    __table_args__ = (
        Index("ix_raw_product_fetched", "product_id", "fetched_at"),
        Index("ix_raw_fetched", "fetched_at"),
    )

    def __repr__(self):
        return f"<RawSnapshot {self.product_id} {self.fetched_at} {self.instant_buy_price}/{self.instant_sell_price}>"


# ---------------------------------------------------------------------
# Compacted hour buckets
# ---------------------------------------------------------------------
class HourSummary(Base):
    __tablename__ = "hour_summaries"
    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(String(128), nullable=False, index=True)
    hour_start = Column(DateTime, nullable=False, index=True)

    open_instant_buy_price = Column(Float, nullable=False, default=0.0)
    close_instant_buy_price = Column(Float, nullable=False, default=0.0)
    min_instant_buy_price = Column(Float, nullable=False, default=0.0)
    max_instant_buy_price = Column(Float, nullable=False, default=0.0)

    open_instant_sell_price = Column(Float, nullable=False, default=0.0)
    close_instant_sell_price = Column(Float, nullable=False, default=0.0)
    min_instant_sell_price = Column(Float, nullable=False, default=0.0)
    max_instant_sell_price = Column(Float, nullable=False, default=0.0)

    created_buy_orders = Column(BigInteger, nullable=False, default=0)
    created_sell_orders = Column(BigInteger, nullable=False, default=0)
    added_items_buy_orders = Column(BigInteger, nullable=False, default=0)
    added_items_sell_orders = Column(BigInteger, nullable=False, default=0)
    delta_buy_orders = Column(BigInteger, nullable=False, default=0)
    delta_sell_orders = Column(BigInteger, nullable=False, default=0)
    delta_buy_volume = Column(BigInteger, nullable=False, default=0)
    delta_sell_volume = Column(BigInteger, nullable=False, default=0)
    insta_bought_items = Column(BigInteger, nullable=False, default=0)
    insta_sold_items = Column(BigInteger, nullable=False, default=0)

    points = relationship(
        "MinutePoint",
        back_populates="summary",
        cascade="all, delete-orphan",
        order_by="MinutePoint.snapshot_time",
        lazy="select",
    )

    __table_args__ = (UniqueConstraint("product_id", "hour_start", name="uq_summary_product_hour"),)

    def __repr__(self):
        return f"<HourSummary {self.product_id} {self.hour_start}>"


class MinutePoint(Base):
    __tablename__ = "minute_points"
    id = Column(Integer, primary_key=True, autoincrement=True)
    summary_id = Column(Integer, ForeignKey("hour_summaries.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(128), nullable=False, index=True)
    snapshot_time = Column(DateTime, nullable=False, index=True)
    api_timestamp = Column(DateTime, nullable=False)

    instant_buy_price = Column(Float, nullable=False, default=0.0)
    instant_sell_price = Column(Float, nullable=False, default=0.0)
    weighted_buy_price = Column(Float, nullable=False, default=0.0)
    weighted_sell_price = Column(Float, nullable=False, default=0.0)
    buy_moving_week = Column(BigInteger, nullable=False, default=0)
    sell_moving_week = Column(BigInteger, nullable=False, default=0)
    active_buy_orders = Column(Integer, nullable=False, default=0)
    active_sell_orders = Column(Integer, nullable=False, default=0)
    buy_volume = Column(BigInteger, nullable=False, default=0)
    sell_volume = Column(BigInteger, nullable=False, default=0)

    summary = relationship("HourSummary", back_populates="points")

    # one level type, two owned collections split by side
    buy_orders = relationship(
        "OrderLevel",
        primaryjoin=lambda: and_(MinutePoint.id == foreign(OrderLevel.point_id), OrderLevel.side == Side.BUY),
        order_by="OrderLevel.level_index",
        cascade="all, delete-orphan",
        overlaps="sell_orders",
    )
    sell_orders = relationship(
        "OrderLevel",
        primaryjoin=lambda: and_(MinutePoint.id == foreign(OrderLevel.point_id), OrderLevel.side == Side.SELL),
        order_by="OrderLevel.level_index",
        cascade="all, delete-orphan",
        overlaps="buy_orders",
    )


class OrderLevel(Base):
    __tablename__ = "order_levels"
    id = Column(Integer, primary_key=True, autoincrement=True)
    point_id = Column(Integer, ForeignKey("minute_points.id", ondelete="CASCADE"), nullable=False)
    side = Column(Enum(Side, name="order_side"), nullable=False)
    level_index = Column(Integer, nullable=False)
    price_per_unit = Column(Float, nullable=False)
    amount = Column(BigInteger, nullable=False)
    orders = Column(Integer, nullable=False)

    __table_args__ = (Index("ix_level_point_side", "point_id", "side"),)


# ---------------------------------------------------------------------
# Rolling finance means, one row per (product, window)
# ---------------------------------------------------------------------
class FinanceMetricsWindow(Base):
    __tablename__ = "finance_metrics"
    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(String(128), nullable=False, index=True)
    window_hours = Column(Integer, nullable=False, index=True)
    computed_at = Column(DateTime, nullable=False, default=utcnow)
    observations = Column(Integer, nullable=False, default=0)

    avg_open_instant_buy_price = Column(Float, nullable=False, default=0.0)
    avg_close_instant_buy_price = Column(Float, nullable=False, default=0.0)
    avg_min_instant_buy_price = Column(Float, nullable=False, default=0.0)
    avg_max_instant_buy_price = Column(Float, nullable=False, default=0.0)
    avg_open_instant_sell_price = Column(Float, nullable=False, default=0.0)
    avg_close_instant_sell_price = Column(Float, nullable=False, default=0.0)
    avg_min_instant_sell_price = Column(Float, nullable=False, default=0.0)
    avg_max_instant_sell_price = Column(Float, nullable=False, default=0.0)
    avg_created_buy_orders = Column(Float, nullable=False, default=0.0)
    avg_created_sell_orders = Column(Float, nullable=False, default=0.0)
    avg_added_items_buy_orders = Column(Float, nullable=False, default=0.0)
    avg_added_items_sell_orders = Column(Float, nullable=False, default=0.0)
    avg_delta_buy_orders = Column(Float, nullable=False, default=0.0)
    avg_delta_sell_orders = Column(Float, nullable=False, default=0.0)
    avg_delta_buy_volume = Column(Float, nullable=False, default=0.0)
    avg_delta_sell_volume = Column(Float, nullable=False, default=0.0)
    avg_insta_bought_items = Column(Float, nullable=False, default=0.0)
    avg_insta_sold_items = Column(Float, nullable=False, default=0.0)

    __table_args__ = (UniqueConstraint("product_id", "window_hours", name="uq_metrics_product_window"),)


# HourSummary columns averaged into FinanceMetricsWindow as avg_<name>
SUMMARY_NUMERIC_FIELDS = (
    "open_instant_buy_price",
    "close_instant_buy_price",
    "min_instant_buy_price",
    "max_instant_buy_price",
    "open_instant_sell_price",
    "close_instant_sell_price",
    "min_instant_sell_price",
    "max_instant_sell_price",
    "created_buy_orders",
    "created_sell_orders",
    "added_items_buy_orders",
    "added_items_sell_orders",
    "delta_buy_orders",
    "delta_sell_orders",
    "delta_buy_volume",
    "delta_sell_volume",
    "insta_bought_items",
    "insta_sold_items",
)
