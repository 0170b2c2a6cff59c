# data_worker/compaction.py
"""
Hourly compaction of raw order-book snapshots.

Every raw snapshot of one product in one UTC hour folds into a single
HourSummary (OHLC, churn, net deltas, flow) plus a thinned set of
MinutePoints: the first reading, then one whenever a price jumped or too
much time has passed since the last kept reading.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from backend import crud
from backend.config import get_settings
from backend.database import SessionLocal, utcnow
from backend.models import SUMMARY_NUMERIC_FIELDS, MinutePoint, OrderLevel, Side

logger = logging.getLogger(__name__)

settings = get_settings()

BATCH_POINTS = 256
HOUR = timedelta(hours=1)


def hour_floor(ts: datetime) -> datetime:
    return ts.replace(minute=0, second=0, microsecond=0)


# ---------------------------------------------------------------------
# Pure fold over one product-hour
# ---------------------------------------------------------------------
@dataclass
class HourStats:
    product_id: str
    hour_start: datetime
    open_instant_buy_price: float = 0.0
    close_instant_buy_price: float = 0.0
    min_instant_buy_price: float = 0.0
    max_instant_buy_price: float = 0.0
    open_instant_sell_price: float = 0.0
    close_instant_sell_price: float = 0.0
    min_instant_sell_price: float = 0.0
    max_instant_sell_price: float = 0.0
    created_buy_orders: int = 0
    created_sell_orders: int = 0
    added_items_buy_orders: int = 0
    added_items_sell_orders: int = 0
    delta_buy_orders: int = 0
    delta_sell_orders: int = 0
    delta_buy_volume: int = 0
    delta_sell_volume: int = 0
    insta_bought_items: int = 0
    insta_sold_items: int = 0
    processed: int = 0
    retained: int = 0

    def apply_to(self, summary) -> None:
        """Copy every summary column onto an HourSummary row."""
        for name in SUMMARY_NUMERIC_FIELDS:
            setattr(summary, name, getattr(self, name))


class SnapshotCompactor:
    """Stateless between calls; safe to share."""

    def __init__(self, price_move_threshold: float = 0.20, max_gap: timedelta = timedelta(minutes=5),
                 batch_points: int = BATCH_POINTS):
        self.price_move_threshold = price_move_threshold
        self.max_gap = max_gap
        self.batch_points = max(1, batch_points)

    @classmethod
    def from_settings(cls) -> "SnapshotCompactor":
        return cls(
            price_move_threshold=settings.PRICE_MOVE_THRESHOLD,
            max_gap=timedelta(minutes=settings.MAX_SNAPSHOT_GAP_MINUTES),
        )

    def moved(self, old: float, new: float) -> bool:
        if old == 0:
            return True
        return abs(new - old) / old >= self.price_move_threshold

    def should_keep(self, prev_kept, snap) -> bool:
        if prev_kept is None:
            return True
        if snap.fetched_at - prev_kept.fetched_at >= self.max_gap:
            return True
        return (self.moved(prev_kept.instant_sell_price, snap.instant_sell_price)
                or self.moved(prev_kept.instant_buy_price, snap.instant_buy_price))

    def compact(self, product_id: str, hour_start: datetime, snapshots: Iterable,
                flush: Callable[[list], None]) -> Optional[HourStats]:
        """
        Fold snapshots (ascending fetch time) into HourStats.

        Retained snapshots are passed to `flush` in batches of at most
        `batch_points`; the callback must not keep references it does not need.
        Returns None when there was nothing to compact.
        """
        stats = HourStats(product_id=product_id, hour_start=hour_start)
        kept: list = []
        first = prev = prev_kept = None

        for snap in snapshots:
            stats.processed += 1
            if first is None:
                first = prev_kept = snap
                stats.min_instant_buy_price = stats.max_instant_buy_price = snap.instant_buy_price
                stats.min_instant_sell_price = stats.max_instant_sell_price = snap.instant_sell_price
                kept.append(snap)
            else:
                stats.min_instant_buy_price = min(stats.min_instant_buy_price, snap.instant_buy_price)
                stats.max_instant_buy_price = max(stats.max_instant_buy_price, snap.instant_buy_price)
                stats.min_instant_sell_price = min(stats.min_instant_sell_price, snap.instant_sell_price)
                stats.max_instant_sell_price = max(stats.max_instant_sell_price, snap.instant_sell_price)

                # churn: only rises in the active order count are new orders
                if snap.active_buy_orders > prev.active_buy_orders:
                    stats.created_buy_orders += snap.active_buy_orders - prev.active_buy_orders
                    stats.added_items_buy_orders += snap.buy_volume - prev.buy_volume
                if snap.active_sell_orders > prev.active_sell_orders:
                    stats.created_sell_orders += snap.active_sell_orders - prev.active_sell_orders
                    stats.added_items_sell_orders += snap.sell_volume - prev.sell_volume

                # flow: positive steps of the moving-week counters
                if snap.buy_moving_week > prev.buy_moving_week:
                    stats.insta_bought_items += snap.buy_moving_week - prev.buy_moving_week
                if snap.sell_moving_week > prev.sell_moving_week:
                    stats.insta_sold_items += snap.sell_moving_week - prev.sell_moving_week

                if self.should_keep(prev_kept, snap):
                    kept.append(snap)
                    prev_kept = snap
            prev = snap

            if len(kept) >= self.batch_points:
                stats.retained += len(kept)
                flush(kept)
                kept = []

        if first is None:
            return None

        if kept:
            stats.retained += len(kept)
            flush(kept)

        last = prev
        stats.open_instant_buy_price = first.instant_buy_price
        stats.close_instant_buy_price = last.instant_buy_price
        stats.open_instant_sell_price = first.instant_sell_price
        stats.close_instant_sell_price = last.instant_sell_price
        stats.delta_buy_orders = last.active_buy_orders - first.active_buy_orders
        stats.delta_sell_orders = last.active_sell_orders - first.active_sell_orders
        stats.delta_buy_volume = last.buy_volume - first.buy_volume
        stats.delta_sell_volume = last.sell_volume - first.sell_volume
        return stats


# ---------------------------------------------------------------------
# Snapshot -> MinutePoint
# ---------------------------------------------------------------------
def _levels(ladder, side: Side, depth: int) -> list[OrderLevel]:
    out = []
    for i, lvl in enumerate((ladder or [])[:depth]):
        out.append(OrderLevel(
            side=side,
            level_index=i,
            price_per_unit=float(lvl.get("price_per_unit", 0.0)),
            amount=int(lvl.get("amount", 0)),
            orders=int(lvl.get("orders", 0)),
        ))
    return out


def to_minute_point(snap, summary_id: int, depth: int) -> MinutePoint:
    """Copy of a raw snapshot with both ladders truncated to `depth` levels."""
    point = MinutePoint(
        summary_id=summary_id,
        product_id=snap.product_id,
        snapshot_time=snap.fetched_at,
        api_timestamp=snap.api_timestamp,
        instant_buy_price=snap.instant_buy_price,
        instant_sell_price=snap.instant_sell_price,
        weighted_buy_price=snap.weighted_buy_price,
        weighted_sell_price=snap.weighted_sell_price,
        buy_moving_week=snap.buy_moving_week,
        sell_moving_week=snap.sell_moving_week,
        active_buy_orders=snap.active_buy_orders,
        active_sell_orders=snap.active_sell_orders,
        buy_volume=snap.buy_volume,
        sell_volume=snap.sell_volume,
    )
    point.buy_orders = _levels(snap.buy_ladder, Side.BUY, depth)
    point.sell_orders = _levels(snap.sell_ladder, Side.SELL, depth)
    return point


# ---------------------------------------------------------------------
# Hourly job
# ---------------------------------------------------------------------
_failed_attempts: dict[datetime, int] = {}


def compact_product_hour(session, compactor: SnapshotCompactor, product_id: str,
                         hour_start: datetime, depth: int) -> Optional[HourStats]:
    """Compact one product-hour inside `session`; the caller commits."""
    hour_end = hour_start + HOUR
    summary = crud.get_or_create_summary(session, product_id, hour_start)
    crud.clear_summary_points(session, summary)
    summary_id = summary.id

    def flush(batch):
        points = [to_minute_point(s, summary_id, depth) for s in batch]
        session.add_all(points)
        session.flush()
        # written rows leave the identity map; levels follow via cascade
        for p in points:
            session.expunge(p)

    snaps = crud.stream_window_snapshots(session, product_id, hour_start, hour_end)
    stats = compactor.compact(product_id, hour_start, snaps, flush)
    if stats is not None:
        stats.apply_to(summary)
    return stats


def process_single_hour(hour_start: datetime, session_factory=SessionLocal,
                        compactor: Optional[SnapshotCompactor] = None,
                        depth: Optional[int] = None,
                        max_attempts: Optional[int] = None) -> dict:
    """
    Compact every product with raw snapshots in [hour_start, hour_start + 1h).

    Each product commits on its own; a failing product is rolled back and
    skipped. Raw snapshots of the hour are deleted only when every product
    succeeded, or once the hour has failed `max_attempts` times.
    """
    hour_start = hour_floor(hour_start)
    hour_end = hour_start + HOUR
    compactor = compactor or SnapshotCompactor.from_settings()
    depth = depth if depth is not None else settings.POINT_ORDER_BOOK_DEPTH
    max_attempts = max_attempts if max_attempts is not None else settings.COMPACTION_MAX_ATTEMPTS

    session = session_factory()
    try:
        product_ids = crud.find_product_ids_in_window(session, hour_start, hour_end)
    finally:
        session.close()

    report = {"hour_start": hour_start, "products": len(product_ids), "compacted": 0,
              "failed": [], "points": 0, "purged": 0}
    if not product_ids:
        logger.debug(f"No snapshots to compact for {hour_start}")
        return report

    for pid in product_ids:
        session = session_factory()
        try:
            stats = compact_product_hour(session, compactor, pid, hour_start, depth)
            if stats is None:
                session.rollback()
            else:
                session.commit()
                report["compacted"] += 1
                report["points"] += stats.retained
                logger.debug(f"  • {pid} → processed={stats.processed} kept={stats.retained}")
        except Exception:
            session.rollback()
            report["failed"].append(pid)
            logger.exception(f"Compaction failed for {pid} @ {hour_start}")
        finally:
            session.close()

    if report["failed"]:
        attempts = _failed_attempts.get(hour_start, 0) + 1
        _failed_attempts[hour_start] = attempts
        if attempts < max_attempts:
            logger.warning(
                f"⚠️ Hour {hour_start}: {len(report['failed'])} products failed "
                f"(attempt {attempts}/{max_attempts}); raw snapshots kept for retry"
            )
            return report
        logger.error(
            f"❌ Hour {hour_start}: giving up on {report['failed']} after {attempts} attempts; purging raw snapshots"
        )

    _failed_attempts.pop(hour_start, None)
    session = session_factory()
    try:
        report["purged"] = crud.delete_snapshots_in_window(session, hour_start, hour_end)
    finally:
        session.close()

    logger.info(
        f"🗜️ Hour {hour_start} → products={report['products']} points kept={report['points']} "
        f"raw purged={report['purged']}"
    )
    return report


def run_compaction_tick(now: Optional[datetime] = None, session_factory=SessionLocal,
                        grace_seconds: Optional[int] = None, **kwargs) -> Optional[dict]:
    """Compact the oldest complete hour, or defer while it is still inside the grace period."""
    now = now or utcnow()
    grace = timedelta(seconds=grace_seconds if grace_seconds is not None else settings.COMPACTION_GRACE_SECONDS)

    session = session_factory()
    try:
        oldest = crud.find_oldest_snapshot_time(session)
    finally:
        session.close()

    if oldest is None:
        logger.debug("Compaction tick: no raw snapshots")
        return None

    hour_start = hour_floor(oldest)
    if now < hour_start + HOUR + grace:
        logger.debug(f"Compaction tick: hour {hour_start} not complete yet, deferring")
        return None

    return process_single_hour(hour_start, session_factory=session_factory, **kwargs)
