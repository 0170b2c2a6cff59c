# backend/crud.py
"""
Persistence collaborator: every query the compactor, the aggregator and the
serving layer need, expressed against plain SQLAlchemy sessions.
"""
from datetime import datetime
from typing import Iterable, Iterator, Optional

from sqlalchemy import and_, delete, func, or_, select

from backend.models import (
    SUMMARY_NUMERIC_FIELDS,
    FinanceMetricsWindow,
    HourSummary,
    MinutePoint,
    OrderLevel,
    RawSnapshot,
)

RAW_PAGE_SIZE = 500


# ---------------------------------------------------------------------
# 📥 Raw snapshots
# ---------------------------------------------------------------------
def insert_snapshots_bulk(session, snapshots: list[RawSnapshot]) -> int:
    """Persist one batch of raw snapshots."""
    if not snapshots:
        return 0
    session.add_all(snapshots)
    session.commit()
    return len(snapshots)


def latest_api_timestamps(session, product_ids: Iterable[str]) -> dict[str, datetime]:
    """Most recent feed timestamp already stored per product."""
    ids = list(product_ids)
    if not ids:
        return {}
    rows = (
        session.query(RawSnapshot.product_id, func.max(RawSnapshot.api_timestamp))
        .filter(RawSnapshot.product_id.in_(ids))
        .group_by(RawSnapshot.product_id)
        .all()
    )
    return {pid: ts for pid, ts in rows}


def find_oldest_snapshot_time(session) -> Optional[datetime]:
    return session.query(func.min(RawSnapshot.fetched_at)).scalar()


def find_product_ids_in_window(session, start: datetime, end: datetime) -> list[str]:
    rows = (
        session.query(RawSnapshot.product_id)
        .filter(RawSnapshot.fetched_at >= start, RawSnapshot.fetched_at < end)
        .distinct()
        .order_by(RawSnapshot.product_id)
        .all()
    )
    return [r[0] for r in rows]


def stream_window_snapshots(session, product_id: str, start: datetime, end: datetime,
                            page_size: int = RAW_PAGE_SIZE) -> Iterator[RawSnapshot]:
    """
    Forward-only iteration over one product's snapshots in [start, end),
    ordered by fetch time.

    Keyset pages on (fetched_at, id) so no server cursor stays open while the
    caller writes; each consumed page is expunged to bound the identity map.
    """
    last_ts, last_id = None, None
    while True:
        q = session.query(RawSnapshot).filter(
            RawSnapshot.product_id == product_id,
            RawSnapshot.fetched_at >= start,
            RawSnapshot.fetched_at < end,
        )
        if last_ts is not None:
            q = q.filter(
                or_(
                    RawSnapshot.fetched_at > last_ts,
                    and_(RawSnapshot.fetched_at == last_ts, RawSnapshot.id > last_id),
                )
            )
        page = q.order_by(RawSnapshot.fetched_at, RawSnapshot.id).limit(page_size).all()
        if not page:
            return
        for snap in page:
            yield snap
        last_ts, last_id = page[-1].fetched_at, page[-1].id
        for snap in page:
            session.expunge(snap)
        if len(page) < page_size:
            return


def delete_snapshots_in_window(session, start: datetime, end: datetime) -> int:
    res = session.execute(
        delete(RawSnapshot).where(RawSnapshot.fetched_at >= start, RawSnapshot.fetched_at < end)
    )
    session.commit()
    return res.rowcount or 0


# ---------------------------------------------------------------------
# 🧱 Hour summaries
# ---------------------------------------------------------------------
def get_or_create_summary(session, product_id: str, hour_start: datetime) -> HourSummary:
    """Upsert entry point: the existing row for the key, or a new one added to the session."""
    existing = (
        session.query(HourSummary)
        .filter(HourSummary.product_id == product_id, HourSummary.hour_start == hour_start)
        .first()
    )
    if existing:
        return existing
    summary = HourSummary(product_id=product_id, hour_start=hour_start)
    session.add(summary)
    session.flush()
    return summary


def clear_summary_points(session, summary: HourSummary) -> None:
    """Drop retained points of a summary that is being recomputed."""
    if summary.id is None:
        return
    point_ids = select(MinutePoint.id).where(MinutePoint.summary_id == summary.id)
    session.execute(delete(OrderLevel).where(OrderLevel.point_id.in_(point_ids)))
    session.execute(delete(MinutePoint).where(MinutePoint.summary_id == summary.id))
    session.expire(summary, ["points"])


def find_distinct_summary_product_ids(session) -> list[str]:
    rows = session.query(HourSummary.product_id).distinct().order_by(HourSummary.product_id).all()
    return [r[0] for r in rows]


def find_last_summaries(session, product_ids: Iterable[str], window: int) -> list[HourSummary]:
    """
    The `window` most recent summaries of every product in `product_ids`,
    ordered by product then hour_start descending. One query per call.
    """
    ids = list(product_ids)
    if not ids or window <= 0:
        return []
    ranked = (
        select(
            HourSummary.id.label("id"),
            func.row_number()
            .over(partition_by=HourSummary.product_id, order_by=HourSummary.hour_start.desc())
            .label("rn"),
        )
        .where(HourSummary.product_id.in_(ids))
        .subquery()
    )
    return (
        session.query(HourSummary)
        .join(ranked, ranked.c.id == HourSummary.id)
        .filter(ranked.c.rn <= window)
        .order_by(HourSummary.product_id, HourSummary.hour_start.desc())
        .all()
    )


def find_summary_range(session, product_id: str, start: datetime, end: datetime) -> list[HourSummary]:
    return (
        session.query(HourSummary)
        .filter(
            HourSummary.product_id == product_id,
            HourSummary.hour_start >= start,
            HourSummary.hour_start < end,
        )
        .order_by(HourSummary.hour_start)
        .all()
    )


def find_latest_summary(session, product_id: str) -> Optional[HourSummary]:
    return (
        session.query(HourSummary)
        .filter(HourSummary.product_id == product_id)
        .order_by(HourSummary.hour_start.desc())
        .first()
    )


# ---------------------------------------------------------------------
# 💾 Finance metrics windows
# ---------------------------------------------------------------------
def upsert_metrics_window(session, product_id: str, window_hours: int, values: dict,
                          computed_at: datetime) -> FinanceMetricsWindow:
    """
    Insert or overwrite the (product_id, window_hours) row.
    `values` holds observations plus one avg_<field> per summary field.
    """
    row = (
        session.query(FinanceMetricsWindow)
        .filter(
            FinanceMetricsWindow.product_id == product_id,
            FinanceMetricsWindow.window_hours == window_hours,
        )
        .first()
    )
    if row is None:
        row = FinanceMetricsWindow(product_id=product_id, window_hours=window_hours)
        session.add(row)
    row.computed_at = computed_at
    row.observations = int(values["observations"])
    for field in SUMMARY_NUMERIC_FIELDS:
        setattr(row, f"avg_{field}", float(values[f"avg_{field}"]))
    return row


def find_metrics_windows(session, product_ids: Iterable[str],
                         windows: Iterable[int]) -> list[FinanceMetricsWindow]:
    ids, wins = list(product_ids), list(windows)
    if not ids or not wins:
        return []
    return (
        session.query(FinanceMetricsWindow)
        .filter(
            FinanceMetricsWindow.product_id.in_(ids),
            FinanceMetricsWindow.window_hours.in_(wins),
        )
        .all()
    )


def count_metrics_windows(session) -> int:
    return session.query(func.count(FinanceMetricsWindow.id)).scalar() or 0


# ---------------------------------------------------------------------
# 🧹 Retention
# ---------------------------------------------------------------------
def purge_before(session, cutoff: datetime) -> dict[str, int]:
    """Delete retained points, summaries and raw snapshots older than cutoff."""
    old_summaries = select(HourSummary.id).where(HourSummary.hour_start < cutoff)
    old_points = select(MinutePoint.id).where(MinutePoint.summary_id.in_(old_summaries))

    counts = {
        "levels": session.execute(delete(OrderLevel).where(OrderLevel.point_id.in_(old_points))).rowcount or 0,
        "points": session.execute(
            delete(MinutePoint).where(MinutePoint.summary_id.in_(old_summaries))
        ).rowcount or 0,
        "summaries": session.execute(delete(HourSummary).where(HourSummary.hour_start < cutoff)).rowcount or 0,
        "snapshots": session.execute(delete(RawSnapshot).where(RawSnapshot.fetched_at < cutoff)).rowcount or 0,
    }
    session.commit()
    return counts


# ---------------------------------------------------------------------
# 📊 Latest snapshots (serving layer)
# ---------------------------------------------------------------------
def _latest_snapshot_ids():
    return (
        select(func.max(RawSnapshot.id).label("id"))
        .group_by(RawSnapshot.product_id)
        .subquery()
    )


def search_latest_snapshots(session, q: Optional[str] = None,
                            min_sell: Optional[float] = None, max_sell: Optional[float] = None,
                            min_buy: Optional[float] = None, max_buy: Optional[float] = None,
                            min_spread: Optional[float] = None) -> list[RawSnapshot]:
    """Newest stored snapshot of every product, filtered."""
    latest = _latest_snapshot_ids()
    query = session.query(RawSnapshot).join(latest, latest.c.id == RawSnapshot.id)
    if q:
        query = query.filter(RawSnapshot.product_id.ilike(f"%{q.strip()}%"))
    if min_sell is not None:
        query = query.filter(RawSnapshot.instant_sell_price >= min_sell)
    if max_sell is not None:
        query = query.filter(RawSnapshot.instant_sell_price <= max_sell)
    if min_buy is not None:
        query = query.filter(RawSnapshot.instant_buy_price >= min_buy)
    if max_buy is not None:
        query = query.filter(RawSnapshot.instant_buy_price <= max_buy)
    if min_spread is not None:
        query = query.filter(RawSnapshot.instant_buy_price - RawSnapshot.instant_sell_price >= min_spread)
    return query.order_by(RawSnapshot.product_id).all()


def find_latest_snapshot(session, product_id: str) -> Optional[RawSnapshot]:
    return (
        session.query(RawSnapshot)
        .filter(RawSnapshot.product_id == product_id)
        .order_by(RawSnapshot.fetched_at.desc(), RawSnapshot.id.desc())
        .first()
    )
