# backend/core/market_data.py
"""Read-side queries behind the items endpoints."""
from datetime import datetime
from typing import Optional

from backend import crud
from backend.core.errors import NotFoundError
from backend.core.finance_metrics import FinanceAverages, FinanceMetricsService
from backend.core.opportunities import ItemFilter
from backend.core.paging import paginate

ITEM_SORTS = {
    "spread": lambda s: s.instant_buy_price - s.instant_sell_price,
    "ibuydesc": lambda s: s.instant_buy_price,
    "iselldesc": lambda s: s.instant_sell_price,
}


def list_items(session, item_filter: ItemFilter, sort: Optional[str] = None,
               page: int = 0, limit: int = 50) -> dict:
    snaps = crud.search_latest_snapshots(
        session, item_filter.q, item_filter.min_sell, item_filter.max_sell,
        item_filter.min_buy, item_filter.max_buy, item_filter.min_spread,
    )
    key = ITEM_SORTS.get((sort or "").strip().lower())
    if key is not None:
        snaps = sorted(snaps, key=key, reverse=True)
    return paginate(snaps, page, limit)


def get_item(session, product_id: str) -> dict:
    snapshot = crud.find_latest_snapshot(session, product_id)
    summary = crud.find_latest_summary(session, product_id)
    if snapshot is None and summary is None:
        raise NotFoundError(f"product {product_id} not found")
    return {"product_id": product_id, "latest_snapshot": snapshot, "latest_summary": summary}


def get_history(session, product_id: str, start: datetime, end: datetime, with_points: bool = False) -> list[dict]:
    """Hour summaries in [start, end), optionally with their points deduplicated by snapshot time."""
    if start >= end:
        raise ValueError("'from' must be earlier than 'to'")
    summaries = crud.find_summary_range(session, product_id, start, end)
    if not summaries:
        raise NotFoundError(f"no history for {product_id} in [{start}, {end})")

    out = []
    for s in summaries:
        entry = {"summary": s, "points": None}
        if with_points:
            seen, points = set(), []
            for p in s.points:
                if p.snapshot_time in seen:
                    continue
                seen.add(p.snapshot_time)
                points.append(p)
            entry["points"] = points
        out.append(entry)
    return out


def get_averages(session, product_id: str, window_hours: int,
                 finance: Optional[FinanceMetricsService] = None) -> FinanceAverages:
    if window_hours <= 0:
        raise ValueError("window must be a positive number of hours")
    avg = (finance or FinanceMetricsService()).get_averages(session, product_id, window_hours)
    if avg is None:
        raise NotFoundError(f"no hour summaries for {product_id}")
    return avg
