# backend/core/finance_metrics.py
"""
Rolling finance means over the most recent N hour summaries of a product.

One algorithm, two callers: the scheduled full recompute (persists rows) and
the on-demand path below (precomputed rows first, history fallback, cached).
"""
import logging
from dataclasses import asdict, dataclass
from typing import Iterable, Optional

import pandas as pd

from backend import crud
from backend.core.cache import TTLCache, get_cache
from backend.models import SUMMARY_NUMERIC_FIELDS

logger = logging.getLogger(__name__)

AVG_FIELDS = tuple(f"avg_{f}" for f in SUMMARY_NUMERIC_FIELDS)


@dataclass(frozen=True)
class FinanceAverages:
    product_id: str
    window_hours: int
    observations: int
    avg_open_instant_buy_price: float = 0.0
    avg_close_instant_buy_price: float = 0.0
    avg_min_instant_buy_price: float = 0.0
    avg_max_instant_buy_price: float = 0.0
    avg_open_instant_sell_price: float = 0.0
    avg_close_instant_sell_price: float = 0.0
    avg_min_instant_sell_price: float = 0.0
    avg_max_instant_sell_price: float = 0.0
    avg_created_buy_orders: float = 0.0
    avg_created_sell_orders: float = 0.0
    avg_added_items_buy_orders: float = 0.0
    avg_added_items_sell_orders: float = 0.0
    avg_delta_buy_orders: float = 0.0
    avg_delta_sell_orders: float = 0.0
    avg_delta_buy_volume: float = 0.0
    avg_delta_sell_volume: float = 0.0
    avg_insta_bought_items: float = 0.0
    avg_insta_sold_items: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "FinanceAverages":
        return cls(**d)

    @classmethod
    def from_row(cls, row) -> "FinanceAverages":
        return cls(
            product_id=row.product_id,
            window_hours=row.window_hours,
            observations=row.observations,
            **{f: getattr(row, f) for f in AVG_FIELDS},
        )


def normalize_windows(windows: Iterable[int]) -> list[int]:
    return sorted({int(w) for w in windows if w is not None and int(w) > 0})


def summaries_to_frame(summaries) -> pd.DataFrame:
    """ORM HourSummary rows -> DataFrame with product_id, hour_start and every numeric field."""
    cols = ["product_id", "hour_start", *SUMMARY_NUMERIC_FIELDS]
    if not summaries:
        return pd.DataFrame(columns=cols)
    return pd.DataFrame([{c: getattr(s, c) for c in cols} for s in summaries], columns=cols)


def compute_window_averages(frame: pd.DataFrame, windows: Iterable[int]) -> dict[int, dict[str, FinanceAverages]]:
    """
    For every product in `frame` and every window W, the arithmetic mean of
    each numeric field over its W most recent hours (fewer when history is
    short). Products without rows produce nothing.

    `frame` may hold more than max(windows) rows per product; smaller windows
    are taken by truncating the same per-product ordering.
    """
    wins = normalize_windows(windows)
    result: dict[int, dict[str, FinanceAverages]] = {w: {} for w in wins}
    if frame.empty or not wins:
        return result

    ordered = frame.sort_values(["product_id", "hour_start"], ascending=[True, False], kind="mergesort")
    values = ordered[["product_id", *SUMMARY_NUMERIC_FIELDS]].astype({f: "float64" for f in SUMMARY_NUMERIC_FIELDS})

    for w in wins:
        head = values.groupby("product_id", sort=True).head(w)
        grouped = head.groupby("product_id", sort=True)
        means = grouped[list(SUMMARY_NUMERIC_FIELDS)].mean()
        counts = grouped.size()
        for pid, row in means.iterrows():
            result[w][pid] = FinanceAverages(
                product_id=pid,
                window_hours=w,
                observations=int(counts[pid]),
                **{f"avg_{f}": float(row[f]) for f in SUMMARY_NUMERIC_FIELDS},
            )
    return result


def _cache_key(product_id: str, window_hours: int) -> str:
    return f"finance:{product_id}:{window_hours}"


class FinanceMetricsService:
    """On-demand averages for arbitrary products and windows."""

    def __init__(self, cache: Optional[TTLCache] = None, ttl: Optional[float] = None):
        self.cache = cache if cache is not None else get_cache()
        self.ttl = ttl

    def get_averages(self, session, product_id: str, window_hours: int) -> Optional[FinanceAverages]:
        """Averages for one product and window; None when the product has no history."""
        if window_hours <= 0:
            raise ValueError("window must be a positive number of hours")

        def compute():
            found = self._load(session, [product_id], [window_hours])
            avg = found[window_hours].get(product_id)
            return avg.to_dict() if avg else None

        cached = self.cache.get_or_compute(_cache_key(product_id, window_hours), compute, self.ttl)
        return FinanceAverages.from_dict(cached) if cached else None

    def get_multi_window_averages(self, session, product_ids: Iterable[str],
                                  windows: Iterable[int]) -> dict[int, dict[str, FinanceAverages]]:
        ids = list(dict.fromkeys(product_ids))
        wins = normalize_windows(windows)
        result: dict[int, dict[str, FinanceAverages]] = {w: {} for w in wins}
        if not ids or not wins:
            return result

        missing_ids = set()
        for w in wins:
            for pid in ids:
                hit = self.cache.get(_cache_key(pid, w))
                if hit:
                    result[w][pid] = FinanceAverages.from_dict(hit)
                else:
                    missing_ids.add(pid)

        if missing_ids:
            loaded = self._load(session, sorted(missing_ids), wins)
            for w, by_id in loaded.items():
                for pid, avg in by_id.items():
                    if pid in result[w]:
                        continue
                    result[w][pid] = avg
                    self.cache.set(_cache_key(pid, w), avg.to_dict(), self.ttl)
        return result

    def _load(self, session, product_ids: list[str], windows: list[int]) -> dict[int, dict[str, FinanceAverages]]:
        """Precomputed rows first; one history fetch at the max window for the gaps."""
        out: dict[int, dict[str, FinanceAverages]] = {w: {} for w in windows}
        for row in crud.find_metrics_windows(session, product_ids, windows):
            out[row.window_hours][row.product_id] = FinanceAverages.from_row(row)

        gaps = sorted({pid for w in windows for pid in product_ids if pid not in out[w]})
        if not gaps:
            return out

        logger.debug(f"Finance averages fallback for {len(gaps)} products, windows={windows}")
        history = crud.find_last_summaries(session, gaps, max(windows))
        computed = compute_window_averages(summaries_to_frame(history), windows)
        for w in windows:
            for pid, avg in computed[w].items():
                out[w].setdefault(pid, avg)
        return out
