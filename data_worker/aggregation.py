# data_worker/aggregation.py
"""Scheduled full recompute of the per-product finance windows."""
import logging
from typing import Iterable, Optional

from backend import crud
from backend.config import get_settings
from backend.core.cache import TTLCache, get_cache
from backend.core.finance_metrics import compute_window_averages, normalize_windows, summaries_to_frame
from backend.database import SessionLocal, utcnow

logger = logging.getLogger(__name__)

settings = get_settings()


def _batches(items: list, size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]


def recompute_all(windows: Optional[Iterable[int]] = None, session_factory=SessionLocal,
                  cache: Optional[TTLCache] = None, batch_size: Optional[int] = None) -> dict:
    """
    Overwrite the finance rows of every product with history.

    One history fetch per batch at the largest window; every batch commits
    on its own and a failing batch is logged and skipped. The averages cache
    is invalidated wholesale once all batches ran.
    """
    wins = normalize_windows(windows if windows is not None else settings.AGGREGATION_WINDOWS)
    batch_size = max(1, batch_size or settings.AGGREGATION_BATCH_SIZE)
    report = {"products": 0, "rows": 0, "failed_batches": 0}
    if not wins:
        logger.warning("Aggregation skipped: no windows configured")
        return report

    session = session_factory()
    try:
        product_ids = crud.find_distinct_summary_product_ids(session)
    finally:
        session.close()

    report["products"] = len(product_ids)
    computed_at = utcnow()

    for batch in _batches(product_ids, batch_size):
        session = session_factory()
        try:
            history = crud.find_last_summaries(session, batch, max(wins))
            averages = compute_window_averages(summaries_to_frame(history), wins)
            rows = 0
            for w, by_id in averages.items():
                for pid, avg in by_id.items():
                    crud.upsert_metrics_window(session, pid, w, avg.to_dict(), computed_at)
                    rows += 1
            session.commit()
            report["rows"] += rows
        except Exception:
            session.rollback()
            report["failed_batches"] += 1
            logger.exception(f"Aggregation batch failed ({batch[0]} .. {batch[-1]})")
        finally:
            session.close()

    (cache or get_cache()).invalidate_all()
    logger.info(
        f"📈 Finance windows {wins} recomputed: products={report['products']} "
        f"rows={report['rows']} failed_batches={report['failed_batches']}"
    )
    return report


def metrics_table_empty(session_factory=SessionLocal) -> bool:
    session = session_factory()
    try:
        return crud.count_metrics_windows(session) == 0
    finally:
        session.close()
