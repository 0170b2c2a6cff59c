# data_worker/ingestion_poll.py
import logging
import time
from datetime import datetime, timezone
from typing import Optional

import requests

from backend import crud
from backend.config import get_settings
from backend.database import SessionLocal, utcnow
from backend.models import RawSnapshot

# ---------------------------------------------------------------------
# Load configuration
# ---------------------------------------------------------------------
settings = get_settings()
logger = logging.getLogger(__name__)

INGEST_BATCH = 50


class FeedUnavailable(RuntimeError):
    """The feed could not be fetched after every retry."""


# ---------------------------------------------------------------------
# Fetch the feed with retry / exponential backoff
# ---------------------------------------------------------------------
def fetch_feed(http: Optional[requests.Session] = None, url: Optional[str] = None,
               max_retries: Optional[int] = None, backoff: Optional[float] = None,
               sleep=time.sleep) -> dict:
    http = http or requests.Session()
    url = url or settings.FEED_URL
    attempts = max(1, max_retries if max_retries is not None else settings.POLL_MAX_RETRIES)
    backoff = backoff if backoff is not None else settings.POLL_BACKOFF_SECONDS

    last_error = None
    for attempt in range(1, attempts + 1):
        try:
            r = http.get(url, timeout=10)
            r.raise_for_status()
            payload = r.json()
            if not payload.get("success", True):
                raise ValueError(f"feed reported failure: {payload.get('cause', 'unknown')}")
            return payload
        except (requests.RequestException, ValueError) as e:
            last_error = e
            if attempt < attempts:
                delay = backoff * (2 ** (attempt - 1))
                logger.warning(f"Feed fetch failed ({attempt}/{attempts}): {e}. Retrying in {delay:.1f}s...")
                sleep(delay)
    raise FeedUnavailable(f"feed unavailable after {attempts} attempts: {last_error}")


# ---------------------------------------------------------------------
# Normalize one feed product
# ---------------------------------------------------------------------
def _ladder(entries) -> list[dict]:
    return [
        {
            "price_per_unit": float(e.get("pricePerUnit", 0.0)),
            "amount": int(e.get("amount", 0)),
            "orders": int(e.get("orders", 0)),
        }
        for e in (entries or [])
    ]


def normalize_product(product_id: str, raw: dict, api_timestamp: datetime, fetched_at: datetime) -> RawSnapshot:
    """Feed product JSON -> RawSnapshot. Top of sell_summary is the instant sell price."""
    sell_summary = raw.get("sell_summary") or []
    buy_summary = raw.get("buy_summary") or []
    qs = raw.get("quick_status") or {}
    return RawSnapshot(
        product_id=raw.get("product_id") or product_id,
        fetched_at=fetched_at,
        api_timestamp=api_timestamp,
        instant_sell_price=float(sell_summary[0].get("pricePerUnit", 0.0)) if sell_summary else 0.0,
        instant_buy_price=float(buy_summary[0].get("pricePerUnit", 0.0)) if buy_summary else 0.0,
        weighted_sell_price=float(qs.get("sellPrice", 0.0)),
        weighted_buy_price=float(qs.get("buyPrice", 0.0)),
        sell_moving_week=int(qs.get("sellMovingWeek", 0)),
        buy_moving_week=int(qs.get("buyMovingWeek", 0)),
        active_sell_orders=int(qs.get("sellOrders", 0)),
        active_buy_orders=int(qs.get("buyOrders", 0)),
        sell_volume=int(qs.get("sellVolume", 0)),
        buy_volume=int(qs.get("buyVolume", 0)),
        # sellers' offers are what a buy order competes with, and vice versa
        buy_ladder=_ladder(sell_summary),
        sell_ladder=_ladder(buy_summary),
    )


def _api_time(last_updated_ms) -> datetime:
    if not last_updated_ms:
        return utcnow()
    return datetime.fromtimestamp(int(last_updated_ms) / 1000.0, tz=timezone.utc).replace(tzinfo=None)


# ---------------------------------------------------------------------
# One polling cycle
# ---------------------------------------------------------------------
def poll_once(session_factory=SessionLocal, http: Optional[requests.Session] = None, **fetch_kwargs) -> int:
    """Fetch, dedupe and store one feed reading. Returns inserted rows; never raises on feed failure."""
    try:
        payload = fetch_feed(http=http, **fetch_kwargs)
    except FeedUnavailable as e:
        logger.error(f"❌ {e}")
        return 0

    products = payload.get("products") or {}
    api_ts = _api_time(payload.get("lastUpdated"))
    fetched_at = utcnow()

    session = session_factory()
    inserted = skipped = 0
    try:
        known = crud.latest_api_timestamps(session, products.keys())
        batch: list[RawSnapshot] = []
        for pid, raw in products.items():
            if known.get(pid) == api_ts:
                skipped += 1
                continue
            batch.append(normalize_product(pid, raw, api_ts, fetched_at))
            if len(batch) >= INGEST_BATCH:
                inserted += crud.insert_snapshots_bulk(session, batch)
                session.expunge_all()
                batch = []
        if batch:
            inserted += crud.insert_snapshots_bulk(session, batch)
    except Exception:
        session.rollback()
        logger.exception("Snapshot insert failed")
    finally:
        session.close()

    logger.info(f"📥 Feed {api_ts}: products={len(products)} inserted={inserted} unchanged={skipped}")
    return inserted


# ---------------------------------------------------------------------
# Standalone mode
# ---------------------------------------------------------------------
if __name__ == "__main__":
    from backend.logging_config import configure_logging

    configure_logging()
    while True:
        poll_once()
        time.sleep(settings.POLL_INTERVAL_SECONDS)
