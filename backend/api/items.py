# backend/api/items.py
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from backend.core import market_data
from backend.core.opportunities import ItemFilter
from backend.database import get_db
from backend.schemas import (
    FinanceAveragesSchema,
    HistoryEntrySchema,
    ItemDetailSchema,
    ItemPageSchema,
)

router = APIRouter(prefix="/api/v1/items", tags=["Items"])


# ---------------------------------------------------------------------
# Latest snapshots, filtered and paged
# ---------------------------------------------------------------------
@router.get("", response_model=ItemPageSchema)
def list_items(
    q: Optional[str] = None,
    min_sell: Optional[float] = Query(None, alias="minSell"),
    max_sell: Optional[float] = Query(None, alias="maxSell"),
    min_buy: Optional[float] = Query(None, alias="minBuy"),
    max_buy: Optional[float] = Query(None, alias="maxBuy"),
    min_spread: Optional[float] = Query(None, alias="minSpread"),
    sort: Optional[str] = None,
    page: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    item_filter = ItemFilter(q, min_sell, max_sell, min_buy, max_buy, min_spread)
    return market_data.list_items(db, item_filter, sort, page, limit)


@router.get("/{product_id}", response_model=ItemDetailSchema)
def get_item(product_id: str, db: Session = Depends(get_db)):
    return market_data.get_item(db, product_id)


# ---------------------------------------------------------------------
# Compacted history
# ---------------------------------------------------------------------
@router.get("/{product_id}/history", response_model=list[HistoryEntrySchema])
def get_history(
    product_id: str,
    start: datetime = Query(..., alias="from"),
    end: datetime = Query(..., alias="to"),
    with_points: bool = False,
    db: Session = Depends(get_db),
):
    """Hour summaries in [from, to); `with_points` adds the retained minute points."""
    start, end = _naive_utc(start), _naive_utc(end)
    return market_data.get_history(db, product_id, start, end, with_points)


@router.get("/{product_id}/averages", response_model=FinanceAveragesSchema)
def get_averages(product_id: str, window: int = 48, db: Session = Depends(get_db)):
    return market_data.get_averages(db, product_id, window)


def _naive_utc(ts: datetime) -> datetime:
    """Stored timestamps are naive UTC."""
    if ts.tzinfo is None:
        return ts
    return ts.astimezone(timezone.utc).replace(tzinfo=None)
