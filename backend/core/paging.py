# backend/core/paging.py
import math
from typing import Sequence


def paginate(items: Sequence, page: int = 0, limit: int = 50) -> dict:
    """Zero-based page slice; out-of-range pages clamp to the last page."""
    if limit <= 0:
        limit = 50
    total = len(items)
    total_pages = 1 if total == 0 else math.ceil(total / limit)
    page = min(max(0, page), total_pages - 1)
    start = page * limit
    return {
        "items": list(items[start:start + limit]),
        "page": page,
        "limit": limit,
        "total_items": total,
        "total_pages": total_pages,
        "has_next": page < total_pages - 1,
        "has_previous": page > 0,
    }
