# data_worker/retention.py
import logging
from datetime import datetime, timedelta
from typing import Optional

from backend import crud
from backend.config import get_settings
from backend.database import SessionLocal, utcnow

logger = logging.getLogger(__name__)

settings = get_settings()


def purge_expired(now: Optional[datetime] = None, session_factory=SessionLocal,
                  retention_days: Optional[int] = None) -> dict:
    """Delete summaries, their points and raw snapshots older than the retention horizon."""
    days = retention_days if retention_days is not None else settings.RETENTION_DAYS
    cutoff = (now or utcnow()) - timedelta(days=days)

    session = session_factory()
    try:
        counts = crud.purge_before(session, cutoff)
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    logger.info(
        f"🧹 Retention cutoff {cutoff}: summaries={counts['summaries']} points={counts['points']} "
        f"levels={counts['levels']} raw={counts['snapshots']}"
    )
    return counts
