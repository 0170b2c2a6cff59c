"""Retention purge of compacted history."""
from datetime import timedelta

from backend.models import HourSummary, MinutePoint, OrderLevel, RawSnapshot
from data_worker.compaction import process_single_hour
from data_worker.retention import purge_expired
from tests.conftest import HOUR


def test_purges_only_expired_rows(db, session_factory, snapshot_factory):
    old_hour = HOUR - timedelta(days=40)
    db.add_all([snapshot_factory(minute=m, hour=old_hour) for m in range(0, 20, 5)])
    db.add_all([snapshot_factory(minute=m) for m in range(0, 20, 5)])
    db.commit()
    process_single_hour(old_hour, session_factory=session_factory)
    process_single_hour(HOUR, session_factory=session_factory)
    # a raw reading that was never compacted
    db.add(snapshot_factory(minute=1, hour=old_hour))
    db.commit()

    counts = purge_expired(HOUR + timedelta(hours=2), session_factory=session_factory, retention_days=30)

    assert counts["summaries"] == 1
    assert counts["points"] == 4
    assert counts["snapshots"] == 1
    check = session_factory()
    try:
        assert check.query(HourSummary).one().hour_start == HOUR
        assert check.query(MinutePoint).count() == 4
        assert check.query(OrderLevel).count() == 4 * 6
        assert check.query(RawSnapshot).count() == 0
    finally:
        check.close()


def test_nothing_to_purge(session_factory):
    counts = purge_expired(HOUR, session_factory=session_factory)
    assert counts == {"levels": 0, "points": 0, "summaries": 0, "snapshots": 0}
