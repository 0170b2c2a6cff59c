"""Rolling finance windows: pure means, scheduled recompute, on-demand service."""
from datetime import timedelta

import pytest

from backend.core.finance_metrics import (
    FinanceMetricsService,
    compute_window_averages,
    summaries_to_frame,
)
from backend.models import FinanceMetricsWindow, HourSummary
from data_worker.aggregation import metrics_table_empty, recompute_all
from tests.conftest import HOUR


def make_summary(product_id, hours_ago, close_buy, insta_bought=0, created_buy=0):
    return HourSummary(
        product_id=product_id,
        hour_start=HOUR - timedelta(hours=hours_ago),
        open_instant_buy_price=close_buy,
        close_instant_buy_price=close_buy,
        min_instant_buy_price=close_buy,
        max_instant_buy_price=close_buy,
        open_instant_sell_price=close_buy - 10,
        close_instant_sell_price=close_buy - 10,
        min_instant_sell_price=close_buy - 10,
        max_instant_sell_price=close_buy - 10,
        created_buy_orders=created_buy,
        insta_bought_items=insta_bought,
    )


@pytest.fixture
def history(db):
    rows = [make_summary("SHORT", h, 100.0 + h) for h in range(3)]
    rows += [make_summary("LONG", h, float(h), insta_bought=h) for h in range(60)]
    db.add_all(rows)
    db.commit()
    return rows


class TestComputeWindowAverages:

    def test_short_history_uses_every_row(self, history):
        result = compute_window_averages(summaries_to_frame(history), [48])
        avg = result[48]["SHORT"]
        assert avg.observations == 3
        assert avg.avg_close_instant_buy_price == pytest.approx(101.0)

    def test_windows_take_most_recent_hours(self, history):
        result = compute_window_averages(summaries_to_frame(history), [1, 6, 48])
        assert result[1]["LONG"].observations == 1
        assert result[1]["LONG"].avg_close_instant_buy_price == 0.0
        assert result[6]["LONG"].avg_close_instant_buy_price == pytest.approx(2.5)
        assert result[48]["LONG"].observations == 48
        assert result[48]["LONG"].avg_insta_bought_items == pytest.approx(23.5)

    def test_no_history_no_rows(self):
        result = compute_window_averages(summaries_to_frame([]), [1, 48])
        assert result == {1: {}, 48: {}}

    def test_input_order_does_not_matter(self, history):
        a = compute_window_averages(summaries_to_frame(history), [6])
        b = compute_window_averages(summaries_to_frame(list(reversed(history))), [6])
        assert a == b


class TestRecomputeAll:

    def test_persists_every_product_and_window(self, history, session_factory, cache):
        report = recompute_all([1, 6, 48], session_factory=session_factory, cache=cache)

        assert report["products"] == 2
        assert report["rows"] == 6
        check = session_factory()
        try:
            row = check.query(FinanceMetricsWindow).filter_by(product_id="SHORT", window_hours=48).one()
            assert row.observations == 3
        finally:
            check.close()

    def test_idempotent(self, history, session_factory, cache):
        def snapshot():
            s = session_factory()
            try:
                return sorted(
                    (r.product_id, r.window_hours, r.observations, r.avg_close_instant_buy_price,
                     r.avg_insta_bought_items)
                    for r in s.query(FinanceMetricsWindow).all()
                )
            finally:
                s.close()

        recompute_all([1, 6, 48], session_factory=session_factory, cache=cache)
        first = snapshot()
        recompute_all([1, 6, 48], session_factory=session_factory, cache=cache)
        assert snapshot() == first
        assert len(first) == 6

    def test_failing_batch_is_skipped(self, history, session_factory, cache, monkeypatch):
        from backend import crud

        real = crud.find_last_summaries

        def flaky(session, ids, window):
            if "LONG" in ids:
                raise RuntimeError("boom")
            return real(session, ids, window)

        monkeypatch.setattr(crud, "find_last_summaries", flaky)
        report = recompute_all([48], session_factory=session_factory, cache=cache, batch_size=1)

        assert report["failed_batches"] == 1
        assert report["rows"] == 1

    def test_invalidates_cache(self, history, session_factory, cache):
        cache.set("finance:SHORT:48", {"stale": True})
        recompute_all([48], session_factory=session_factory, cache=cache)
        assert cache.get("finance:SHORT:48") is None

    def test_metrics_table_empty(self, history, session_factory, cache):
        assert metrics_table_empty(session_factory) is True
        recompute_all([1], session_factory=session_factory, cache=cache)
        assert metrics_table_empty(session_factory) is False


class TestFinanceMetricsService:

    def test_falls_back_to_history(self, history, db, cache):
        service = FinanceMetricsService(cache=cache)
        result = service.get_multi_window_averages(db, ["SHORT", "LONG", "NOPE"], [1, 48])

        assert result[48]["SHORT"].observations == 3
        assert result[1]["LONG"].observations == 1
        assert "NOPE" not in result[48]

    def test_prefers_precomputed_rows(self, history, db, session_factory, cache):
        recompute_all([48], session_factory=session_factory, cache=cache)
        row = db.query(FinanceMetricsWindow).filter_by(product_id="SHORT", window_hours=48).one()
        row.avg_close_instant_buy_price = 999.0
        db.commit()

        avg = FinanceMetricsService(cache=cache).get_averages(db, "SHORT", 48)
        assert avg.avg_close_instant_buy_price == 999.0

    def test_results_are_cached(self, history, db, cache):
        service = FinanceMetricsService(cache=cache)
        first = service.get_averages(db, "SHORT", 6)
        db.query(HourSummary).delete()
        db.commit()
        assert service.get_averages(db, "SHORT", 6) == first

    def test_unknown_product(self, db, cache):
        assert FinanceMetricsService(cache=cache).get_averages(db, "NOPE", 48) is None

    @pytest.mark.parametrize("window", [0, -6])
    def test_non_positive_window_rejected(self, db, cache, window):
        with pytest.raises(ValueError):
            FinanceMetricsService(cache=cache).get_averages(db, "SHORT", window)
