"""Flip listing over stored snapshots and finance windows."""
from datetime import timedelta

import pytest

from backend.core.finance_metrics import FinanceMetricsService
from backend.core.opportunities import ItemFilter, list_opportunities, min_positive
from backend.models import HourSummary
from tests.conftest import HOUR


def summary(product_id, hours_ago, insta_bought=0, insta_sold=0, delta_buy=0, delta_sell=0,
            created_buy=0, close_buy=100.0, close_sell=90.0):
    return HourSummary(
        product_id=product_id,
        hour_start=HOUR - timedelta(hours=hours_ago),
        close_instant_buy_price=close_buy,
        close_instant_sell_price=close_sell,
        insta_bought_items=insta_bought,
        insta_sold_items=insta_sold,
        delta_buy_orders=delta_buy,
        delta_sell_orders=delta_sell,
        created_buy_orders=created_buy,
    )


@pytest.fixture
def market(db, snapshot_factory):
    db.add_all([
        snapshot_factory(product_id="LIQUID", minute=0, buy=110.0, sell=100.0),
        snapshot_factory(product_id="THIN", minute=0, buy=300.0, sell=100.0),
        snapshot_factory(product_id="FLAT", minute=0, buy=100.0, sell=100.0),
    ])
    db.add_all([summary("LIQUID", h, insta_bought=200, insta_sold=150) for h in range(48)])
    db.add_all([summary("THIN", h, delta_buy=-3, delta_sell=2) for h in range(48)])
    db.commit()


@pytest.fixture
def finance(cache):
    return FinanceMetricsService(cache=cache)


class TestListOpportunities:

    def test_ranked_by_score(self, db, market, finance):
        page = list_opportunities(db, finance=finance)
        ids = [o.product_id for o in page["items"]]
        assert ids[0] == "LIQUID"
        assert set(ids) == {"LIQUID", "THIN", "FLAT"}
        flat = next(o for o in page["items"] if o.product_id == "FLAT")
        assert flat.score == 0.0

    def test_flow_fallback_to_order_deltas(self, db, market, finance):
        page = list_opportunities(db, ItemFilter(q="THIN"), finance=finance)
        thin = page["items"][0]
        assert thin.demand_per_hour == pytest.approx(3.0)
        assert thin.supply_per_hour == pytest.approx(2.0)

    def test_order_prices_and_spread(self, db, market, finance):
        liquid = list_opportunities(db, ItemFilter(q="LIQUID"), finance=finance)["items"][0]
        assert liquid.buy_order_price == 100.0
        assert liquid.sell_order_price == 110.0
        assert liquid.spread == 10.0
        assert liquid.demand_per_hour == 200.0
        assert liquid.supply_per_hour == 150.0

    def test_sort_by_spread(self, db, market, finance):
        page = list_opportunities(db, sort="spread", finance=finance)
        assert [o.product_id for o in page["items"]][0] == "THIN"

    def test_advanced_filters(self, db, market, finance):
        page = list_opportunities(db, min_units_per_hour=5.0, finance=finance)
        assert [o.product_id for o in page["items"]] == ["LIQUID"]

    def test_pagination(self, db, market, finance):
        page = list_opportunities(db, page=1, limit=2, finance=finance)
        assert page["total_items"] == 3
        assert page["total_pages"] == 2
        assert len(page["items"]) == 1
        assert page["has_previous"] is True

    def test_invalid_horizon(self, db, market, finance):
        with pytest.raises(ValueError):
            list_opportunities(db, horizon_hours=0, finance=finance)

    def test_empty_market(self, db, finance):
        assert list_opportunities(db, finance=finance)["items"] == []


def test_min_positive():
    assert min_positive(None, 0.0, 5.0, 3.0) == 3.0
    assert min_positive(None, -1.0) is None
