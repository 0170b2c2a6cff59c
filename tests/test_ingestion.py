"""Feed polling: retry, mapping, dedupe."""
from unittest import mock

import pytest
import requests

from backend.models import RawSnapshot
from data_worker.ingestion_poll import FeedUnavailable, fetch_feed, normalize_product, poll_once

LAST_UPDATED = 1714557600000  # 2024-05-01 10:00:00 UTC


def feed_payload(products=("ENCHANTED_DIAMOND", "WHEAT"), last_updated=LAST_UPDATED):
    return {
        "success": True,
        "lastUpdated": last_updated,
        "products": {
            pid: {
                "product_id": pid,
                "sell_summary": [
                    {"amount": 64, "pricePerUnit": 90.0, "orders": 2},
                    {"amount": 10, "pricePerUnit": 89.5, "orders": 1},
                ],
                "buy_summary": [{"amount": 32, "pricePerUnit": 100.0, "orders": 1}],
                "quick_status": {
                    "productId": pid, "sellPrice": 89.0, "sellVolume": 5000, "sellMovingWeek": 70000,
                    "sellOrders": 40, "buyPrice": 101.0, "buyVolume": 3000, "buyMovingWeek": 80000,
                    "buyOrders": 25,
                },
            }
            for pid in products
        },
    }


def http_returning(*responses):
    http = mock.Mock(spec=requests.Session)
    side_effects = []
    for r in responses:
        if isinstance(r, Exception):
            side_effects.append(r)
        else:
            resp = mock.Mock()
            resp.json.return_value = r
            resp.raise_for_status.return_value = None
            side_effects.append(resp)
    http.get.side_effect = side_effects
    return http


class TestFetchFeed:

    def test_retries_with_backoff(self):
        sleeps = []
        http = http_returning(requests.ConnectionError("down"), requests.Timeout("slow"), feed_payload())
        payload = fetch_feed(http=http, url="http://feed", max_retries=3, backoff=1.0, sleep=sleeps.append)
        assert payload["success"] is True
        assert sleeps == [1.0, 2.0]

    def test_gives_up(self):
        http = http_returning(*[requests.ConnectionError("down")] * 2)
        with pytest.raises(FeedUnavailable):
            fetch_feed(http=http, url="http://feed", max_retries=2, backoff=0, sleep=lambda s: None)

    def test_unsuccessful_payload_is_retried(self):
        http = http_returning({"success": False, "cause": "throttled"}, feed_payload())
        assert fetch_feed(http=http, url="http://feed", max_retries=2, backoff=0, sleep=lambda s: None)


class TestNormalizeProduct:

    def test_top_of_book_mapping(self):
        raw = feed_payload()["products"]["WHEAT"]
        snap = normalize_product("WHEAT", raw, api_timestamp=None, fetched_at=None)
        assert snap.instant_sell_price == 90.0
        assert snap.instant_buy_price == 100.0
        assert snap.weighted_buy_price == 101.0
        assert snap.active_sell_orders == 40
        assert snap.buy_moving_week == 80000
        assert snap.buy_ladder[0] == {"price_per_unit": 90.0, "amount": 64, "orders": 2}
        assert len(snap.sell_ladder) == 1

    def test_empty_book(self):
        snap = normalize_product("X", {"quick_status": {}}, None, None)
        assert snap.instant_buy_price == 0.0
        assert snap.buy_ladder == []


class TestPollOnce:

    def test_inserts_then_skips_unchanged(self, session_factory, db):
        http = http_returning(feed_payload(), feed_payload())
        kwargs = dict(url="http://feed", max_retries=1, backoff=0)

        assert poll_once(session_factory=session_factory, http=http, **kwargs) == 2
        assert poll_once(session_factory=session_factory, http=http, **kwargs) == 0
        assert db.query(RawSnapshot).count() == 2

    def test_new_feed_timestamp_is_stored(self, session_factory, db):
        http = http_returning(feed_payload(), feed_payload(last_updated=LAST_UPDATED + 60000))
        kwargs = dict(url="http://feed", max_retries=1, backoff=0)
        poll_once(session_factory=session_factory, http=http, **kwargs)
        poll_once(session_factory=session_factory, http=http, **kwargs)
        assert db.query(RawSnapshot).count() == 4

    def test_feed_failure_does_not_raise(self, session_factory):
        http = http_returning(requests.ConnectionError("down"))
        assert poll_once(session_factory=session_factory, http=http, url="http://feed",
                         max_retries=1, backoff=0) == 0
