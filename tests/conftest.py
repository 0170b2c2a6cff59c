"""Shared fixtures: in-memory SQLite, snapshot factory, isolated cache."""
import os

# must be set before backend.database builds its engine
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CACHE_REDIS_URL", "")

from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from backend.core.cache import TTLCache
from backend.database import Base
from backend.models import RawSnapshot
import backend.models  # noqa: F401  (register mappers)

HOUR = datetime(2024, 5, 1, 10, 0, 0)


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(eng, "connect")
    def _fk_on(dbapi_conn, _):
        dbapi_conn.execute("PRAGMA foreign_keys=ON")

    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def cache():
    return TTLCache(max_entries=100, default_ttl=60)


def make_snapshot(product_id="ENCHANTED_DIAMOND", minute=0, buy=100.0, sell=90.0,
                  active_buy=10, active_sell=10, buy_volume=1000, sell_volume=1000,
                  buy_week=0, sell_week=0, hour=HOUR, ladder_depth=3, **kw) -> RawSnapshot:
    """One raw reading `minute` minutes into `hour`."""
    ts = hour + timedelta(minutes=minute)
    fields = dict(
        product_id=product_id,
        fetched_at=ts,
        api_timestamp=ts,
        instant_buy_price=buy,
        instant_sell_price=sell,
        weighted_buy_price=buy,
        weighted_sell_price=sell,
        buy_moving_week=buy_week,
        sell_moving_week=sell_week,
        active_buy_orders=active_buy,
        active_sell_orders=active_sell,
        buy_volume=buy_volume,
        sell_volume=sell_volume,
        buy_ladder=[{"price_per_unit": sell - i, "amount": 64, "orders": 1} for i in range(ladder_depth)],
        sell_ladder=[{"price_per_unit": buy + i, "amount": 64, "orders": 1} for i in range(ladder_depth)],
    )
    fields.update(kw)
    return RawSnapshot(**fields)


@pytest.fixture
def snapshot_factory():
    return make_snapshot
