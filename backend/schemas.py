# backend/schemas.py
from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Optional

from backend.models import Side

# --------------------------
# Raw snapshot
# --------------------------
class LadderLevelSchema(BaseModel):
    price_per_unit: float
    amount: int
    orders: int


class SnapshotSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: str
    fetched_at: datetime
    api_timestamp: datetime
    instant_buy_price: float
    instant_sell_price: float
    weighted_buy_price: float
    weighted_sell_price: float
    buy_moving_week: int
    sell_moving_week: int
    active_buy_orders: int
    active_sell_orders: int
    buy_volume: int
    sell_volume: int


class SnapshotDetailSchema(SnapshotSchema):
    buy_ladder: list[LadderLevelSchema] = []
    sell_ladder: list[LadderLevelSchema] = []


# --------------------------
# Hour summary + retained points
# --------------------------
class OrderLevelSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    side: Side
    level_index: int
    price_per_unit: float
    amount: int
    orders: int


class MinutePointSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    snapshot_time: datetime
    api_timestamp: datetime
    instant_buy_price: float
    instant_sell_price: float
    weighted_buy_price: float
    weighted_sell_price: float
    buy_moving_week: int
    sell_moving_week: int
    active_buy_orders: int
    active_sell_orders: int
    buy_volume: int
    sell_volume: int
    buy_orders: list[OrderLevelSchema] = []
    sell_orders: list[OrderLevelSchema] = []


class HourSummarySchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: str
    hour_start: datetime
    open_instant_buy_price: float
    close_instant_buy_price: float
    min_instant_buy_price: float
    max_instant_buy_price: float
    open_instant_sell_price: float
    close_instant_sell_price: float
    min_instant_sell_price: float
    max_instant_sell_price: float
    created_buy_orders: int
    created_sell_orders: int
    added_items_buy_orders: int
    added_items_sell_orders: int
    delta_buy_orders: int
    delta_sell_orders: int
    delta_buy_volume: int
    delta_sell_volume: int
    insta_bought_items: int
    insta_sold_items: int


class HistoryEntrySchema(BaseModel):
    summary: HourSummarySchema
    points: Optional[list[MinutePointSchema]] = None


# --------------------------
# Item views
# --------------------------
class ItemDetailSchema(BaseModel):
    product_id: str
    latest_snapshot: Optional[SnapshotDetailSchema] = None
    latest_summary: Optional[HourSummarySchema] = None


class ItemPageSchema(BaseModel):
    items: list[SnapshotSchema]
    page: int
    limit: int
    total_items: int
    total_pages: int
    has_next: bool
    has_previous: bool


class FinanceAveragesSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: str
    window_hours: int
    observations: int
    avg_open_instant_buy_price: float
    avg_close_instant_buy_price: float
    avg_min_instant_buy_price: float
    avg_max_instant_buy_price: float
    avg_open_instant_sell_price: float
    avg_close_instant_sell_price: float
    avg_min_instant_sell_price: float
    avg_max_instant_sell_price: float
    avg_created_buy_orders: float
    avg_created_sell_orders: float
    avg_added_items_buy_orders: float
    avg_added_items_sell_orders: float
    avg_delta_buy_orders: float
    avg_delta_sell_orders: float
    avg_delta_buy_volume: float
    avg_delta_sell_volume: float
    avg_insta_bought_items: float
    avg_insta_sold_items: float


# --------------------------
# Flip opportunities
# --------------------------
class OpportunitySchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: str
    instant_buy_price: float
    instant_sell_price: float
    buy_order_price: float
    sell_order_price: float
    spread: float
    spread_pct: float
    demand_per_hour: Optional[float] = None
    supply_per_hour: Optional[float] = None
    competition_per_hour: Optional[float] = None
    throughput_per_hour: float
    planned_units_per_hour: float
    suggested_units_per_hour: float
    profit_per_item: float
    profit_per_hour: float
    reasonable_profit_per_hour: float
    buy_fill_hours: Optional[float] = None
    sell_fill_hours: Optional[float] = None
    total_fill_hours: Optional[float] = None
    risk_score: float
    manipulated_likely: bool
    risk_note: Optional[str] = None
    score: float


class OpportunityPageSchema(BaseModel):
    items: list[OpportunitySchema]
    page: int
    limit: int
    total_items: int
    total_pages: int
    has_next: bool
    has_previous: bool
