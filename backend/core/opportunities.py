# backend/core/opportunities.py
"""
Flip opportunity listing: latest snapshots + finance windows -> ranked scores.
"""
import logging
import math
from dataclasses import dataclass
from typing import Optional

from backend import crud
from backend.core.finance_metrics import FinanceAverages, FinanceMetricsService
from backend.core.paging import paginate
from backend.core.scoring import OpportunityScorer, ScoreInputs, rank_by_score

logger = logging.getLogger(__name__)

FLOW_WINDOWS = (48, 6, 1)
CHURN_WINDOW = 48


@dataclass(frozen=True)
class ItemFilter:
    q: Optional[str] = None
    min_sell: Optional[float] = None
    max_sell: Optional[float] = None
    min_buy: Optional[float] = None
    max_buy: Optional[float] = None
    min_spread: Optional[float] = None


@dataclass(frozen=True)
class Opportunity:
    product_id: str
    instant_buy_price: float
    instant_sell_price: float
    buy_order_price: float          # place the buy order at the instant-sell price
    sell_order_price: float         # and the sell order at the instant-buy price
    spread: float
    spread_pct: float
    demand_per_hour: Optional[float]
    supply_per_hour: Optional[float]
    competition_per_hour: Optional[float]
    throughput_per_hour: float
    planned_units_per_hour: float
    suggested_units_per_hour: float
    profit_per_item: float
    profit_per_hour: float
    reasonable_profit_per_hour: float
    buy_fill_hours: Optional[float]
    sell_fill_hours: Optional[float]
    total_fill_hours: Optional[float]
    risk_score: float
    manipulated_likely: bool
    risk_note: Optional[str]
    score: float


def min_positive(*values: Optional[float]) -> Optional[float]:
    out = None
    for v in values:
        if v is not None and math.isfinite(v) and v > 0:
            out = v if out is None else min(out, v)
    return out


def _flow(avg: Optional[FinanceAverages], side: str) -> Optional[float]:
    """Insta flow mean for a window, or |delta active orders| when no flow was recorded."""
    if avg is None:
        return None
    if side == "buy":
        return avg.avg_insta_bought_items if avg.avg_insta_bought_items > 0 else abs(avg.avg_delta_buy_orders)
    return avg.avg_insta_sold_items if avg.avg_insta_sold_items > 0 else abs(avg.avg_delta_sell_orders)


SORT_KEYS = {
    "score": lambda o: o.score,
    "spread": lambda o: o.spread,
    "profitperhour": lambda o: o.reasonable_profit_per_hour or 0.0,
    "ibuydesc": lambda o: o.instant_buy_price,
    "iselldesc": lambda o: o.instant_sell_price,
}


def sort_opportunities(items: list[Opportunity], sort: Optional[str] = None) -> list[Opportunity]:
    key = (sort or "score").strip().lower() or "score"
    return rank_by_score(items, SORT_KEYS.get(key, SORT_KEYS["score"]))


def passes_advanced_filters(o: Opportunity, max_fill_hours=None, min_units_per_hour=None,
                            max_units_per_hour=None, max_competition_per_hour=None,
                            max_risk_score=None) -> bool:
    if max_fill_hours is not None and o.total_fill_hours is not None and o.total_fill_hours > max_fill_hours:
        return False
    if min_units_per_hour is not None and o.suggested_units_per_hour < min_units_per_hour:
        return False
    if max_units_per_hour is not None and o.suggested_units_per_hour > max_units_per_hour:
        return False
    if (max_competition_per_hour is not None and o.competition_per_hour is not None
            and o.competition_per_hour > max_competition_per_hour):
        return False
    if max_risk_score is not None and o.risk_score > max_risk_score:
        return False
    return True


def build_opportunities(session, item_filter: ItemFilter, scorer: OpportunityScorer,
                        finance: FinanceMetricsService, budget: Optional[float] = None,
                        horizon_hours: Optional[float] = None) -> list[Opportunity]:
    snaps = crud.search_latest_snapshots(
        session, item_filter.q, item_filter.min_sell, item_filter.max_sell,
        item_filter.min_buy, item_filter.max_buy, item_filter.min_spread,
    )
    if not snaps:
        return []

    ids = [s.product_id for s in snaps]
    avgs = finance.get_multi_window_averages(session, ids, FLOW_WINDOWS)

    out = []
    for s in snaps:
        per_window = [avgs.get(w, {}).get(s.product_id) for w in FLOW_WINDOWS]
        demand = min_positive(*(_flow(a, "buy") for a in per_window))
        supply = min_positive(*(_flow(a, "sell") for a in per_window))
        a48 = avgs.get(CHURN_WINDOW, {}).get(s.product_id)

        sc = scorer.score(ScoreInputs(
            instant_buy_price=s.instant_buy_price,
            instant_sell_price=s.instant_sell_price,
            demand_per_hour=demand,
            supply_per_hour=supply,
            churn_buy_per_hour=a48.avg_created_buy_orders if a48 else 0.0,
            churn_sell_per_hour=a48.avg_created_sell_orders if a48 else 0.0,
            live_ref_buy=s.weighted_buy_price,
            live_ref_sell=s.weighted_sell_price,
            hist_ref_buy=a48.avg_close_instant_buy_price if a48 else None,
            hist_ref_sell=a48.avg_close_instant_sell_price if a48 else None,
            budget=budget,
            horizon_hours=horizon_hours,
        ))

        out.append(Opportunity(
            product_id=s.product_id,
            instant_buy_price=s.instant_buy_price,
            instant_sell_price=s.instant_sell_price,
            buy_order_price=s.instant_sell_price,
            sell_order_price=s.instant_buy_price,
            spread=sc.spread,
            spread_pct=sc.spread_pct,
            demand_per_hour=demand,
            supply_per_hour=supply,
            competition_per_hour=(a48.avg_created_buy_orders + a48.avg_created_sell_orders) if a48 else None,
            throughput_per_hour=sc.throughput_per_hour,
            planned_units_per_hour=sc.planned_units_per_hour,
            suggested_units_per_hour=sc.suggested_units_per_hour,
            profit_per_item=sc.profit_per_item,
            profit_per_hour=sc.profit_per_hour,
            reasonable_profit_per_hour=sc.reasonable_profit_per_hour,
            buy_fill_hours=sc.buy_fill_hours,
            sell_fill_hours=sc.sell_fill_hours,
            total_fill_hours=sc.total_fill_hours,
            risk_score=sc.risk_score,
            manipulated_likely=sc.manipulated_likely,
            risk_note=sc.risk_note,
            score=sc.score,
        ))
    return out


def list_opportunities(session, item_filter: Optional[ItemFilter] = None, sort: Optional[str] = None,
                       page: int = 0, limit: int = 50, budget: Optional[float] = None,
                       horizon_hours: Optional[float] = None, max_fill_hours: Optional[float] = None,
                       min_units_per_hour: Optional[float] = None, max_units_per_hour: Optional[float] = None,
                       max_competition_per_hour: Optional[float] = None, max_risk_score: Optional[float] = None,
                       disable_competition_penalties: bool = False, disable_risk_penalties: bool = False,
                       scorer: Optional[OpportunityScorer] = None,
                       finance: Optional[FinanceMetricsService] = None) -> dict:
    """Score every product matching the filter, drop those failing the advanced filters, sort and page."""
    if budget is not None and budget < 0:
        raise ValueError("budget must be >= 0")
    if horizon_hours is not None and horizon_hours <= 0:
        raise ValueError("horizon_hours must be > 0")

    scorer = scorer or OpportunityScorer()
    if disable_competition_penalties:
        scorer = scorer.with_config(competition_coeff=0.0)
    if disable_risk_penalties:
        scorer = scorer.with_config(risk_penalty_coeff=0.0)

    items = build_opportunities(session, item_filter or ItemFilter(), scorer,
                                finance or FinanceMetricsService(), budget, horizon_hours)
    items = [
        o for o in items
        if passes_advanced_filters(o, max_fill_hours, min_units_per_hour, max_units_per_hour,
                                   max_competition_per_hour, max_risk_score)
    ]
    logger.debug(f"Flip listing: {len(items)} opportunities after filters")
    return paginate(sort_opportunities(items, sort), page, limit)
