# backend/core/scoring.py
"""
Flip opportunity scoring.

A flip buys at the instant-sell price (top of the bid side) and resells at
the instant-buy price (top of the ask side). The score grows with profit per
hour, profit per item and tradable size, and shrinks with risk, competition,
thin liquidity and long fill times. Every guard degrades to a zero score;
nothing here raises on bad market data.
"""
import math
from dataclasses import dataclass, replace
from typing import Optional, Sequence

import numpy as np

from backend.config import ScorerConfig
from backend.core.risk import RiskAssessor, clamp01

EPS = 1e-6


@dataclass(frozen=True)
class ScoreInputs:
    instant_buy_price: float
    instant_sell_price: float
    demand_per_hour: Optional[float] = None       # insta-buy flow
    supply_per_hour: Optional[float] = None       # insta-sell flow
    churn_buy_per_hour: float = 0.0
    churn_sell_per_hour: float = 0.0
    live_ref_buy: Optional[float] = None
    live_ref_sell: Optional[float] = None
    hist_ref_buy: Optional[float] = None
    hist_ref_sell: Optional[float] = None
    budget: Optional[float] = None
    horizon_hours: Optional[float] = None


@dataclass(frozen=True)
class Score:
    spread: float = 0.0
    spread_pct: float = 0.0
    risk_score: float = 0.0
    manipulated_likely: bool = False
    risk_note: Optional[str] = None
    throughput_per_hour: float = 0.0
    planned_units_per_hour: float = 0.0
    suggested_units_per_hour: float = 0.0
    profit_per_item: float = 0.0
    profit_per_hour: float = 0.0
    reasonable_profit_per_hour: float = 0.0
    buy_fill_hours: Optional[float] = None
    sell_fill_hours: Optional[float] = None
    total_fill_hours: Optional[float] = None
    score: float = 0.0


def _non_neg(v: Optional[float]) -> float:
    return v if v is not None and math.isfinite(v) and v > 0 else 0.0


def _finite_or_zero(v: float) -> float:
    return v if math.isfinite(v) else 0.0


def _floor_or_zero(v: float) -> int:
    return math.floor(v) if math.isfinite(v) else 0


class OpportunityScorer:

    def __init__(self, config: Optional[ScorerConfig] = None, risk: Optional[RiskAssessor] = None):
        self.config = config or ScorerConfig()
        self.risk = risk or RiskAssessor()

    def liquidity_weight(self, throughput: float) -> float:
        """Quadratic ramp from the liquidity floor to the reference throughput."""
        if throughput <= 0:
            return 0.0
        floor_t = self.config.liquidity_floor
        ref_t = max(floor_t + EPS, self.config.liquidity_reference)
        return clamp01((throughput - floor_t) / (ref_t - floor_t)) ** 2

    def score(self, inp: ScoreInputs) -> Score:
        cfg = self.config
        buy, sell = inp.instant_buy_price, inp.instant_sell_price

        if buy is None or sell is None or not math.isfinite(buy) or not math.isfinite(sell) or buy <= 0 or sell <= 0:
            return Score()

        spread = max(0.0, buy - sell)
        if spread <= 0:
            return Score()
        spread_pct = spread / sell

        demand = _non_neg(inp.demand_per_hour)
        supply = _non_neg(inp.supply_per_hour)
        throughput = min(demand, supply)

        assessment = self.risk.assess_price_deviation(
            buy, sell, inp.live_ref_buy, inp.live_ref_sell, inp.hist_ref_buy, inp.hist_ref_sell
        )
        risk_score = clamp01(assessment.risk_score)

        # zero-liquidity gate
        if throughput <= 0:
            return Score(
                spread=spread,
                spread_pct=spread_pct,
                risk_score=risk_score,
                manipulated_likely=assessment.manipulated_likely,
                risk_note=assessment.note,
            )

        churn = _non_neg(inp.churn_buy_per_hour) + _non_neg(inp.churn_sell_per_hour)
        competition_penalty = 1.0 + cfg.competition_coeff * churn
        risk_penalty = 1.0 + cfg.risk_penalty_coeff * risk_score

        # capacity
        budget = _non_neg(inp.budget)
        horizon = inp.horizon_hours
        if horizon is None or not math.isfinite(horizon) or horizon <= 0:
            horizon = 1.0
        if budget > 0:
            # huge budget or horizon overflow to inf; floor() would raise
            max_affordable = _floor_or_zero(budget / sell)
            max_throughput = _floor_or_zero(throughput * horizon)
            qty = max(0, min(max_affordable, max_throughput))
            scale = max(1, max_affordable)
        else:
            qty = _floor_or_zero(throughput)
            scale = max(1, qty)

        planned = qty / horizon
        profit_per_item = max(0.0, spread * (1.0 - risk_score))
        profit_per_hour = max(0.0, profit_per_item * planned)

        # exit needs matching demand
        if demand <= 0 and supply > 0:
            balance_adj = 0.5
        elif supply <= 0:
            balance_adj = 0.0
        else:
            balance_adj = min(1.0, supply / (demand + 1.0))

        suggested = max(0.0, min(planned, throughput * balance_adj) / max(EPS, competition_penalty))
        reasonable_profit = max(0.0, profit_per_item * suggested)

        buy_fill = sell_fill = total_fill = None
        if suggested > 0:
            buy_fill = suggested / supply if supply > 0 else None
            sell_fill = suggested / demand if demand > 0 else None
            if buy_fill is not None and sell_fill is not None:
                total_fill = buy_fill + sell_fill

        weight = self.liquidity_weight(throughput)
        eta_adj = 1.0 / (1.0 + total_fill / cfg.eta_half_life_hours) if total_fill is not None else 1.0
        comp_adj_soft = (1.0 / competition_penalty) ** 0.5

        raw = (
            math.log10(reasonable_profit + 1.0)
            * math.log10(profit_per_item + 1.0)
            * math.log10(scale + 1.0)
            * eta_adj
            * comp_adj_soft
            * weight
            / max(EPS, risk_penalty)
        )
        final = raw if math.isfinite(raw) and raw > 0 else 0.0

        return Score(
            spread=_finite_or_zero(spread),
            spread_pct=_finite_or_zero(spread_pct),
            risk_score=risk_score,
            manipulated_likely=assessment.manipulated_likely,
            risk_note=assessment.note,
            throughput_per_hour=_finite_or_zero(throughput),
            planned_units_per_hour=_finite_or_zero(planned),
            suggested_units_per_hour=_finite_or_zero(suggested),
            profit_per_item=_finite_or_zero(profit_per_item),
            profit_per_hour=_finite_or_zero(profit_per_hour),
            reasonable_profit_per_hour=_finite_or_zero(reasonable_profit),
            buy_fill_hours=buy_fill,
            sell_fill_hours=sell_fill,
            total_fill_hours=total_fill,
            score=final,
        )

    def with_config(self, **overrides) -> "OpportunityScorer":
        return OpportunityScorer(replace(self.config, **overrides), self.risk)


def rank_by_score(items: Sequence, key=lambda item: item.score) -> list:
    """Stable descending sort by score; ties keep their input order."""
    if not items:
        return []
    scores = np.asarray([key(item) for item in items], dtype=float)
    order = np.argsort(-scores, kind="stable")
    return [items[i] for i in order]
