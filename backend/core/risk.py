# backend/core/risk.py
"""Price-deviation risk: how far instant prices sit from their references."""
import math
from dataclasses import dataclass
from typing import Optional

LIVE_WEIGHT = 0.7
HISTORICAL_WEIGHT = 0.3
SATURATION_DEVIATION = 0.20   # 20% deviation => risk 1.0
MANIPULATION_DEVIATION = 0.12


@dataclass(frozen=True)
class RiskAssessment:
    deviation_buy: float
    deviation_sell: float
    risk_score: float
    manipulated_likely: bool
    note: str


def _usable(v: Optional[float]) -> bool:
    return v is not None and math.isfinite(v)


def blend_reference(live: Optional[float], historical: Optional[float]) -> Optional[float]:
    """0.7 live + 0.3 historical; whichever exists alone; None when neither does."""
    has_live, has_hist = _usable(live), _usable(historical)
    if has_live and has_hist:
        return LIVE_WEIGHT * live + HISTORICAL_WEIGHT * historical
    if has_live:
        return live
    if has_hist:
        return historical
    return None


def relative_deviation(value: float, reference: Optional[float]) -> float:
    if reference is None or not math.isfinite(reference) or reference <= 0:
        return 0.0
    if not math.isfinite(value):
        return 0.0
    return abs(value - reference) / reference


def clamp01(x: float) -> float:
    return max(0.0, min(1.0, x))


class RiskAssessor:
    """Stateless; one shared instance is safe across threads."""

    def assess_price_deviation(
        self,
        instant_buy: float,
        instant_sell: float,
        live_buy: Optional[float] = None,
        live_sell: Optional[float] = None,
        historical_buy: Optional[float] = None,
        historical_sell: Optional[float] = None,
    ) -> RiskAssessment:
        dev_buy = relative_deviation(instant_buy, blend_reference(live_buy, historical_buy))
        dev_sell = relative_deviation(instant_sell, blend_reference(live_sell, historical_sell))

        worst = max(dev_buy, dev_sell)
        risk = clamp01(worst / SATURATION_DEVIATION)
        manipulated = worst >= MANIPULATION_DEVIATION

        if manipulated:
            side = "buy" if dev_buy >= dev_sell else "sell"
            note = f"Possible manipulation: instant {side} price {worst:.1%} away from reference"
        else:
            note = "Deviations within normal range."

        return RiskAssessment(
            deviation_buy=dev_buy,
            deviation_sell=dev_sell,
            risk_score=risk,
            manipulated_likely=manipulated,
            note=note,
        )
