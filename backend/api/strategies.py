# backend/api/strategies.py
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from backend.config import get_settings
from backend.core.opportunities import ItemFilter, list_opportunities
from backend.core.scoring import OpportunityScorer
from backend.database import get_db
from backend.schemas import OpportunityPageSchema

router = APIRouter(prefix="/api/v1/strategies", tags=["Strategies"])

settings = get_settings()
scorer = OpportunityScorer(settings.scorer_config())


@router.get("/flipping", response_model=OpportunityPageSchema)
def list_flipping(
    q: Optional[str] = None,
    min_sell: Optional[float] = Query(None, alias="minSell"),
    max_sell: Optional[float] = Query(None, alias="maxSell"),
    min_buy: Optional[float] = Query(None, alias="minBuy"),
    max_buy: Optional[float] = Query(None, alias="maxBuy"),
    min_spread: Optional[float] = Query(None, alias="minSpread"),
    max_time: Optional[float] = Query(None, alias="maxTime"),
    min_units_per_hour: Optional[float] = Query(None, alias="minUnitsPerHour"),
    max_units_per_hour: Optional[float] = Query(None, alias="maxUnitsPerHour"),
    max_competition_per_hour: Optional[float] = Query(None, alias="maxCompetitionPerHour"),
    max_risk_score: Optional[float] = Query(None, alias="maxRiskScore"),
    disable_competition_penalties: bool = Query(False, alias="disableCompetitionPenalties"),
    disable_risk_penalties: bool = Query(False, alias="disableRiskPenalties"),
    sort: Optional[str] = None,
    budget: Optional[float] = None,
    horizon_hours: Optional[float] = Query(None, alias="horizonHours"),
    page: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """Flip opportunities ranked by score (or `sort`): buy order at instant-sell, sell order at instant-buy."""
    return list_opportunities(
        db,
        ItemFilter(q, min_sell, max_sell, min_buy, max_buy, min_spread),
        sort=sort,
        page=page,
        limit=limit,
        budget=budget,
        horizon_hours=horizon_hours,
        max_fill_hours=max_time,
        min_units_per_hour=min_units_per_hour,
        max_units_per_hour=max_units_per_hour,
        max_competition_per_hour=max_competition_per_hour,
        max_risk_score=max_risk_score,
        disable_competition_penalties=disable_competition_penalties,
        disable_risk_penalties=disable_risk_penalties,
        scorer=scorer,
    )
