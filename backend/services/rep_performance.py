"""
Keystone CRM - Rep performance

Per-owner rollup of the deals closing in a period: counts, win rate,
forecasted revenue (won + pipeline x win rate) and a 0-100 performance
heuristic. Unlike the forecast, closed lost deals are included (they drive
the win rate).
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from config import now_utc
from services.date_ranges import get_forecast_range
from services.deal_scoring import deal_amount, is_closed_lost_stage, is_closed_won_stage
from services.forecast import UNASSIGNED_OWNER, close_date_in_range_filter

logger = logging.getLogger("revenue_intelligence")


def _new_rep(owner_id: str) -> Dict:
    return {
        "ownerId": owner_id,
        "totalDeals": 0,
        "openDeals": 0,
        "closedWon": 0,
        "closedLost": 0,
        "totalValue": 0,
        "wonValue": 0,
        "lostValue": 0,
        "pipelineValue": 0,
        "avgDealSize": 0,
        "winRate": 0,
    }


def performance_score(rep: Dict) -> int:
    score = 50

    if rep["winRate"] >= 50:
        score += 20
    elif rep["winRate"] >= 30:
        score += 10
    elif rep["winRate"] < 20:
        score -= 10

    if rep["avgDealSize"] > 50000:
        score += 15
    elif rep["avgDealSize"] > 25000:
        score += 10
    elif rep["avgDealSize"] < 10000:
        score -= 5

    if rep["openDeals"] > 10:
        score += 10
    elif rep["openDeals"] > 5:
        score += 5
    elif rep["openDeals"] < 3:
        score -= 10

    return max(0, min(100, score))


def rollup_reps(deals: List[Dict]) -> List[Dict]:
    """Une ligne par owner, triee par forecastedRevenue decroissant"""
    by_owner: Dict[str, Dict] = {}
    for deal in deals:
        owner = deal.get("ownerId") or UNASSIGNED_OWNER
        rep = by_owner.setdefault(str(owner), _new_rep(str(owner)))
        amount = deal_amount(deal)

        rep["totalDeals"] += 1
        rep["totalValue"] += amount
        if is_closed_won_stage(deal.get("stage")):
            rep["closedWon"] += 1
            rep["wonValue"] += amount
        elif is_closed_lost_stage(deal.get("stage")):
            rep["closedLost"] += 1
            rep["lostValue"] += amount
        else:
            rep["openDeals"] += 1
            rep["pipelineValue"] += amount

    reps = []
    for rep in by_owner.values():
        decided = rep["closedWon"] + rep["closedLost"]
        rep["avgDealSize"] = rep["totalValue"] / rep["totalDeals"] if rep["totalDeals"] else 0
        rep["winRate"] = rep["closedWon"] / decided * 100 if decided else 0
        rep["forecastedRevenue"] = rep["wonValue"] + rep["pipelineValue"] * (rep["winRate"] / 100)
        rep["performanceScore"] = performance_score(rep)
        reps.append(rep)

    reps.sort(key=lambda r: r["forecastedRevenue"], reverse=True)
    return reps


def reps_summary(reps: List[Dict]) -> Dict:
    return {
        "totalReps": len(reps),
        "totalPipeline": sum(r["pipelineValue"] for r in reps),
        "totalWon": sum(r["wonValue"] for r in reps),
        "avgWinRate": sum(r["winRate"] for r in reps) / (len(reps) or 1),
    }


async def compute_rep_performance(db, period: Optional[str], now: Optional[datetime] = None) -> Dict:
    if now is None:
        now = now_utc()

    rng = get_forecast_range(period, now)
    deals = await db.deals.find(
        close_date_in_range_filter(rng),
        {"ownerId": 1, "stage": 1, "amount": 1},
    ).to_list(None)

    reps = rollup_reps(deals)
    logger.info(f"[REP_PERFORMANCE] period={period} deals={len(deals)} reps={len(reps)}")

    return {
        "period": period,
        "startDate": rng.start_date,
        "endDate": rng.end_date,
        "reps": reps,
        "summary": reps_summary(reps),
    }
