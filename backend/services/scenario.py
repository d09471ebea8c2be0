"""
Keystone CRM - Scenario Simulator (what-if)

Applies hypothetical per-deal overrides (stage, amount, close date) on top
of a baseline forecast and recomputes the pipeline metrics.

Adjusted deals are NOT re-scored: they keep the aiScore / aiConfidence
computed for the baseline, even when the new stage or close date would
change the score.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from config import now_utc
from models.scenario import ScenarioAdjustment, ScenarioRequest
from services.date_ranges import to_datetime
from services.forecast import compute_forecast, drop_overdue, partition_deals, pipeline_metrics

logger = logging.getLogger("revenue_intelligence")


def apply_adjustments(deals: List[Dict], adjustments: List[ScenarioAdjustment]) -> List[Dict]:
    """Copies of the deals with overrides applied, flagged _adjusted"""
    by_deal_id = {}
    for adj in adjustments:
        # first adjustment for a deal wins
        by_deal_id.setdefault(adj.dealId, adj)

    adjusted = []
    for deal in deals:
        adj = by_deal_id.get(str(deal.get("_id")))
        if adj is None:
            adjusted.append(deal)
            continue

        close_date = deal.get("closeDate")
        if adj.newCloseDate:
            # date-only values are UTC midnight, like stored close dates
            close_date = to_datetime(adj.newCloseDate) or close_date

        adjusted.append({
            **deal,
            "stage": adj.newStage or deal.get("stage"),
            "amount": adj.newValue if adj.newValue is not None else deal.get("amount"),
            "closeDate": close_date,
            "_adjusted": True,
        })
    return adjusted


def scenario_delta(baseline: Dict, scenario: Dict) -> Dict:
    return {
        "totalPipeline": scenario["totalPipeline"] - baseline["totalPipeline"],
        "weightedPipeline": scenario["weightedPipeline"] - baseline["weightedPipeline"],
        "pessimistic": scenario["forecast"]["pessimistic"] - baseline["forecast"]["pessimistic"],
        "likely": scenario["forecast"]["likely"] - baseline["forecast"]["likely"],
        "optimistic": scenario["forecast"]["optimistic"] - baseline["forecast"]["optimistic"],
    }


def simulate(
    baseline: Dict,
    adjustments: List[ScenarioAdjustment],
    exclude_overdue: bool = False,
    now: Optional[datetime] = None,
) -> Dict:
    """Scenario sur une baseline deja calculee (pas d'acces DB)"""
    adjusted_deals = apply_adjustments(baseline["deals"], adjustments)
    won, pipeline = partition_deals(adjusted_deals)
    if exclude_overdue:
        # same pipeline rule as the baseline, on the adjusted close dates
        pipeline = drop_overdue(pipeline, now or now_utc())
    metrics = pipeline_metrics(won, pipeline)

    scenario = {
        "totalDeals": len(adjusted_deals),
        "totalPipeline": metrics["totalPipeline"],
        "weightedPipeline": metrics["weightedPipeline"],
        "closedWon": metrics["closedWon"],
        "forecast": metrics["forecast"],
        "adjustedDeals": [d for d in adjusted_deals if d.get("_adjusted")],
    }

    return {
        "baseline": baseline["summary"],
        "scenario": scenario,
        "delta": scenario_delta(baseline["summary"], scenario),
    }


async def run_scenario(db, request: ScenarioRequest, now: Optional[datetime] = None) -> Dict:
    """Baseline (sans filtre owner) puis application des ajustements"""
    if now is None:
        now = now_utc()

    baseline = await compute_forecast(
        db,
        request.period,
        owner_id=None,
        start_date_raw=request.startDate,
        end_date_raw=request.endDate,
        exclude_overdue=request.excludeOverdue,
        now=now,
    )
    result = simulate(baseline, request.adjustments, request.excludeOverdue, now)

    logger.info(
        f"[SCENARIO] period={request.period} adjustments={len(request.adjustments)} "
        f"adjusted={len(result['scenario']['adjustedDeals'])}"
    )
    return result
