"""
Keystone CRM - Deal Score Calculator

Deterministic heuristic score (0-100) for a single deal:

    base 50
    + stage weight
    + deal age tier          (first matching tier only)
    + activity recency tier  (first matching tier only)
    + account maturity tier
    + stage duration tier    (open deals only)
    + close date proximity tier
    -> clamp [0, 100], round

Each threshold cascade is an ordered list of (predicate, impact, factor,
description) tuples; the first predicate that matches wins. The order of
the activity tiers is hot, warm, cold, cool and must stay that way: the
day thresholds are user-configurable and not guaranteed to be monotonic.
"""

import math
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from config import now_utc
from models.scoring import Number, ScoringSettings, is_finite_number
from services.date_ranges import days_until

CLOSED_WON_STAGES = ("Closed Won", "Contract Signed / Closed Won")
CLOSED_LOST_STAGE = "Closed Lost"
CLOSING_SOON_STAGES = ("Negotiation", "Proposal")
CLOSING_SOON_WARM_STAGE = "Negotiation"

BASE_SCORE = 50
NO_CLOSE_DATE_DAYS = 999

HIGH = "High"
MEDIUM = "Medium"
LOW = "Low"

Tier = Tuple[Callable[[Number], bool], Number, str, str]


# ==================== STAGES / EFFECTIVE FIELDS ====================

def is_closed_won_stage(stage: Any) -> bool:
    return str(stage or "").strip() in CLOSED_WON_STAGES


def is_closed_lost_stage(stage: Any) -> bool:
    return str(stage or "").strip() == CLOSED_LOST_STAGE


def is_pipeline_stage(stage: Any) -> bool:
    return not is_closed_won_stage(stage) and not is_closed_lost_stage(stage)


def effective_close_date(deal: Dict) -> Any:
    """forecastedCloseDate, sinon closeDate"""
    return deal.get("forecastedCloseDate") or deal.get("closeDate")


def effective_last_activity(deal: Dict) -> Any:
    """lastActivityAt, sinon updatedAt, sinon createdAt"""
    return deal.get("lastActivityAt") or deal.get("updatedAt") or deal.get("createdAt")


def deal_amount(deal: Dict) -> Number:
    amount = deal.get("amount")
    return amount if is_finite_number(amount) else 0


# ==================== TIERS ====================

def deal_age_tiers(settings: ScoringSettings) -> List[Tier]:
    cfg = settings.deal_age
    return [
        (lambda d: d > cfg.stale_days, cfg.stale_impact, "Deal Age",
         f"Deal is stale (>{cfg.stale_days} days old)"),
        (lambda d: d > cfg.aging_days, cfg.aging_impact, "Deal Age",
         f"Deal is aging (>{cfg.aging_days} days old)"),
        (lambda d: d > cfg.warn_days, cfg.warn_impact, "Deal Age",
         f"Deal is maturing (>{cfg.warn_days} days old)"),
    ]


def activity_tiers(settings: ScoringSettings) -> List[Tier]:
    cfg = settings.activity
    return [
        (lambda d: d <= cfg.hot_days, cfg.hot_impact, "Recent Activity",
         f"Active engagement within last {cfg.hot_days} days"),
        (lambda d: d <= cfg.warm_days, cfg.warm_impact, "Recent Activity",
         f"Recent engagement within {cfg.warm_days} days"),
        (lambda d: d > cfg.cold_days, cfg.cold_impact, "Activity Gap",
         f"No activity for over {cfg.cold_days} days"),
        (lambda d: d > cfg.cool_days, cfg.cool_impact, "Activity Gap",
         f"No activity for over {cfg.cool_days} days"),
    ]


def account_tiers(settings: ScoringSettings) -> List[Tier]:
    cfg = settings.account
    return [
        (lambda d: d > cfg.mature_days, cfg.mature_impact, "Account Maturity",
         f"Established account (>{cfg.mature_days} days)"),
        (lambda d: d < cfg.new_days, cfg.new_impact, "New Account",
         f"Very new account (<{cfg.new_days} days)"),
    ]


def stage_duration_tiers(settings: ScoringSettings) -> List[Tier]:
    cfg = settings.stage_duration
    return [
        (lambda d: d > cfg.stuck_days, cfg.stuck_impact, "Stage Duration",
         f"Stuck in stage for >{cfg.stuck_days} days"),
        (lambda d: d > cfg.warn_days, cfg.warn_impact, "Stage Duration",
         f"In stage for >{cfg.warn_days} days"),
    ]


def close_date_tiers(settings: ScoringSettings, stage: Any) -> List[Tier]:
    cfg = settings.close_date
    return [
        (lambda d: d < 0, cfg.overdue_impact, "Overdue Close Date",
         "Close date has passed"),
        (lambda d: d <= cfg.closing_soon_days and stage in CLOSING_SOON_STAGES,
         cfg.closing_soon_impact, "Closing Soon",
         f"Close date within {cfg.closing_soon_days} days and in late stage"),
        (lambda d: d <= cfg.closing_soon_warm_days and stage == CLOSING_SOON_WARM_STAGE,
         cfg.closing_soon_warm_impact, "Closing Soon",
         f"Close date within {cfg.closing_soon_warm_days} days and in negotiation"),
    ]


def first_matching_tier(tiers: Sequence[Tier], value: Number) -> Optional[Dict]:
    for predicate, impact, factor, description in tiers:
        if predicate(value):
            return {"factor": factor, "impact": impact, "description": description}
    return None


# ==================== SCORE ====================

def classify_confidence(score: Number, factors: List[Dict]) -> str:
    """High avant Low: un score >= 70 avec 3 facteurs reste High"""
    if score >= 70 and len(factors) >= 3:
        return HIGH
    negatives = sum(1 for f in factors if f["impact"] < 0)
    if score < 40 or negatives >= 3:
        return LOW
    return MEDIUM


def _finite_or_none(value: Any) -> Optional[Number]:
    return value if is_finite_number(value) else None


def calculate_deal_score(
    deal: Dict,
    settings: ScoringSettings,
    account_age_days: Optional[Number] = None,
    deal_age_days: Optional[Number] = None,
    activity_recency_days: Optional[Number] = None,
    now: Optional[datetime] = None,
) -> Dict:
    """
    Score one deal. The deal must already carry its effective close date
    fields; ages are precomputed by the caller (None = unknown, factor skipped).

    Returns {"score": int, "confidence": "High|Medium|Low", "factors": [...]}
    """
    if now is None:
        now = now_utc()

    factors: List[Dict] = []
    score: Number = BASE_SCORE

    def apply(factor: Optional[Dict]):
        nonlocal score
        if factor is not None:
            score += factor["impact"]
            factors.append(factor)

    stage = deal.get("stage") or "new"
    stage_impact = settings.stage_weight(stage)
    if stage_impact != 0:
        direction = "increases" if stage_impact > 0 else "decreases"
        apply({
            "factor": "Deal Stage",
            "impact": stage_impact,
            "description": f"{stage} stage {direction} likelihood",
        })

    if deal_age_days is not None:
        apply(first_matching_tier(deal_age_tiers(settings), deal_age_days))

    if activity_recency_days is not None:
        apply(first_matching_tier(activity_tiers(settings), activity_recency_days))

    if account_age_days is not None:
        apply(first_matching_tier(account_tiers(settings), account_age_days))

    days_in_stage = _finite_or_none(deal.get("daysInStage"))
    if days_in_stage is not None and is_pipeline_stage(deal.get("stage")):
        apply(first_matching_tier(stage_duration_tiers(settings), days_in_stage))

    days_to_close = days_until(effective_close_date(deal), now)
    if days_to_close is None:
        days_to_close = NO_CLOSE_DATE_DAYS
    apply(first_matching_tier(close_date_tiers(settings, deal.get("stage")), days_to_close))

    score = max(0, min(100, score))
    confidence = classify_confidence(score, factors)

    return {
        "score": int(math.floor(score + 0.5)),
        "confidence": confidence,
        "factors": factors,
    }
