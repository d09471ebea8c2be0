"""
Keystone CRM - Forecast Aggregator

Fetches the deals whose effective close date (forecastedCloseDate, else
closeDate) falls in the requested range, scores each one and rolls them up:

- pipeline deals: neither closed won nor closed lost
- weighted pipeline: sum(amount * aiScore / 100)
- three-point forecast: closedWon + amount * multiplier per confidence bucket
- breakdown by stage (pipeline only)

Legacy deals may store dates as ISO strings, so the Mongo filter matches
both native datetimes and strings.
"""

import logging
import math
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from bson import ObjectId

from config import now_utc
from services.date_ranges import (
    DateRange,
    days_since,
    get_range_from_request,
    start_of_local_day,
    to_datetime,
    to_iso_z,
)
from services.deal_scoring import (
    CLOSED_LOST_STAGE,
    HIGH,
    LOW,
    MEDIUM,
    calculate_deal_score,
    deal_amount,
    effective_close_date,
    effective_last_activity,
    is_closed_won_stage,
    is_pipeline_stage,
)
from services.ri_settings import get_ri_settings

logger = logging.getLogger("revenue_intelligence")

UNASSIGNED_OWNER = "Unassigned"

FORECAST_POINTS = ("pessimistic", "likely", "optimistic")

CONFIDENCE_MULTIPLIERS = {
    HIGH: {"pessimistic": 0.70, "likely": 0.85, "optimistic": 0.95},
    MEDIUM: {"pessimistic": 0.30, "likely": 0.50, "optimistic": 0.70},
    LOW: {"pessimistic": 0.10, "likely": 0.20, "optimistic": 0.40},
}


# ==================== QUERY ====================

def _string_bound(dt: datetime) -> str:
    """
    Lexicographic bound for legacy string dates.

    A date-only string D sorts before "DT00:00:00.000Z", so on a UTC midnight
    the bare date is used: D is then inside the range exactly when
    to_datetime(D) (UTC midnight) is.
    """
    iso = to_iso_z(dt)
    if iso.endswith("T00:00:00.000Z"):
        return iso[:10]
    return iso


def close_date_in_range_filter(rng: DateRange) -> Dict:
    """Effective close date in [start, end_exclusive), datetime or ISO string"""
    start, end = rng.start_date, rng.end_exclusive
    as_date = {"$gte": start, "$lt": end}
    as_string = {"$gte": _string_bound(start), "$lt": _string_bound(end)}
    return {
        "$or": [
            {"forecastedCloseDate": as_date},
            {"forecastedCloseDate": as_string},
            # forecastedCloseDate null or missing -> closeDate
            {"$and": [{"forecastedCloseDate": None}, {"closeDate": as_date}]},
            {"$and": [{"forecastedCloseDate": None}, {"closeDate": as_string}]},
            {"$and": [{"forecastedCloseDate": {"$exists": False}}, {"closeDate": as_date}]},
            {"$and": [{"forecastedCloseDate": {"$exists": False}}, {"closeDate": as_string}]},
        ]
    }


def build_deal_match(rng: DateRange, owner_id: Optional[str] = None) -> Dict:
    match = {
        **close_date_in_range_filter(rng),
        "stage": {"$nin": [CLOSED_LOST_STAGE]},
    }
    if owner_id == UNASSIGNED_OWNER:
        match["$and"] = [{
            "$or": [
                {"ownerId": None},
                {"ownerId": {"$exists": False}},
                {"ownerId": ""},
            ]
        }]
    elif owner_id:
        match["ownerId"] = owner_id
    return match


def _object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


async def fetch_account_ages(db, deals: Iterable[Dict], now: datetime) -> Dict[str, int]:
    """accountId (str) -> account age in days, one batched query"""
    ids = {}
    for deal in deals:
        oid = _object_id(deal.get("accountId"))
        if oid is not None:
            ids[str(oid)] = oid
    if not ids:
        return {}

    accounts = await db.accounts.find(
        {"_id": {"$in": list(ids.values())}},
        {"createdAt": 1},
    ).to_list(None)

    ages = {}
    for account in accounts:
        age = days_since(account.get("createdAt"), now)
        if age is not None:
            ages[str(account["_id"])] = age
    return ages


# ==================== SCORING ====================

def derive_days_in_stage(deal: Dict, now: datetime) -> Optional[float]:
    """Stored daysInStage if numeric, else days since stageChangedAt"""
    existing = deal.get("daysInStage")
    if existing is not None and not isinstance(existing, bool):
        try:
            value = float(existing)
        except (TypeError, ValueError, OverflowError):
            value = None
        if value is not None and math.isfinite(value):
            return value
    return days_since(deal.get("stageChangedAt"), now)


def score_deal(deal: Dict, settings, account_age_days: Optional[int], now: datetime) -> Dict:
    """Deal enrichi: aiScore, aiConfidence, aiFactors (jamais persiste)"""
    last_activity = effective_last_activity(deal)
    days_in_stage = derive_days_in_stage(deal, now)
    deal_for_scoring = {
        **deal,
        "lastActivityAt": last_activity,
        "daysInStage": days_in_stage if days_in_stage is not None else deal.get("daysInStage"),
    }
    scoring = calculate_deal_score(
        deal_for_scoring,
        settings,
        account_age_days=account_age_days,
        deal_age_days=days_since(deal.get("createdAt"), now),
        activity_recency_days=days_since(last_activity, now),
        now=now,
    )
    return {
        **deal_for_scoring,
        "aiScore": scoring["score"],
        "aiConfidence": scoring["confidence"],
        "aiFactors": scoring["factors"],
    }


# ==================== AGGREGATION ====================

def partition_deals(deals: List[Dict]) -> Tuple[List[Dict], List[Dict]]:
    """(won, pipeline); closed lost deals are in neither"""
    won = [d for d in deals if is_closed_won_stage(d.get("stage"))]
    pipeline = [d for d in deals if is_pipeline_stage(d.get("stage"))]
    return won, pipeline


def drop_overdue(pipeline: List[Dict], now: datetime) -> List[Dict]:
    """Retire les deals dont la close date est avant aujourd'hui (local)"""
    today_start = start_of_local_day(now)
    kept = []
    for deal in pipeline:
        close = to_datetime(effective_close_date(deal))
        if close is None or close >= today_start:
            kept.append(deal)
    return kept


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def weighted_amount(deal: Dict) -> float:
    return deal_amount(deal) * (deal.get("aiScore", 0) / 100)


def pipeline_metrics(won: List[Dict], pipeline: List[Dict]) -> Dict:
    """Totals, three-point forecast and confidence counts (pipeline only)"""
    closed_won = sum(deal_amount(d) for d in won)

    buckets = {HIGH: [], MEDIUM: [], LOW: []}
    for deal in pipeline:
        bucket = buckets.get(deal.get("aiConfidence"))
        if bucket is not None:
            bucket.append(deal)

    forecast = {}
    for point in FORECAST_POINTS:
        total = closed_won
        for confidence, deals in buckets.items():
            multiplier = CONFIDENCE_MULTIPLIERS[confidence][point]
            total += sum(deal_amount(d) * multiplier for d in deals)
        forecast[point] = round_half_up(total)

    return {
        "totalPipeline": sum(deal_amount(d) for d in pipeline),
        "weightedPipeline": sum(weighted_amount(d) for d in pipeline),
        "closedWon": closed_won,
        "forecast": forecast,
        "confidence": {
            "high": len(buckets[HIGH]),
            "medium": len(buckets[MEDIUM]),
            "low": len(buckets[LOW]),
        },
    }


def stage_breakdown(pipeline: List[Dict]) -> Dict[str, Dict]:
    by_stage: Dict[str, Dict] = {}
    for deal in pipeline:
        stage = deal.get("stage") or "Unknown"
        row = by_stage.setdefault(stage, {"count": 0, "value": 0, "weightedValue": 0})
        row["count"] += 1
        row["value"] += deal_amount(deal)
        row["weightedValue"] += weighted_amount(deal)
    return by_stage


async def compute_forecast(
    db,
    period: Optional[str],
    owner_id: Optional[str] = None,
    start_date_raw: Any = None,
    end_date_raw: Any = None,
    exclude_overdue: bool = False,
    now: Optional[datetime] = None,
) -> Dict:
    """ForecastResult for a period (or explicit startDate/endDate)"""
    if now is None:
        now = now_utc()

    rng = get_range_from_request(period, now, start_date_raw, end_date_raw)
    settings = await get_ri_settings(db)

    deals = await db.deals.find(build_deal_match(rng, owner_id)).to_list(None)
    account_ages = await fetch_account_ages(db, deals, now)

    scored = []
    for deal in deals:
        account_id = _object_id(deal.get("accountId"))
        account_age = account_ages.get(str(account_id)) if account_id is not None else None
        scored.append(score_deal(deal, settings, account_age, now))

    won, pipeline = partition_deals(scored)
    if exclude_overdue:
        pipeline = drop_overdue(pipeline, now)

    metrics = pipeline_metrics(won, pipeline)

    logger.info(
        f"[FORECAST] period={period} owner={owner_id or '-'} custom={rng.is_custom} "
        f"deals={len(scored)} pipeline={len(pipeline)} won={len(won)}"
    )

    return {
        "period": period,
        "startDate": rng.start_date,
        "endDate": rng.end_date,
        "summary": {"totalDeals": len(scored), **metrics},
        "byStage": stage_breakdown(pipeline),
        "deals": scored,
    }
