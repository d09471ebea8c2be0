"""
Keystone CRM - Routes Revenue Intelligence

Deal scoring, forecast, rep performance, what-if scenarios, settings and
legacy data backfill. Every response uses the {data, error} envelope; the
storage check comes first in every handler.
"""

import logging
from typing import Any, Optional

from bson import ObjectId
from fastapi import APIRouter, Body, Depends, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from config import get_db, now_utc
from models.scenario import ScenarioRequest
from routes.auth import get_current_user, require_admin
from services.date_ranges import days_since
from services.deal_backfill import backfill_deal_dates
from services.forecast import compute_forecast, score_deal
from services.rep_performance import compute_rep_performance
from services.ri_settings import DEFAULT_RI_SETTINGS, get_ri_settings, save_ri_settings
from services.ri_snapshots import list_snapshots
from services.scenario import run_scenario

router = APIRouter(prefix="/revenue-intelligence", tags=["Revenue Intelligence"])
logger = logging.getLogger("revenue_intelligence")

DEFAULT_FORECAST_PERIOD = "current_quarter"

JSON_ENCODERS = {ObjectId: str}


def envelope(data: Any = None, error: Optional[str] = None, status_code: int = 200) -> JSONResponse:
    content = jsonable_encoder({"data": data, "error": error}, custom_encoder=JSON_ENCODERS)
    return JSONResponse(status_code=status_code, content=content)


def db_unavailable() -> JSONResponse:
    return envelope(error="db_unavailable", status_code=500)


# ==================== SETTINGS ====================

@router.get("/settings")
async def get_settings(user: dict = Depends(get_current_user)):
    """Settings resolus (stockes + defaults)"""
    db = get_db()
    if db is None:
        return db_unavailable()
    settings = await get_ri_settings(db)
    return envelope(settings.to_api())


@router.get("/settings/defaults")
async def get_default_settings(user: dict = Depends(get_current_user)):
    """Defaults livres avec l'application"""
    return envelope(DEFAULT_RI_SETTINGS.to_api())


@router.put("/settings")
async def update_settings(payload: Any = Body(None), user: dict = Depends(require_admin)):
    """Stocke le payload tel quel (sanitize a la lecture)"""
    db = get_db()
    if db is None:
        return db_unavailable()
    settings = await save_ri_settings(
        db,
        payload if payload is not None else {},
        updated_by=user.get("email", "admin"),
    )
    return envelope(settings.to_api())


# ==================== BACKFILL ====================

@router.post("/backfill")
async def run_backfill(user: dict = Depends(require_admin)):
    """Repare les dates legacy des deals (idempotent)"""
    db = get_db()
    if db is None:
        return db_unavailable()
    logger.info(f"[BACKFILL] started by {user.get('email', 'admin')}")
    result = await backfill_deal_dates(db)
    return envelope(result)


# ==================== FORECAST ====================

@router.get("/forecast")
async def get_forecast(
    period: str = DEFAULT_FORECAST_PERIOD,
    ownerId: Optional[str] = None,
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    excludeOverdue: Optional[str] = None,
    user: dict = Depends(get_current_user),
):
    """Forecast du pipeline avec intervalles de confiance"""
    db = get_db()
    if db is None:
        return db_unavailable()

    data = await compute_forecast(
        db,
        period or DEFAULT_FORECAST_PERIOD,
        owner_id=(ownerId or "").strip() or None,
        start_date_raw=startDate,
        end_date_raw=endDate,
        exclude_overdue=(excludeOverdue or "").lower() == "true",
    )
    return envelope(data)


@router.get("/deal-score/{deal_id}")
async def get_deal_score(deal_id: str, user: dict = Depends(get_current_user)):
    """Score detaille d'un deal"""
    db = get_db()
    if db is None:
        return db_unavailable()

    if not ObjectId.is_valid(deal_id):
        return envelope(error="invalid_deal_id", status_code=400)

    deal = await db.deals.find_one({"_id": ObjectId(deal_id)})
    if not deal:
        return envelope(error="deal_not_found", status_code=404)

    now = now_utc()
    account_age = None
    account_id = deal.get("accountId")
    if account_id and ObjectId.is_valid(str(account_id)):
        account = await db.accounts.find_one({"_id": ObjectId(str(account_id))})
        if account:
            account_age = days_since(account.get("createdAt"), now)

    settings = await get_ri_settings(db)
    scored = score_deal(deal, settings, account_age, now)

    return envelope({
        "dealId": deal["_id"],
        "dealName": deal.get("title") or "Untitled",
        "stage": deal.get("stage") or "new",
        "value": deal.get("amount") or 0,
        "score": scored["aiScore"],
        "confidence": scored["aiConfidence"],
        "factors": scored["aiFactors"],
    })


@router.get("/rep-performance")
async def get_rep_performance(
    period: str = DEFAULT_FORECAST_PERIOD,
    user: dict = Depends(get_current_user),
):
    """Performance et forecast par commercial"""
    db = get_db()
    if db is None:
        return db_unavailable()
    data = await compute_rep_performance(db, period or DEFAULT_FORECAST_PERIOD)
    return envelope(data)


@router.post("/scenario")
async def post_scenario(payload: Any = Body(None), user: dict = Depends(get_current_user)):
    """What-if: ajustements stage / montant / close date sur la baseline"""
    db = get_db()
    if db is None:
        return db_unavailable()

    if not isinstance(payload, dict) or not isinstance(payload.get("adjustments"), list):
        return envelope(error="invalid_adjustments", status_code=400)
    try:
        request = ScenarioRequest.model_validate(payload)
    except ValidationError as e:
        logger.warning(f"[SCENARIO] invalid payload: {e.error_count()} error(s)")
        return envelope(error="invalid_adjustments", status_code=400)

    data = await run_scenario(db, request)
    return envelope(data)


# ==================== SNAPSHOTS ====================

@router.get("/snapshots")
async def get_snapshots(
    limit: int = Query(30, ge=1, le=365),
    user: dict = Depends(get_current_user),
):
    """Derniers snapshots quotidiens du forecast"""
    db = get_db()
    if db is None:
        return db_unavailable()
    snapshots = await list_snapshots(db, limit)
    return envelope({"snapshots": snapshots, "count": len(snapshots)})
