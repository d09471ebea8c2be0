"""
Keystone CRM - Snapshots quotidiens du forecast

Un document par jour UTC dans revenue_intelligence_snapshots, _id
"daily:YYYY-MM-DD". L'upsert $setOnInsert deduplique de facon atomique,
meme avec plusieurs instances du scheduler.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from config import now_utc
from services.forecast import compute_forecast

logger = logging.getLogger("ri_snapshots")

SNAPSHOT_PERIOD = "current_quarter"


def snapshot_key(now: datetime) -> str:
    return f"daily:{now.astimezone(timezone.utc).strftime('%Y-%m-%d')}"


async def upsert_daily_snapshot(db, now: Optional[datetime] = None) -> Dict:
    """Forecast du trimestre courant, stocke une fois par jour"""
    if now is None:
        now = now_utc()

    key = snapshot_key(now)
    if await db.revenue_intelligence_snapshots.find_one({"_id": key}, {"_id": 1}):
        return {"scheduleKey": key, "created": False}

    forecast = await compute_forecast(db, SNAPSHOT_PERIOD, now=now)
    doc = {
        "_id": key,
        "kind": "scheduled",
        "scheduleKey": key,
        "period": SNAPSHOT_PERIOD,
        "range": {"startDate": forecast["startDate"], "endDate": forecast["endDate"]},
        "summary": forecast["summary"],
        "createdAt": now,
    }
    result = await db.revenue_intelligence_snapshots.update_one(
        {"_id": key}, {"$setOnInsert": doc}, upsert=True
    )
    created = result.upserted_id is not None
    if created:
        logger.info(f"[SNAPSHOT] {key} stored (deals={forecast['summary']['totalDeals']})")
    return {"scheduleKey": key, "created": created}


async def list_snapshots(db, limit: int = 30) -> List[Dict]:
    return await db.revenue_intelligence_snapshots.find({}).sort("createdAt", -1).to_list(limit)
