"""
Keystone CRM - Backfill des dates de deals (legacy)

Repare les champs temporels utilises par le scoring et le forecast:
- dates stockees en string (createdAt, updatedAt, closeDate, forecastedCloseDate)
  -> datetime natif
- lastActivityAt manquant -> deal_history, sinon updatedAt, sinon createdAt
- stageChangedAt manquant -> dernier stage_changed, sinon dernier event,
  sinon updatedAt, sinon createdAt

Idempotent: une fois repare, un deal ne matche plus la requete de selection.
Les ecritures sont faites par chunks non ordonnes: un deal malforme ne bloque
pas le reste du lot.
"""

import logging
from typing import Dict, List

from pymongo import UpdateOne

from services.date_ranges import parse_any_date

logger = logging.getLogger("backfill")

BACKFILL_SCAN_LIMIT = 10_000
BULK_CHUNK_SIZE = 500

STAGE_CHANGED_EVENT = "stage_changed"

# Champ -> compteur de normalisation
STRING_DATE_FIELDS = {
    "createdAt": "normalizedCreatedAt",
    "updatedAt": "normalizedUpdatedAt",
    "forecastedCloseDate": "normalizedForecastedCloseDate",
    "closeDate": "normalizedCloseDate",
}

BACKFILL_QUERY = {
    "$or": [
        {"lastActivityAt": {"$exists": False}},
        {"stageChangedAt": {"$exists": False}},
        {"forecastedCloseDate": {"$type": "string"}},
        {"closeDate": {"$type": "string"}},
        {"createdAt": {"$type": "string"}},
        {"updatedAt": {"$type": "string"}},
    ]
}

BACKFILL_PROJECTION = {
    "lastActivityAt": 1,
    "stageChangedAt": 1,
    "forecastedCloseDate": 1,
    "closeDate": 1,
    "createdAt": 1,
    "updatedAt": 1,
    "stage": 1,
}


def history_pipeline(deal_ids: List) -> List[Dict]:
    return [
        {"$match": {"dealId": {"$in": deal_ids}}},
        {
            "$group": {
                "_id": "$dealId",
                "lastHistoryAt": {"$max": "$createdAt"},
                "lastStageAt": {
                    "$max": {
                        "$cond": [{"$eq": ["$eventType", STAGE_CHANGED_EVENT]}, "$createdAt", None]
                    }
                },
            }
        },
    ]


async def load_history_map(db, deal_ids: List) -> Dict[str, Dict]:
    """dealId (str) -> {lastHistoryAt, lastStageAt}. Best effort: {} en cas d'erreur"""
    if not deal_ids:
        return {}
    try:
        rows = await db.deal_history.aggregate(history_pipeline(deal_ids)).to_list(None)
    except Exception as e:
        logger.warning(f"[BACKFILL] deal_history aggregation failed, using deal fields only: {e}")
        return {}
    return {
        str(row["_id"]): {"lastHistoryAt": row.get("lastHistoryAt"), "lastStageAt": row.get("lastStageAt")}
        for row in rows
    }


def _first_date(*values):
    for value in values:
        parsed = parse_any_date(value)
        if parsed:
            return parsed
    return None


def plan_deal_update(deal: Dict, hist: Dict, counters: Dict[str, int]) -> Dict:
    """$set a appliquer a un deal (vide si rien a faire); incremente les compteurs"""
    updates = {}

    for field, counter in STRING_DATE_FIELDS.items():
        if isinstance(deal.get(field), str):
            parsed = parse_any_date(deal[field])
            # unparseable strings are left as they are
            if parsed:
                updates[field] = parsed
                counters[counter] += 1

    if not deal.get("lastActivityAt"):
        fallback = _first_date(hist.get("lastHistoryAt"), deal.get("updatedAt"), deal.get("createdAt"))
        if fallback:
            updates["lastActivityAt"] = fallback
            counters["fixedLastActivityAt"] += 1

    if not deal.get("stageChangedAt"):
        fallback = _first_date(
            hist.get("lastStageAt"),
            hist.get("lastHistoryAt"),
            deal.get("updatedAt"),
            deal.get("createdAt"),
        )
        if fallback:
            updates["stageChangedAt"] = fallback
            counters["fixedStageChangedAt"] += 1

    return updates


async def backfill_deal_dates(db) -> Dict:
    """Run the repair pass; returns counters"""
    counters = {
        "fixedLastActivityAt": 0,
        "fixedStageChangedAt": 0,
        "normalizedForecastedCloseDate": 0,
        "normalizedCloseDate": 0,
        "normalizedCreatedAt": 0,
        "normalizedUpdatedAt": 0,
    }
    scanned = 0
    updated = 0

    deals = await db.deals.find(BACKFILL_QUERY, BACKFILL_PROJECTION).limit(BACKFILL_SCAN_LIMIT).to_list(None)
    history = await load_history_map(db, [d["_id"] for d in deals if d.get("_id")])

    ops = []
    for deal in deals:
        scanned += 1
        updates = plan_deal_update(deal, history.get(str(deal.get("_id")), {}), counters)
        if updates:
            ops.append(UpdateOne({"_id": deal["_id"]}, {"$set": updates}))

        if len(ops) >= BULK_CHUNK_SIZE:
            result = await db.deals.bulk_write(ops, ordered=False)
            updated += result.modified_count or 0
            ops = []

    if ops:
        result = await db.deals.bulk_write(ops, ordered=False)
        updated += result.modified_count or 0

    logger.info(f"[BACKFILL] scanned={scanned} updated={updated} {counters}")

    return {"ok": True, "scanned": scanned, "updated": updated, **counters}
