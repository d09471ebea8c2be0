"""
Keystone CRM - Service Settings

Gestion des parametres systeme dynamiques.
Collection: settings (chaque doc identifie par key)

Settings disponibles:
- revenue_intelligence: parametres du scoring des deals (payload sous "settings")
"""

import logging
from typing import Optional, Dict, Any

from config import now_utc

logger = logging.getLogger("settings")


async def get_setting(db, key: str) -> Optional[Dict]:
    """Recupere un setting par sa cle"""
    doc = await db.settings.find_one({"key": key}, {"_id": 0})
    return doc


async def upsert_setting(db, key: str, data: Dict[str, Any], updated_by: str = "system") -> Dict:
    """Cree ou met a jour un setting"""
    data = {**data, "key": key, "updated_at": now_utc(), "updated_by": updated_by}

    existing = await db.settings.find_one({"key": key})
    if existing:
        await db.settings.update_one({"key": key}, {"$set": data})
    else:
        data["created_at"] = now_utc()
        await db.settings.insert_one(data)

    logger.info(f"[SETTINGS] {key} updated by {updated_by}")
    result = await db.settings.find_one({"key": key}, {"_id": 0})
    return result
