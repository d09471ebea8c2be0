"""
Keystone CRM - Revenue Intelligence settings resolver

Stored document: settings collection, key "revenue_intelligence", payload
under "settings" (stored verbatim by PUT, sanitized here on every read).

Resolution happens in two stages:
1. parse_partial_settings: keep only the finite numeric leaves of the raw
   payload (anything else is dropped)
2. resolve_settings: merge that partial dict over the defaults and build
   a fully populated ScoringSettings

A corrupted settings document must never break forecasting, so nothing
here raises.
"""

import logging
from typing import Any, Dict, Optional

from pydantic.alias_generators import to_camel

from models.scoring import SETTINGS_GROUPS, ScoringSettings, is_finite_number
from services.settings import get_setting, upsert_setting

logger = logging.getLogger("ri_settings")

RI_SETTINGS_KEY = "revenue_intelligence"

DEFAULT_RI_SETTINGS = ScoringSettings()


def _as_dict(value: Any) -> Optional[Dict]:
    return value if isinstance(value, dict) else None


def parse_partial_settings(raw: Any) -> Dict[str, Dict[str, Any]]:
    """Valid numeric leaves of a raw settings payload, grouped like the model"""
    raw = _as_dict(raw)
    if raw is None:
        return {}
    # Stored documents wrap the payload; bare payloads are accepted too
    if _as_dict(raw.get("settings")) is not None:
        raw = raw["settings"]

    partial: Dict[str, Dict[str, Any]] = {}

    stage_weights = _as_dict(raw.get("stageWeights")) or {}
    weights = {str(k): v for k, v in stage_weights.items() if is_finite_number(v)}
    if weights:
        partial["stageWeights"] = weights

    for group_name, model in SETTINGS_GROUPS.items():
        group_raw = _as_dict(raw.get(group_name)) or {}
        group = {}
        for field_name in model.model_fields:
            key = to_camel(field_name)
            value = group_raw.get(key)
            if is_finite_number(value):
                group[key] = value
        if group:
            partial[group_name] = group

    return partial


def resolve_settings(raw: Any) -> ScoringSettings:
    """Fully populated settings; defaults fill every missing or invalid field"""
    partial = parse_partial_settings(raw)
    if not partial:
        return DEFAULT_RI_SETTINGS

    payload: Dict[str, Any] = {
        "stageWeights": {**DEFAULT_RI_SETTINGS.stage_weights, **partial.get("stageWeights", {})},
    }
    for group_name in SETTINGS_GROUPS:
        if group_name in partial:
            payload[group_name] = partial[group_name]
    return ScoringSettings.model_validate(payload)


async def get_ri_settings(db) -> ScoringSettings:
    """Settings du scoring (avec defaults)"""
    doc = await get_setting(db, RI_SETTINGS_KEY)
    return resolve_settings(doc)


async def save_ri_settings(db, incoming: Any, updated_by: str = "system") -> ScoringSettings:
    """Stocke le payload tel quel (sanitize a la lecture), retourne les settings resolus"""
    await upsert_setting(db, RI_SETTINGS_KEY, {"settings": incoming}, updated_by=updated_by)
    return await get_ri_settings(db)
