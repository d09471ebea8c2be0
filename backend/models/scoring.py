"""
Keystone CRM - Revenue Intelligence scoring settings

Fully populated settings used by the deal scorer. Field names are snake_case
in Python and camelCase on the wire (stored document and API payloads).
Build instances through services.ri_settings.resolve_settings, which never
raises on malformed stored data.
"""

import math
from typing import Any, Dict, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Number = Union[int, float]


def is_finite_number(value: Any) -> bool:
    """int or float that fits a finite double (bool excluded)"""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        # int beyond float range
        return False


DEFAULT_STAGE_WEIGHTS: Dict[str, Number] = {
    "new": -10,
    "Draft / Deal Created": -10,
    "Lead": -10,
    "Qualified": 0,
    "Initial Validation": 2,
    "Manager Approval": 4,
    "Finance Approval": 6,
    "Legal Review": 8,
    "Executive Approval": 10,
    "Sent for Signature": 14,
    "Proposal": 10,
    "Negotiation": 15,
    "Submitted for Review": 6,
    "Approved / Ready for Signature": 12,
    "Contract Signed / Closed Won": 0,
    "Closed Won": 0,
    "Closed Lost": 0,
}


class SettingsGroup(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class DealAgeSettings(SettingsGroup):
    warn_days: Number = 60
    aging_days: Number = 90
    stale_days: Number = 180
    warn_impact: Number = -3
    aging_impact: Number = -8
    stale_impact: Number = -15


class ActivitySettings(SettingsGroup):
    hot_days: Number = 7
    warm_days: Number = 14
    cool_days: Number = 21
    cold_days: Number = 30
    hot_impact: Number = 10
    warm_impact: Number = 5
    cool_impact: Number = -6
    cold_impact: Number = -12


class AccountSettings(SettingsGroup):
    mature_days: Number = 365
    new_days: Number = 30
    mature_impact: Number = 8
    new_impact: Number = -5


class StageDurationSettings(SettingsGroup):
    warn_days: Number = 30
    stuck_days: Number = 60
    warn_impact: Number = -5
    stuck_impact: Number = -10


class CloseDateSettings(SettingsGroup):
    overdue_impact: Number = -20
    closing_soon_days: Number = 7
    closing_soon_impact: Number = 12
    closing_soon_warm_days: Number = 14
    closing_soon_warm_impact: Number = 8


class StalePanelSettings(SettingsGroup):
    """UI thresholds for the stale deals panel (not used by the scorer)"""
    no_activity_days: Number = 30
    stuck_in_stage_days: Number = 60


class ScoringSettings(SettingsGroup):
    stage_weights: Dict[str, Number] = Field(default_factory=lambda: dict(DEFAULT_STAGE_WEIGHTS))
    deal_age: DealAgeSettings = Field(default_factory=DealAgeSettings)
    activity: ActivitySettings = Field(default_factory=ActivitySettings)
    account: AccountSettings = Field(default_factory=AccountSettings)
    stage_duration: StageDurationSettings = Field(default_factory=StageDurationSettings)
    close_date: CloseDateSettings = Field(default_factory=CloseDateSettings)
    stale_panel: StalePanelSettings = Field(default_factory=StalePanelSettings)

    def stage_weight(self, stage: str) -> Number:
        return self.stage_weights.get(stage, 0)

    def to_api(self) -> dict:
        return self.model_dump(by_alias=True)


# Group name (wire) -> model, in document order
SETTINGS_GROUPS = {
    "dealAge": DealAgeSettings,
    "activity": ActivitySettings,
    "account": AccountSettings,
    "stageDuration": StageDurationSettings,
    "closeDate": CloseDateSettings,
    "stalePanel": StalePanelSettings,
}
