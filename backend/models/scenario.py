"""
Keystone CRM - Modeles Scenario (what-if)
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class ScenarioAdjustment(BaseModel):
    """Override hypothetique pour un deal de la baseline"""
    model_config = ConfigDict(extra="ignore")

    dealId: str
    newStage: Optional[str] = None
    newValue: Optional[float] = None
    newCloseDate: Optional[str] = None


class ScenarioRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    period: Optional[str] = None
    startDate: Optional[str] = None
    endDate: Optional[str] = None
    excludeOverdue: bool = False
    adjustments: List[ScenarioAdjustment]
