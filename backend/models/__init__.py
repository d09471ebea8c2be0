"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Keystone CRM - Models Package                                               ║
║                                                                              ║
║  Exports tous les modèles pour import facile                                 ║
║  from models import ScoringSettings, ScenarioRequest, etc.                   ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

# Auth
from .auth import ADMIN_ROLES, UserLogin

# Revenue Intelligence settings
from .scoring import (
    DEFAULT_STAGE_WEIGHTS,
    SETTINGS_GROUPS,
    AccountSettings,
    ActivitySettings,
    CloseDateSettings,
    DealAgeSettings,
    ScoringSettings,
    StageDurationSettings,
    StalePanelSettings,
)

# Scenario (what-if)
from .scenario import ScenarioAdjustment, ScenarioRequest

__all__ = [
    # Auth
    "ADMIN_ROLES",
    "UserLogin",
    # Scoring settings
    "DEFAULT_STAGE_WEIGHTS",
    "SETTINGS_GROUPS",
    "AccountSettings",
    "ActivitySettings",
    "CloseDateSettings",
    "DealAgeSettings",
    "ScoringSettings",
    "StageDurationSettings",
    "StalePanelSettings",
    # Scenario
    "ScenarioAdjustment",
    "ScenarioRequest",
]
