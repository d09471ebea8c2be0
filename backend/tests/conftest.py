"""
Keystone CRM - Test fixtures
"""

import os
import sys
from datetime import datetime, timezone
from pathlib import Path

# Environment must be fixed before config is imported
os.environ.pop("MONGO_URL", None)
os.environ["APP_TIMEZONE"] = "UTC"
os.environ["REVENUE_INTELLIGENCE_SNAPSHOTS_DISABLED"] = "true"

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pytest

from tests.fake_motor import FakeDB

NOW = datetime(2025, 5, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def db():
    return FakeDB()


@pytest.fixture
def now():
    return NOW
