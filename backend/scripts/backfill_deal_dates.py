"""
Keystone CRM - Backfill: repair legacy date fields on deals.
Run: cd backend && python3 scripts/backfill_deal_dates.py
Idempotent, safe to run repeatedly (same code path as POST /api/revenue-intelligence/backfill).
"""

import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config import client, get_db
from services.deal_backfill import backfill_deal_dates


async def backfill():
    db = get_db()
    if db is None:
        print("MONGO_URL is not set, nothing to do")
        return None

    result = await backfill_deal_dates(db)
    client.close()

    print("\n════════════════════════════════════")
    print("  DEAL DATES BACKFILL REPORT")
    print("════════════════════════════════════")
    print(f"  Deals scanned:              {result['scanned']}")
    print(f"  Deals updated:              {result['updated']}")
    print(f"  lastActivityAt fixed:       {result['fixedLastActivityAt']}")
    print(f"  stageChangedAt fixed:       {result['fixedStageChangedAt']}")
    print(f"  forecastedCloseDate parsed: {result['normalizedForecastedCloseDate']}")
    print(f"  closeDate parsed:           {result['normalizedCloseDate']}")
    print(f"  createdAt parsed:           {result['normalizedCreatedAt']}")
    print(f"  updatedAt parsed:           {result['normalizedUpdatedAt']}")
    print("════════════════════════════════════")

    return result


if __name__ == "__main__":
    asyncio.run(backfill())
