"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Keystone CRM - Revenue Intelligence API                                     ║
║                                                                              ║
║  HTTP layer over the in-memory database:                                     ║
║  1. {data, error} envelope on every response                                 ║
║  2. Status codes (db_unavailable, invalid ids, missing deals, bad payloads)  ║
║  3. Admin-only settings update and backfill                                  ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from config import hash_password
from routes import auth, revenue_intelligence
from routes.auth import get_current_user
import server
from server import app

API = "/api/revenue-intelligence"

SALES_USER = {"id": "u-sales", "email": "sales@keystone.test", "role": "sales", "is_active": True}
ADMIN_USER = {"id": "u-admin", "email": "admin@keystone.test", "role": "admin", "is_active": True}


@pytest.fixture
def client(db, monkeypatch):
    monkeypatch.setattr(revenue_intelligence, "get_db", lambda: db)
    monkeypatch.setattr(auth, "get_db", lambda: db)
    app.dependency_overrides[get_current_user] = lambda: SALES_USER
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_client(client):
    app.dependency_overrides[get_current_user] = lambda: ADMIN_USER
    return client


# ═══════════════════════════════════════════════════════════════
# 1. SETTINGS
# ═══════════════════════════════════════════════════════════════

class TestSettingsEndpoints:

    def test_get_settings_defaults_when_empty(self, client):
        r = client.get(f"{API}/settings")
        assert r.status_code == 200
        body = r.json()
        assert body["error"] is None
        assert body["data"]["dealAge"]["warnDays"] == 60
        assert body["data"]["stageWeights"]["Negotiation"] == 15

    def test_get_defaults(self, client):
        r = client.get(f"{API}/settings/defaults")
        assert r.json()["data"]["closeDate"]["overdueImpact"] == -20

    def test_put_requires_admin(self, client):
        r = client.put(f"{API}/settings", json={"dealAge": {"warnDays": 10}})
        assert r.status_code == 403
        assert r.json() == {"data": None, "error": "Accès admin requis"}

    def test_put_stores_and_resolves(self, admin_client, db):
        r = admin_client.put(f"{API}/settings", json={"dealAge": {"warnDays": 10, "agingDays": "x"}})
        assert r.status_code == 200
        data = r.json()["data"]
        assert data["dealAge"]["warnDays"] == 10
        assert data["dealAge"]["agingDays"] == 90

        r = admin_client.get(f"{API}/settings")
        assert r.json()["data"]["dealAge"]["warnDays"] == 10
        assert db.settings.docs[0]["updated_by"] == "admin@keystone.test"


# ═══════════════════════════════════════════════════════════════
# 2. FORECAST / SCORE / REPS
# ═══════════════════════════════════════════════════════════════

class TestForecastEndpoints:

    @pytest.fixture
    def deals(self, db):
        now = datetime.now(timezone.utc)
        account_id = ObjectId()
        db.accounts.docs.append({"_id": account_id, "createdAt": now - timedelta(days=10)})
        db.deals.docs.extend([
            {"_id": ObjectId(), "title": "Renewal", "stage": "Negotiation", "amount": 12000,
             "ownerId": "rep-1", "accountId": str(account_id), "closeDate": now,
             "lastActivityAt": now - timedelta(days=1)},
            {"_id": ObjectId(), "title": "Upsell", "stage": "Proposal", "amount": 3000,
             "ownerId": "rep-2", "closeDate": now},
        ])
        return db.deals.docs

    def test_forecast_owner_filter_is_trimmed(self, client, deals):
        r = client.get(f"{API}/forecast", params={"ownerId": "  rep-1 "})
        assert r.status_code == 200
        data = r.json()["data"]
        assert data["period"] == "current_quarter"
        assert data["summary"]["totalDeals"] == 1
        assert data["deals"][0]["title"] == "Renewal"
        assert data["deals"][0]["_id"] == str(deals[0]["_id"])

    def test_forecast_custom_range(self, client, deals):
        r = client.get(f"{API}/forecast", params={"startDate": "2001-01-01", "endDate": "2001-12-31"})
        data = r.json()["data"]
        assert data["summary"]["totalDeals"] == 0
        assert data["startDate"].startswith("2001-01-01T00:00:00")

    def test_deal_score(self, client, deals):
        deal_id = str(deals[0]["_id"])
        r = client.get(f"{API}/deal-score/{deal_id}")
        assert r.status_code == 200
        data = r.json()["data"]
        assert data["dealId"] == deal_id
        assert data["dealName"] == "Renewal"
        assert data["value"] == 12000
        assert "New Account" in [f["factor"] for f in data["factors"]]

    def test_deal_score_invalid_id(self, client):
        r = client.get(f"{API}/deal-score/not-an-id")
        assert r.status_code == 400
        assert r.json() == {"data": None, "error": "invalid_deal_id"}

    def test_deal_score_not_found(self, client):
        r = client.get(f"{API}/deal-score/{ObjectId()}")
        assert r.status_code == 404
        assert r.json()["error"] == "deal_not_found"

    def test_rep_performance(self, client, deals):
        r = client.get(f"{API}/rep-performance")
        data = r.json()["data"]
        assert data["summary"]["totalReps"] == 2
        assert {rep["ownerId"] for rep in data["reps"]} == {"rep-1", "rep-2"}


# ═══════════════════════════════════════════════════════════════
# 3. SCENARIO
# ═══════════════════════════════════════════════════════════════

class TestScenarioEndpoint:

    @pytest.mark.parametrize("payload", [
        None,
        {"period": "current_month"},
        {"adjustments": "all of them"},
        {"adjustments": [{"newStage": "Closed Won"}]},
        {"adjustments": [{"dealId": "x", "newValue": "lots"}]},
    ])
    def test_invalid_adjustments(self, client, payload):
        r = client.post(f"{API}/scenario", json=payload)
        assert r.status_code == 400
        assert r.json() == {"data": None, "error": "invalid_adjustments"}

    def test_scenario(self, client, db):
        deal_id = ObjectId()
        db.deals.docs.append({"_id": deal_id, "stage": "Proposal", "amount": 1000,
                              "closeDate": datetime.now(timezone.utc)})
        r = client.post(f"{API}/scenario", json={
            "period": "current_quarter",
            "adjustments": [{"dealId": str(deal_id), "newStage": "Closed Won"}],
        })
        assert r.status_code == 200
        data = r.json()["data"]
        assert data["delta"]["totalPipeline"] == -1000
        assert data["scenario"]["closedWon"] == 1000
        assert data["scenario"]["adjustedDeals"][0]["_adjusted"] is True


# ═══════════════════════════════════════════════════════════════
# 4. BACKFILL / SNAPSHOTS
# ═══════════════════════════════════════════════════════════════

class TestAdminEndpoints:

    def test_backfill_requires_admin(self, client):
        assert client.post(f"{API}/backfill").status_code == 403

    def test_backfill(self, admin_client, db):
        db.deals.docs.append({"_id": ObjectId(), "createdAt": "2024-01-01"})
        r = admin_client.post(f"{API}/backfill")
        assert r.status_code == 200
        data = r.json()["data"]
        assert data["ok"] is True
        assert data["updated"] == 1

    def test_snapshots(self, client, db):
        db.revenue_intelligence_snapshots.docs.append(
            {"_id": "daily:2025-05-15", "createdAt": datetime(2025, 5, 15, tzinfo=timezone.utc)}
        )
        r = client.get(f"{API}/snapshots")
        assert r.json()["data"]["count"] == 1

    def test_snapshots_limit_validation(self, client):
        r = client.get(f"{API}/snapshots", params={"limit": 0})
        assert r.status_code == 422
        assert r.json() == {"data": None, "error": "invalid_request"}


# ═══════════════════════════════════════════════════════════════
# 5. ERRORS
# ═══════════════════════════════════════════════════════════════

class TestErrors:

    def test_db_unavailable(self, client, monkeypatch):
        monkeypatch.setattr(revenue_intelligence, "get_db", lambda: None)
        for path in ("/settings", "/forecast", "/rep-performance", f"/deal-score/{ObjectId()}"):
            r = client.get(f"{API}{path}")
            assert r.status_code == 500
            assert r.json() == {"data": None, "error": "db_unavailable"}

    def test_unexpected_error_is_enveloped(self, db, monkeypatch):
        async def boom(*args, **kwargs):
            raise RuntimeError("aggregation exploded")

        monkeypatch.setattr(revenue_intelligence, "get_db", lambda: db)
        monkeypatch.setattr(revenue_intelligence, "compute_rep_performance", boom)
        app.dependency_overrides[get_current_user] = lambda: SALES_USER
        try:
            r = TestClient(app, raise_server_exceptions=False).get(f"{API}/rep-performance")
        finally:
            app.dependency_overrides.clear()
        assert r.status_code == 500
        assert r.json() == {"data": None, "error": "aggregation exploded"}

    def test_unauthenticated(self, db, monkeypatch):
        monkeypatch.setattr(auth, "get_db", lambda: db)
        r = TestClient(app).get(f"{API}/forecast")
        assert r.status_code == 401
        assert r.json()["data"] is None


# ═══════════════════════════════════════════════════════════════
# 6. AUTH
# ═══════════════════════════════════════════════════════════════

class TestAuth:

    def test_login_me_logout(self, db, monkeypatch):
        monkeypatch.setattr(auth, "get_db", lambda: db)
        db.users.docs.append({
            "_id": ObjectId(), "id": "u-admin", "email": "admin@keystone.test",
            "password": hash_password("s3cret"), "role": "admin", "is_active": True,
        })
        http = TestClient(app)

        assert http.post("/api/auth/login", json={"email": "admin@keystone.test", "password": "nope"}).status_code == 401

        r = http.post("/api/auth/login", json={"email": " Admin@Keystone.test ", "password": "s3cret"})
        assert r.status_code == 200
        token = r.json()["token"]
        headers = {"Authorization": f"Bearer {token}"}

        me = http.get("/api/auth/me", headers=headers).json()
        assert me["email"] == "admin@keystone.test"
        assert "password" not in me

        http.post("/api/auth/logout", headers=headers)
        assert http.get("/api/auth/me", headers=headers).status_code == 401


# ═══════════════════════════════════════════════════════════════
# 7. STARTUP
# ═══════════════════════════════════════════════════════════════

class TestStartup:

    @pytest.mark.asyncio
    async def test_indexes_cover_queried_collections(self, db, monkeypatch):
        monkeypatch.setattr(server, "get_db", lambda: db)
        await server.startup()
        assert db.deal_history.indexes == ["dealId"]
        assert "closeDate" in db.deals.indexes
        assert "forecastedCloseDate" in db.deals.indexes
        assert "activities" not in db._collections

    @pytest.mark.asyncio
    async def test_no_database_skips_indexes(self, monkeypatch):
        monkeypatch.setattr(server, "get_db", lambda: None)
        await server.startup()
