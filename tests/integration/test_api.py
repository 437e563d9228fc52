# integration tests for the fraud guard api
# tests end-to-end workflow: api -> gate -> stats/suspension -> response
# collaborators are swapped for in-memory versions through dependency overrides

import pytest
from datetime import datetime, timedelta
from httpx import ASGITransport, AsyncClient

from db.models import AssetType, db
from orderguard.config import FraudConfig
from orderguard.gate import FraudGate
from orderguard.limits import LimitRule
from orderguard.main import app, get_asset_store, get_gate
from orderguard.stats import InMemoryStatisticsProvider, OrderRecord
from orderguard.suspension import InMemorySuspendedAssetStore

pytestmark = pytest.mark.asyncio

RULES = (LimitRule("1 day", 3, 0.5, 0.3),)

# the asgi transport reports this as the client address
CLIENT_IP = "127.0.0.1"

CARD_ORDER = {
    "payment_method": {
        "type": "creditcard",
        "name": "Jane Doe",
        "credit_card_info": {"exp_year": 2030, "exp_month": 3, "brand": "visa", "funding": "credit", "country": "US"},
    }
}


def _failed_orders(count, **fields):
    return [
        OrderRecord(
            status="ERROR",
            payment_method_name=f"card {i}",
            payment_method_data={"expYear": "2030", "expMonth": "3", "country": "US"},
            created_at=datetime.now() - timedelta(minutes=5),
            **fields,
        )
        for i in range(count)
    ]


class TestFraudAPI:
    """integration tests for fraud guard api"""

    @pytest.fixture
    def store(self):
        return InMemorySuspendedAssetStore()

    @pytest.fixture
    def provider(self):
        return InMemoryStatisticsProvider()

    @pytest.fixture
    def make_client(self, store, provider):
        """client factory - enforcement mode is chosen per test"""

        def factory(enforce=False):
            config = FraudConfig(
                enforce_suspended_asset=enforce,
                user_limits=RULES,
                card_limits=RULES,
                ip_limits=RULES,
                email_limits=RULES,
            )
            gate = FraudGate(provider, store, config)
            app.dependency_overrides[get_gate] = lambda: gate
            app.dependency_overrides[get_asset_store] = lambda: store
            return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")

        yield factory
        app.dependency_overrides.clear()

    async def test_root_endpoint(self, make_client):
        """test root endpoint returns api info"""
        async with make_client() as client:
            response = await client.get("/")
        assert response.status_code == 200

        data = response.json()
        assert data["service"] == "Order Fraud Guard"
        assert "endpoints" in data

    async def test_health_endpoint_degraded_without_database(self, make_client, monkeypatch):
        async def failing_ping():
            raise ConnectionError("no database")

        monkeypatch.setattr(db, "ping", failing_ping)
        async with make_client() as client:
            response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "degraded", "database_connected": False}

    async def test_clean_order_is_allowed(self, make_client):
        async with make_client(enforce=True) as client:
            response = await client.post("/orders/screen", json={"remote_user_id": 1, "order": CARD_ORDER})

        assert response.status_code == 200
        data = response.json()
        assert data["allowed"] is True
        assert set(data["checks"]) == {"ip", "credit_card", "user"}
        assert data["flagged"] == []

    async def test_suspicious_guest_logged_but_allowed(self, make_client, provider, store):
        for order in _failed_orders(4, email="guest@example.com"):
            provider.add(order)

        async with make_client(enforce=False) as client:
            response = await client.post(
                "/orders/screen",
                json={"order": {"guest_info": {"email": "Guest@Example.com"}}},
            )

        assert response.status_code == 200
        data = response.json()
        assert data["flagged"] == ["email"]
        assert data["checks"]["email"]["breached_limit"] == ["1 day", 3, 0.5, 0.3]
        assert await store.exists(AssetType.EMAIL_ADDRESS, "guest@example.com")

    async def test_suspicious_ip_rejected_when_enforced(self, make_client, provider, store):
        for order in _failed_orders(4, req_ip=CLIENT_IP):
            provider.add(order)

        async with make_client(enforce=True) as client:
            response = await client.post("/orders/screen", json={"order": {}})

        assert response.status_code == 403
        data = response.json()
        assert data["message"].startswith(f"Fraud: IP {CLIENT_IP} failed fraud protection")
        assert data["context"]["checks"] == ["ip"]
        assert await store.exists(AssetType.IP, CLIENT_IP)

    async def test_suspended_card_rejected_when_enforced(self, make_client, store):
        await store.create(AssetType.CREDIT_CARD, "Jane Doe-visa-3-2030-credit", reason="chargebacks")

        async with make_client(enforce=True) as client:
            response = await client.post("/orders/screen", json={"order": CARD_ORDER})

        assert response.status_code == 403
        assert response.json()["context"]["fingerprint"] == "Jane Doe-visa-3-2030-credit"

    async def test_get_and_clear_suspension(self, make_client, store):
        await store.create(AssetType.EMAIL_ADDRESS, "guest@example.com", reason="too many errors")

        async with make_client() as client:
            found = await client.get("/suspended-assets/EMAIL_ADDRESS/Guest@Example.com")
            cleared = await client.delete("/suspended-assets/EMAIL_ADDRESS/Guest@Example.com")
            missing = await client.get("/suspended-assets/EMAIL_ADDRESS/guest@example.com")

        assert found.status_code == 200
        assert found.json()["reason"] == "too many errors"
        assert cleared.status_code == 200
        assert cleared.json()["deleted"] is True
        assert missing.status_code == 404
        assert not await store.exists(AssetType.EMAIL_ADDRESS, "guest@example.com")

    async def test_invalid_request_body(self, make_client):
        async with make_client() as client:
            response = await client.post("/orders/screen", json={"remote_user_id": 1})

        assert response.status_code == 422
