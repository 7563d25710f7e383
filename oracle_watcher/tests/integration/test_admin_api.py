"""
ORACLE WATCHER — Integration tests for the HTTP surface
"""
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from oracle_watcher.api.app import create_app
from oracle_watcher.data.models import AlertType, LastFetchRecord, MetalPrices, PriceSnapshot, PriceSource
from oracle_watcher.runtime import build_runtime

from conftest import FakeContract, RecordingChannel


@pytest.fixture
def on_chain():
    return MetalPrices(gold=4950.0, silver=90.0, platinum=2300.0, palladium=1800.0)


@pytest.fixture
def runtime(settings, backend, on_chain):
    return build_runtime(settings, backend=backend, contract=FakeContract(on_chain), channels=[RecordingChannel()])


@pytest.fixture
def client(runtime):
    return TestClient(create_app(runtime, start_scheduler=False))


class TestPublicEndpoints:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["version"] == "1.0.0"
        assert isinstance(data["uptime"], int)

    @pytest.mark.asyncio
    async def test_status_fresh(self, client):
        data = client.get("/status").json()
        assert data["state"] == "stopped"
        assert data["killSwitch"] is False
        assert data["overrideActive"] is False
        assert data["lastUpdate"] is None
        assert data["prices"]["current"] is None
        assert data["prices"]["onChain"]["gold"] == 4950.0
        assert data["config"]["updateStrategy"] == "atomic"

    @pytest.mark.asyncio
    async def test_status_deviations(self, client, runtime, clock, spot_prices):
        await runtime.store.set_last_fetch(LastFetchRecord(
            timestamp=clock(), prices=spot_prices, source=PriceSource.GOLDAPI,
        ))
        data = client.get("/status").json()
        assert data["lastFetch"]["source"] == "goldapi"
        assert data["prices"]["current"]["gold"] == 5000.0
        assert data["prices"]["deviations"]["gold"] == 1.01
        assert data["prices"]["deviations"]["silver"] == 0.0

    @pytest.mark.asyncio
    async def test_status_with_unreachable_chain(self, client, runtime):
        runtime.contract.read_error = ConnectionError("rpc down")
        response = client.get("/status")
        assert response.status_code == 200
        assert response.json()["prices"]["onChain"] is None

    @pytest.mark.asyncio
    async def test_prices(self, client, runtime, clock, spot_prices):
        await runtime.store.set_last_fetch(LastFetchRecord(
            timestamp=clock(), prices=spot_prices, source=PriceSource.METALS_LIVE,
        ))
        data = client.get("/prices").json()
        assert data["source"] == "metals-live"
        assert data["fetched"]["silver"] == 90.0
        assert data["onChain"]["gold"] == 4950.0

    @pytest.mark.asyncio
    async def test_history_default_and_cap(self, client, runtime, clock, spot_prices):
        for _ in range(210):
            await runtime.store.push_price_snapshot(PriceSnapshot(
                timestamp=clock(), fetched=spot_prices, on_chain=spot_prices, source=PriceSource.GOLDAPI,
            ))
        assert client.get("/history").json()["count"] == 50
        assert client.get("/history?limit=500").json()["count"] == 200
        assert client.get("/history?limit=3").json()["count"] == 3

    @pytest.mark.asyncio
    async def test_not_initialized(self):
        client = TestClient(create_app(None, start_scheduler=False))
        assert client.get("/health").status_code == 503


class TestAdminEndpoints:
    @pytest.mark.asyncio
    async def test_kill_switch(self, client, runtime):
        response = client.post("/admin/kill-switch", json={"active": True})
        assert response.status_code == 200
        assert response.json() == {"success": True, "killSwitch": True}
        assert await runtime.store.get_kill_switch() is True

        alerts = runtime.dispatcher.channels[0].alerts
        assert [a.type for a in alerts] == [AlertType.KILL_SWITCH]
        assert alerts[0].data == {"active": True}

    @pytest.mark.asyncio
    async def test_kill_switch_requires_boolean(self, client):
        assert client.post("/admin/kill-switch", json={"active": "yes"}).status_code == 422
        assert client.post("/admin/kill-switch", json={}).status_code == 422

    @pytest.mark.asyncio
    async def test_override_set_and_clear(self, client, runtime):
        body = {"prices": {"gold": 6000, "silver": 100, "platinum": 2500, "palladium": 2000}}
        response = client.post("/admin/override", json=body)
        assert response.status_code == 200
        data = response.json()
        assert data["override"]["gold"] == 6000
        assert data["expiresAt"]

        override = await runtime.store.get_override()
        assert override.prices.silver == 100

        assert client.delete("/admin/override").status_code == 200
        assert await runtime.store.get_override() is None

    @pytest.mark.asyncio
    async def test_override_requires_all_prices(self, client):
        body = {"prices": {"gold": 6000, "silver": 100, "platinum": 2500}}
        assert client.post("/admin/override", json=body).status_code == 422
        body = {"prices": {"gold": 6000, "silver": 0, "platinum": 2500, "palladium": 2000}}
        assert client.post("/admin/override", json=body).status_code == 422

    @pytest.mark.asyncio
    async def test_override_with_auxiliary(self, client, runtime):
        body = {
            "prices": {"gold": 6000, "silver": 100, "platinum": 2500, "palladium": 2000},
            "expiresInMinutes": 5,
            "auxiliaryPrice": 3300,
        }
        assert client.post("/admin/override", json=body).status_code == 200
        assert (await runtime.store.get_override()).auxiliary_price == 3300

    @pytest.mark.asyncio
    async def test_force_update_is_fire_and_forget(self, client, runtime):
        runtime.scheduler.trigger = MagicMock()
        response = client.post("/admin/force-update")
        assert response.status_code == 200
        assert response.json()["success"] is True
        runtime.scheduler.trigger.assert_called_once()


class TestAuthAndCors:
    @pytest.fixture
    def secured(self, settings, backend, on_chain):
        secured_settings = settings.model_copy(update={"watcher_api_key": "secret"})
        runtime = build_runtime(secured_settings, backend=backend, contract=FakeContract(on_chain), channels=[])
        return TestClient(create_app(runtime, start_scheduler=False))

    @pytest.mark.asyncio
    async def test_admin_requires_bearer(self, secured):
        assert secured.post("/admin/kill-switch", json={"active": True}).status_code == 401
        wrong = {"Authorization": "Bearer nope"}
        assert secured.post("/admin/kill-switch", json={"active": True}, headers=wrong).status_code == 401
        ok = {"Authorization": "Bearer secret"}
        assert secured.post("/admin/kill-switch", json={"active": True}, headers=ok).status_code == 200

    @pytest.mark.asyncio
    async def test_public_routes_open(self, secured):
        assert secured.get("/health").status_code == 200
        assert secured.get("/status").status_code == 200

    @pytest.mark.asyncio
    async def test_cors_preflight(self, client):
        response = client.options(
            "/admin/kill-switch",
            headers={
                "Origin": "https://admin.example",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "Authorization, Content-Type",
            },
        )
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"
