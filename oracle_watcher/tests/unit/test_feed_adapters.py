"""
ORACLE WATCHER — Tests for price feed adapters
"""
from typing import Any, Dict, List
from unittest.mock import AsyncMock

import pytest

from oracle_watcher.config.settings import FeedSettings
from oracle_watcher.data.adapters.crypto_adapter import CoinGeckoAdapter
from oracle_watcher.data.adapters.goldapi_adapter import GoldApiAdapter
from oracle_watcher.data.adapters.metals_live_adapter import MetalsLiveAdapter, parse_spot_payload

from conftest import RecordingSleep


class FakeResponse:
    def __init__(self, status: int, payload: Any = None):
        self.status = status
        self._payload = payload

    async def json(self, content_type=None):
        return self._payload

    async def text(self):
        return str(self._payload)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """Answers GET requests from a url-suffix → response table."""

    def __init__(self, routes: Dict[str, FakeResponse]):
        self.routes = routes
        self.requested: List[str] = []

    def get(self, url: str, params=None):
        self.requested.append(url)
        for suffix, response in self.routes.items():
            if url.endswith(suffix):
                return response
        return FakeResponse(404, {})


def _goldapi_routes(**overrides) -> Dict[str, FakeResponse]:
    routes = {
        "XAU/USD": FakeResponse(200, {"price": 5050.5}),
        "XAG/USD": FakeResponse(200, {"price": 89.2}),
        "XPT/USD": FakeResponse(200, {"price": 2281.0}),
        "XPD/USD": FakeResponse(200, {"price": 1822.0}),
    }
    routes.update(overrides)
    return routes


class TestGoldApiAdapter:
    @pytest.mark.asyncio
    async def test_all_symbols(self):
        sleep = RecordingSleep()
        adapter = GoldApiAdapter(FeedSettings(goldapi_key="k"), sleep=sleep)
        adapter.session = AsyncMock(return_value=FakeSession(_goldapi_routes()))

        outcome = await adapter.attempt()

        assert outcome.ok
        assert outcome.prices.gold == 5050.5
        assert outcome.prices.palladium == 1822.0
        assert sleep.delays == [1.5, 1.5, 1.5]

    @pytest.mark.asyncio
    async def test_missing_key(self):
        adapter = GoldApiAdapter(FeedSettings(goldapi_key=""), sleep=RecordingSleep())
        outcome = await adapter.attempt()
        assert not outcome.ok
        assert outcome.error == "GOLDAPI_KEY not set"

    @pytest.mark.asyncio
    async def test_rate_limited_symbol_fails_whole_source(self):
        adapter = GoldApiAdapter(FeedSettings(goldapi_key="k"), sleep=RecordingSleep())
        adapter.session = AsyncMock(return_value=FakeSession(_goldapi_routes(**{"XAG/USD": FakeResponse(429)})))

        outcome = await adapter.attempt()

        assert not outcome.ok
        assert outcome.error == "rate limited (XAG)"

    @pytest.mark.asyncio
    async def test_zero_price_rejected(self):
        adapter = GoldApiAdapter(FeedSettings(goldapi_key="k"), sleep=RecordingSleep())
        adapter.session = AsyncMock(
            return_value=FakeSession(_goldapi_routes(**{"XPT/USD": FakeResponse(200, {"price": 0})}))
        )
        outcome = await adapter.attempt()
        assert not outcome.ok
        assert "XPT" in outcome.error

    @pytest.mark.asyncio
    async def test_transport_error_is_tagged(self):
        adapter = GoldApiAdapter(FeedSettings(goldapi_key="k"), sleep=RecordingSleep())
        adapter.session = AsyncMock(side_effect=TimeoutError())
        outcome = await adapter.attempt()
        assert not outcome.ok
        assert outcome.error == "TimeoutError"


class TestMetalsLive:
    def test_parse_keyed_shape(self):
        data = [{"gold": 5050}, {"silver": 89.5}, {"platinum": 2280}, {"palladium": 1820}]
        assert parse_spot_payload(data) == {"gold": 5050, "silver": 89.5, "platinum": 2280, "palladium": 1820}

    def test_parse_metal_price_shape(self):
        data = [{"metal": "Gold", "price": "5050.1"}, {"metal": "silver", "price": 0}]
        assert parse_spot_payload(data) == {"gold": 5050.1}

    def test_parse_ignores_garbage(self):
        assert parse_spot_payload({"gold": 1}) == {}
        assert parse_spot_payload(["x", None, {"gold": "n/a"}]) == {}

    @pytest.mark.asyncio
    async def test_partial_answer_filled_from_fallback(self):
        adapter = MetalsLiveAdapter(FeedSettings())
        adapter.session = AsyncMock(return_value=FakeSession({"spot": FakeResponse(200, [{"gold": 5100}])}))

        outcome = await adapter.attempt()

        assert outcome.ok
        assert outcome.prices.gold == 5100
        assert outcome.prices.silver == 89.0
        assert outcome.raw_prices == {"gold": 5100}

    @pytest.mark.asyncio
    async def test_no_gold_fails(self):
        adapter = MetalsLiveAdapter(FeedSettings())
        adapter.session = AsyncMock(return_value=FakeSession({"spot": FakeResponse(200, [{"silver": 90}])}))
        outcome = await adapter.attempt()
        assert not outcome.ok
        assert outcome.error == "no gold price found"

    @pytest.mark.asyncio
    async def test_http_error(self):
        adapter = MetalsLiveAdapter(FeedSettings())
        adapter.session = AsyncMock(return_value=FakeSession({"spot": FakeResponse(502)}))
        outcome = await adapter.attempt()
        assert outcome.error == "HTTP 502"


class TestCoinGecko:
    @pytest.mark.asyncio
    async def test_auxiliary_price(self):
        adapter = CoinGeckoAdapter(FeedSettings())
        adapter.session = AsyncMock(
            return_value=FakeSession({"simple/price": FakeResponse(200, {"ethereum": {"usd": 3150.25}})})
        )
        outcome = await adapter.attempt()
        assert outcome.ok
        assert outcome.auxiliary_price == 3150.25

    @pytest.mark.asyncio
    async def test_missing_coin(self):
        adapter = CoinGeckoAdapter(FeedSettings())
        adapter.session = AsyncMock(return_value=FakeSession({"simple/price": FakeResponse(200, {})}))
        outcome = await adapter.attempt()
        assert not outcome.ok
