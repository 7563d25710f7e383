"""
ORACLE WATCHER — Test Configuration & Fixtures
Shared fixtures for all test modules.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set

import pytest

from oracle_watcher.alerts.channels import AlertChannel
from oracle_watcher.chain.contract import AllPricesE6, ChainError, MissingCredentialError, OracleContract
from oracle_watcher.config.settings import (
    AlertSettings,
    AppSettings,
    ChainSettings,
    FeedSettings,
    StoreSettings,
    ThresholdSettings,
)
from oracle_watcher.data.adapters.base import BaseFeedAdapter, FeedError, SourceAttempt
from oracle_watcher.data.models import METALS, AlertPayload, Metal, MetalPrices
from oracle_watcher.state.backends import MemoryBackend
from oracle_watcher.state.store import StateStore
from oracle_watcher.utils.helpers import to_e6


class FakeClock:
    """Wall clock and monotonic timer that only move when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        self._mono = 1000.0

    def __call__(self) -> datetime:
        return self.now

    def monotonic(self) -> float:
        return self._mono

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)
        self._mono += seconds


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


class FakeFeed(BaseFeedAdapter):
    """Scripted feed: returns prices or fails with an error string."""

    def __init__(
        self,
        label: str,
        prices: Optional[MetalPrices] = None,
        error: Optional[str] = None,
        auxiliary_price: Optional[float] = None,
    ):
        super().__init__()
        self.label = label
        self.prices = prices
        self.error = error
        self.auxiliary_price = auxiliary_price
        self.calls = 0

    async def _fetch(self) -> SourceAttempt:
        self.calls += 1
        if self.error:
            raise FeedError(self.error)
        if self.prices is None:
            return SourceAttempt(ok=True, auxiliary_price=self.auxiliary_price)
        return SourceAttempt.success(self.prices, auxiliary_price=self.auxiliary_price)


class FakeContract(OracleContract):
    """In-memory oracle contract recording every call."""

    def __init__(
        self,
        prices: Optional[MetalPrices] = None,
        auxiliary_price: float = 0.0,
        can_sign: bool = True,
        shape: str = "all_prices",
    ):
        prices = prices or MetalPrices.zero()
        self.stored: Dict[str, int] = {m.value: to_e6(prices.get(m)) for m in METALS}
        self.stored_auxiliary = to_e6(auxiliary_price)
        self.last_updated = 0
        self.shape = shape
        self._can_sign = can_sign

        self.read_error: Optional[Exception] = None
        self.write_failures = 0
        self.failing_metals: Set[Metal] = set()
        self.set_all_calls: List[tuple] = []
        self.update_calls: List[tuple] = []
        self._tx = 0

    @property
    def can_sign(self) -> bool:
        return self._can_sign

    def _next_hash(self) -> str:
        self._tx += 1
        return f"0x{self._tx:064x}"

    async def get_all_prices(self) -> AllPricesE6:
        if self.read_error:
            raise self.read_error
        return AllPricesE6(
            self.stored["gold"], self.stored["silver"], self.stored["platinum"], self.stored["palladium"],
            self.stored_auxiliary, self.last_updated,
        )

    async def get_price(self, metal: Metal) -> int:
        if self.read_error:
            raise self.read_error
        return self.stored[Metal(metal).value]

    async def set_all_prices(self, gold: int, silver: int, platinum: int, palladium: int, auxiliary: int) -> str:
        if not self._can_sign:
            raise MissingCredentialError("PRIVATE_KEY not set")
        self.set_all_calls.append((gold, silver, platinum, palladium, auxiliary))
        if self.write_failures > 0:
            self.write_failures -= 1
            raise ChainError("nonce too low")
        self.stored.update(gold=gold, silver=silver, platinum=platinum, palladium=palladium)
        self.stored_auxiliary = auxiliary
        return self._next_hash()

    async def update_price(self, metal: Metal, price_e6: int) -> str:
        if not self._can_sign:
            raise MissingCredentialError("PRIVATE_KEY not set")
        metal = Metal(metal)
        self.update_calls.append((metal, price_e6))
        if metal in self.failing_metals:
            raise ChainError(f"execution reverted ({metal.value})")
        self.stored[metal.value] = price_e6
        return self._next_hash()


class RecordingChannel(AlertChannel):
    name = "recording"

    def __init__(self, ok: bool = True):
        self.ok = ok
        self.alerts: List[AlertPayload] = []

    async def deliver(self, alert: AlertPayload) -> bool:
        self.alerts.append(alert)
        return self.ok


# ─── Fixtures ───────────────────────────────────────────────────

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def settings():
    return AppSettings(
        watcher_api_key="",
        feeds=FeedSettings(goldapi_key="test-key"),
        thresholds=ThresholdSettings(),
        chain=ChainSettings(private_key="", contract_shape="all_prices", update_strategy="atomic"),
        store=StoreSettings(store_backend="memory"),
        alerts=AlertSettings(telegram_bot_token="", telegram_chat_id=""),
    )


@pytest.fixture
def backend(clock):
    return MemoryBackend(timer=clock.monotonic)


@pytest.fixture
def store(backend, settings, clock):
    return StateStore(backend, settings.store, clock=clock)


@pytest.fixture
def spot_prices():
    return MetalPrices(gold=5000.0, silver=90.0, platinum=2300.0, palladium=1800.0)


@pytest.fixture
def channel():
    return RecordingChannel()
