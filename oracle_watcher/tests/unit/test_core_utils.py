"""
ORACLE WATCHER — Tests for models, helpers and retry
"""
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from oracle_watcher.chain.contract import ChainError, MissingCredentialError
from oracle_watcher.data.models import Metal, MetalPrices, OverridePrices, Spread, SpreadConfig
from oracle_watcher.utils.helpers import from_e6, parse_timestamp, pct_change, round_pct, to_e6
from oracle_watcher.utils.retry import backoff_delay, with_retry

from conftest import RecordingSleep


class TestHelpers:
    def test_e6_encoding_rounds(self):
        assert to_e6(5050.0) == 5_050_000_000
        assert to_e6(89.1234567) == 89_123_457
        assert from_e6(2_280_000_000) == 2280.0

    def test_pct_change(self):
        assert pct_change(100, 106) == pytest.approx(6.0)
        assert pct_change(100, 94) == pytest.approx(-6.0)
        assert pct_change(0, 50) == 0.0

    def test_round_pct(self):
        assert round_pct(1.23456) == 1.23

    def test_parse_timestamp(self):
        parsed = parse_timestamp("2026-03-01T12:00:00Z")
        assert parsed == datetime(2026, 3, 1, 12, tzinfo=timezone.utc)
        naive = parse_timestamp("2026-03-01T12:00:00")
        assert naive.tzinfo is not None
        assert parse_timestamp("yesterday") is None


class TestModels:
    def test_metal_prices_reject_negative(self):
        with pytest.raises(ValidationError):
            MetalPrices(gold=-1, silver=1, platinum=1, palladium=1)

    def test_metal_prices_access(self):
        prices = MetalPrices(gold=1, silver=2, platinum=3, palladium=4)
        assert prices.get(Metal.PLATINUM) == 3
        assert prices.as_dict() == {"gold": 1, "silver": 2, "platinum": 3, "palladium": 4}
        assert MetalPrices.zero().gold == 0

    def test_spread_defaults(self):
        spreads = SpreadConfig.default()
        assert spreads.buy_pct(Metal.GOLD) == 1.5
        assert spreads.buy_pct(Metal.PALLADIUM) == 2.5

    def test_spread_missing_metal_falls_back(self):
        spreads = SpreadConfig(metals={Metal.GOLD: Spread(buy=3.0, sell=1.0)})
        assert spreads.buy_pct(Metal.GOLD) == 3.0
        assert spreads.buy_pct(Metal.SILVER) == 2.0

    def test_override_expiry(self):
        now = datetime(2026, 3, 1, tzinfo=timezone.utc)
        override = OverridePrices(
            prices=MetalPrices(gold=1, silver=1, platinum=1, palladium=1),
            expires_at=now + timedelta(minutes=60),
        )
        assert override.is_active(now + timedelta(minutes=59))
        assert not override.is_active(now + timedelta(minutes=60))


class TestRetry:
    def test_backoff_is_capped(self):
        assert backoff_delay(0, 2.0, 15.0) == 2.0
        assert backoff_delay(1, 2.0, 15.0) == 4.0
        assert backoff_delay(3, 2.0, 15.0) == 15.0

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self):
        sleep = RecordingSleep()
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ChainError("timeout")
            return "0xabc"

        result = await with_retry(flaky, attempts=3, base_delay=2.0, sleep=sleep)
        assert result == "0xabc"
        assert len(calls) == 3
        assert sleep.delays == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_reraises_last_error(self):
        sleep = RecordingSleep()

        async def always_fails():
            raise ChainError("reverted")

        with pytest.raises(ChainError, match="reverted"):
            await with_retry(always_fails, attempts=3, sleep=sleep)
        assert len(sleep.delays) == 2

    @pytest.mark.asyncio
    async def test_non_retryable_short_circuits(self):
        sleep = RecordingSleep()
        calls = []

        async def no_key():
            calls.append(1)
            raise MissingCredentialError("PRIVATE_KEY not set")

        with pytest.raises(MissingCredentialError):
            await with_retry(no_key, attempts=3, non_retryable=(MissingCredentialError,), sleep=sleep)
        assert len(calls) == 1
        assert sleep.delays == []
