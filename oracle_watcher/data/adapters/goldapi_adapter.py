"""
ORACLE WATCHER — GoldAPI Adapter
Primary keyed feed. One request per metal symbol with a mandatory pause
between requests to stay under the plan's rate limit.
"""
import asyncio
from typing import Awaitable, Callable, Dict, Optional

from oracle_watcher.config.settings import FeedSettings, get_settings
from oracle_watcher.data.adapters.base import BaseFeedAdapter, FeedError, SourceAttempt
from oracle_watcher.data.models import Metal, MetalPrices
from oracle_watcher.utils.logger import get_logger

logger = get_logger("goldapi_adapter")

GOLDAPI_SYMBOLS: Dict[str, Metal] = {
    "XAU": Metal.GOLD,
    "XAG": Metal.SILVER,
    "XPT": Metal.PLATINUM,
    "XPD": Metal.PALLADIUM,
}


class GoldApiAdapter(BaseFeedAdapter):
    """goldapi.io adapter, primary source: all four symbols or nothing."""

    label = "GoldAPI"

    def __init__(
        self,
        settings: Optional[FeedSettings] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.settings = settings or get_settings().feeds
        super().__init__(
            timeout_seconds=self.settings.feed_timeout_seconds,
            headers={
                "x-access-token": self.settings.goldapi_key,
                "Content-Type": "application/json",
            },
        )
        self.base_url = self.settings.goldapi_base_url.rstrip("/")
        self._sleep = sleep or asyncio.sleep

    async def _fetch_symbol(self, symbol: str) -> float:
        session = await self.session()
        async with session.get(f"{self.base_url}/{symbol}/USD") as resp:
            if resp.status == 429:
                raise FeedError(f"rate limited ({symbol})")
            if resp.status != 200:
                raise FeedError(f"{symbol}: HTTP {resp.status}")
            data = await resp.json(content_type=None)

        price = data.get("price") if isinstance(data, dict) else None
        try:
            price = float(price)
        except (TypeError, ValueError):
            raise FeedError(f"{symbol}: invalid price {price}")
        if price <= 0:
            raise FeedError(f"{symbol}: invalid price {price}")
        return price

    async def _fetch(self) -> SourceAttempt:
        if not self.settings.goldapi_key:
            raise FeedError("GOLDAPI_KEY not set")

        prices: Dict[str, float] = {}
        for index, (symbol, metal) in enumerate(GOLDAPI_SYMBOLS.items()):
            if index > 0:
                await self._sleep(self.settings.goldapi_rate_delay_seconds)
            prices[metal.value] = await self._fetch_symbol(symbol)

        logger.debug("goldapi_prices_fetched", **prices)
        return SourceAttempt.success(MetalPrices(**prices), raw_prices=prices)
