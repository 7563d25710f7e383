"""
ORACLE WATCHER — CoinGecko Adapter
Reference crypto price (ETH/USD by default) submitted alongside the metals.
"""
from typing import Optional

from oracle_watcher.config.settings import FeedSettings, get_settings
from oracle_watcher.data.adapters.base import BaseFeedAdapter, FeedError, SourceAttempt
from oracle_watcher.utils.logger import get_logger

logger = get_logger("crypto_adapter")


class CoinGeckoAdapter(BaseFeedAdapter):
    """CoinGecko simple/price adapter for the auxiliary price."""

    label = "CoinGecko"

    def __init__(self, settings: Optional[FeedSettings] = None):
        self.settings = settings or get_settings().feeds
        super().__init__(timeout_seconds=self.settings.feed_timeout_seconds)
        self.base_url = self.settings.coingecko_base_url.rstrip("/")
        self.coin_id = self.settings.auxiliary_coin_id

    async def _fetch(self) -> SourceAttempt:
        session = await self.session()
        url = f"{self.base_url}/simple/price"
        params = {"ids": self.coin_id, "vs_currencies": "usd"}

        async with session.get(url, params=params) as resp:
            if resp.status == 429:
                raise FeedError("rate limited")
            if resp.status != 200:
                raise FeedError(f"HTTP {resp.status}")
            data = await resp.json(content_type=None)

        coin_data = data.get(self.coin_id, {}) if isinstance(data, dict) else {}
        price = coin_data.get("usd")
        if price is None or float(price) <= 0:
            raise FeedError(f"invalid {self.coin_id} price {price}")

        logger.debug("auxiliary_price_fetched", coin=self.coin_id, price=float(price))
        return SourceAttempt(ok=True, auxiliary_price=float(price))
