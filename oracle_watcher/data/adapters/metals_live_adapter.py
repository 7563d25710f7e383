"""
ORACLE WATCHER — metals.live Adapter
Secondary free feed (no key). Accepts partial answers: metals missing from
the response are filled from the configured fallback table, but gold is
mandatory.
"""
from typing import Any, Dict, Optional

from oracle_watcher.config.settings import FeedSettings, get_settings
from oracle_watcher.data.adapters.base import BaseFeedAdapter, FeedError, SourceAttempt
from oracle_watcher.data.models import METALS, MetalPrices
from oracle_watcher.utils.logger import get_logger

logger = get_logger("metals_live_adapter")

_METAL_NAMES = {m.value for m in METALS}


def _positive(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def parse_spot_payload(data: Any) -> Dict[str, float]:
    """
    Extract metal prices from either response shape:
    [{"gold": 5050}, {"silver": 89}, ...] or
    [{"metal": "gold", "price": 5050}, ...].
    """
    prices: Dict[str, float] = {}
    if not isinstance(data, list):
        return prices
    for item in data:
        if not isinstance(item, dict):
            continue
        for name in _METAL_NAMES:
            price = _positive(item.get(name))
            if price is not None:
                prices[name] = price
        metal = str(item.get("metal", "")).lower()
        if metal in _METAL_NAMES:
            price = _positive(item.get("price"))
            if price is not None:
                prices[metal] = price
    return prices


class MetalsLiveAdapter(BaseFeedAdapter):
    """api.metals.live adapter, secondary source."""

    label = "metals.live"

    def __init__(self, settings: Optional[FeedSettings] = None):
        self.settings = settings or get_settings().feeds
        super().__init__(
            timeout_seconds=self.settings.feed_timeout_seconds,
            headers={"Accept": "application/json"},
        )
        self.url = self.settings.metals_live_url

    async def _fetch(self) -> SourceAttempt:
        session = await self.session()
        async with session.get(self.url) as resp:
            if resp.status != 200:
                raise FeedError(f"HTTP {resp.status}")
            data = await resp.json(content_type=None)

        found = parse_spot_payload(data)
        if "gold" not in found:
            raise FeedError("no gold price found")

        fallback = self.settings.fallback_prices()
        missing = sorted(_METAL_NAMES - set(found))
        if missing:
            logger.warning("metals_live_partial", missing=missing)

        prices = MetalPrices(**{name: found.get(name, fallback[name]) for name in _METAL_NAMES})
        return SourceAttempt.success(prices, raw_prices=found)
