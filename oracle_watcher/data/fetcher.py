"""
ORACLE WATCHER — Multi-Source Price Fetcher
Fallback chain: GoldAPI → metals.live → stale shared cache → hardcoded table.

Each link is an attempt function returning a tagged SourceAttempt; the chain
is evaluated by first_success, so fetch() always produces a FetchResult.
"""
import time
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from oracle_watcher.config.settings import FeedSettings, get_settings
from oracle_watcher.data.adapters.base import BaseFeedAdapter, SourceAttempt
from oracle_watcher.data.models import FetchResult, MetalPrices, PriceSource
from oracle_watcher.state.store import StateStore
from oracle_watcher.utils.logger import get_logger

logger = get_logger("price_fetcher")

AttemptFn = Callable[[], Awaitable[SourceAttempt]]


async def first_success(
    attempts: Sequence[Tuple[PriceSource, str, AttemptFn]],
    errors: List[str],
) -> Optional[Tuple[PriceSource, SourceAttempt]]:
    """
    Evaluate attempts in order and return the first successful one.
    Every failure appends "<label>: <reason>" to `errors`.
    """
    for source, label, attempt_fn in attempts:
        try:
            outcome = await attempt_fn()
        except Exception as e:
            outcome = SourceAttempt.failure(str(e) or type(e).__name__)

        if outcome.ok and outcome.prices is not None:
            return source, outcome

        if outcome.error:
            errors.append(f"{label}: {outcome.error}")
        logger.warning("price_source_failed", source=source.value, error=outcome.error)
    return None


class PriceFetcher:
    """Best-effort metal price acquisition; never raises."""

    def __init__(
        self,
        primary: BaseFeedAdapter,
        secondary: BaseFeedAdapter,
        store: StateStore,
        auxiliary: Optional[BaseFeedAdapter] = None,
        settings: Optional[FeedSettings] = None,
    ):
        self.primary = primary
        self.secondary = secondary
        self.auxiliary = auxiliary
        self.store = store
        self.settings = settings or get_settings().feeds

    async def close(self) -> None:
        for adapter in (self.primary, self.secondary, self.auxiliary):
            if adapter is not None:
                await adapter.disconnect()

    async def _stale_cache(self) -> SourceAttempt:
        stale = await self.store.get_stale_prices()
        if stale is None or stale.gold <= 0:
            return SourceAttempt.failure("no usable stale prices")
        return SourceAttempt.success(stale.metal_prices(), auxiliary_price=stale.auxiliary_price or None)

    async def _hardcoded(self) -> SourceAttempt:
        return SourceAttempt.success(
            MetalPrices(**self.settings.fallback_prices()),
            auxiliary_price=self.settings.fallback_auxiliary,
        )

    def _chain(self) -> List[Tuple[PriceSource, str, AttemptFn]]:
        return [
            (PriceSource.GOLDAPI, self.primary.label, self.primary.attempt),
            (PriceSource.METALS_LIVE, self.secondary.label, self.secondary.attempt),
            (PriceSource.STALE_CACHE, "Redis stale", self._stale_cache),
            (PriceSource.HARDCODED, "Hardcoded", self._hardcoded),
        ]

    async def _auxiliary_price(self, chosen: SourceAttempt, errors: List[str]) -> float:
        """Live auxiliary price, else the cached one, else the configured constant."""
        if self.auxiliary is not None:
            outcome = await self.auxiliary.attempt()
            if outcome.ok and outcome.auxiliary_price:
                return outcome.auxiliary_price
            errors.append(f"{self.auxiliary.label}: {outcome.error}")

        if chosen.auxiliary_price:
            return chosen.auxiliary_price
        try:
            stale = await self.store.get_stale_prices()
        except Exception as e:
            logger.warning("auxiliary_stale_read_failed", error=str(e))
            stale = None
        if stale is not None and stale.auxiliary_price > 0:
            return stale.auxiliary_price
        return self.settings.fallback_auxiliary

    async def fetch(self) -> FetchResult:
        start = time.monotonic()
        errors: List[str] = []

        picked = await first_success(self._chain(), errors)
        if picked is None:
            # The hardcoded link cannot fail; keep the invariant explicit.
            picked = (PriceSource.HARDCODED, await self._hardcoded())
        source, outcome = picked

        auxiliary_price = await self._auxiliary_price(outcome, errors)

        if source in (PriceSource.GOLDAPI, PriceSource.METALS_LIVE):
            await self.store.update_shared_price_cache(outcome.prices, auxiliary_price)

        duration_ms = int((time.monotonic() - start) * 1000)
        if source == PriceSource.HARDCODED:
            logger.error("all_price_sources_failed", errors=errors, duration_ms=duration_ms)
        elif source == PriceSource.STALE_CACHE:
            logger.warning("using_stale_prices", errors=errors, duration_ms=duration_ms)
        else:
            logger.info(
                "prices_fetched",
                source=source.value,
                duration_ms=duration_ms,
                gold=round(outcome.prices.gold, 2),
            )

        return FetchResult(
            prices=outcome.prices,
            auxiliary_price=auxiliary_price,
            source=source,
            duration_ms=duration_ms,
            errors=errors,
        )
