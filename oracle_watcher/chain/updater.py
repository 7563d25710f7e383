"""
ORACLE WATCHER — Oracle Updater
Applies the admin buy spread, encodes E6 and submits to the oracle contract.

Strategies:
- atomic:    one setAllPrices transaction for all four metals + auxiliary
- per_metal: one updatePrice transaction per requested metal, each retried
             independently; a failing metal does not stop the others
"""
import asyncio
from typing import Iterable, List, Optional

from oracle_watcher.chain.contract import MissingCredentialError, OracleContract
from oracle_watcher.config.settings import ChainSettings, get_settings
from oracle_watcher.data.models import METALS, Metal, MetalPrices, SpreadConfig, SubmittedPrices, UpdateResult
from oracle_watcher.state.store import StateStore
from oracle_watcher.utils.helpers import to_e6
from oracle_watcher.utils.logger import get_logger
from oracle_watcher.utils.retry import Sleep, with_retry

logger = get_logger("oracle_updater")


def apply_spread(base: MetalPrices, spreads: SpreadConfig) -> MetalPrices:
    """base × (1 + buy% / 100) per metal."""
    return MetalPrices(**{
        m.value: base.get(m) * (1 + spreads.buy_pct(m) / 100) for m in METALS
    })


class OracleUpdater:
    """Submits price updates; update() reports failures instead of raising."""

    def __init__(
        self,
        contract: OracleContract,
        store: StateStore,
        settings: Optional[ChainSettings] = None,
        strategy: Optional[str] = None,
        sleep: Optional[Sleep] = None,
    ):
        self.contract = contract
        self.store = store
        self.settings = settings or get_settings().chain
        self.strategy = strategy or self.settings.update_strategy
        self._sleep = sleep or asyncio.sleep

    async def _submit(self, fn, label: str) -> str:
        return await with_retry(
            fn,
            attempts=self.settings.retry_attempts,
            base_delay=self.settings.retry_base_delay_seconds,
            max_delay=self.settings.retry_max_delay_seconds,
            label=label,
            non_retryable=(MissingCredentialError,),
            sleep=self._sleep,
        )

    async def _update_atomic(self, with_spread: MetalPrices, auxiliary_price: float) -> List[str]:
        args = [to_e6(with_spread.get(m)) for m in METALS] + [to_e6(auxiliary_price)]
        tx_hash = await self._submit(
            lambda: self.contract.set_all_prices(*args),
            label="oracle-update-all",
        )
        return [tx_hash]

    async def update(
        self,
        prices: MetalPrices,
        auxiliary_price: float,
        metals: Optional[Iterable[Metal]] = None,
    ) -> UpdateResult:
        wanted = set(METALS) if metals is None else {Metal(m) for m in metals}
        requested = [m for m in METALS if m in wanted]

        try:
            if not self.contract.can_sign:
                raise MissingCredentialError("PRIVATE_KEY not set")

            spreads = await self.store.get_spread_config()
            with_spread = apply_spread(prices, spreads)
            submitted = SubmittedPrices(base=prices, with_spread=with_spread)
            logger.info(
                "applying_spreads",
                strategy=self.strategy,
                base_gold=round(prices.gold, 2),
                spread_gold=round(with_spread.gold, 2),
                metals=[m.value for m in requested],
            )

            if self.strategy == "per_metal":
                return await self._update_per_metal(submitted, auxiliary_price, requested)

            tx_hashes = await self._update_atomic(with_spread, auxiliary_price)
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.error("oracle_update_failed", error=error)
            return UpdateResult(
                success=False,
                prices=SubmittedPrices(base=prices, with_spread=prices),
                auxiliary_price=auxiliary_price,
                error=error,
            )

        logger.info("oracle_updated", tx_hashes=tx_hashes, metals=[m.value for m in METALS])
        return UpdateResult(
            success=True,
            tx_hashes=tx_hashes,
            updated_metals=list(METALS),
            prices=submitted,
            auxiliary_price=auxiliary_price,
        )

    async def _update_per_metal(
        self,
        submitted: SubmittedPrices,
        auxiliary_price: float,
        metals: List[Metal],
    ) -> UpdateResult:
        tx_hashes: List[str] = []
        updated: List[Metal] = []
        failures: List[str] = []

        for index, metal in enumerate(metals):
            price_e6 = to_e6(submitted.with_spread.get(metal))
            try:
                tx_hash = await self._submit(
                    lambda metal=metal, price_e6=price_e6: self.contract.update_price(metal, price_e6),
                    label=f"oracle-update-{metal.value}",
                )
            except MissingCredentialError:
                raise
            except Exception as e:
                failures.append(f"{metal.value}: {str(e) or type(e).__name__}")
                logger.error("metal_update_failed", metal=metal.value, error=str(e))
            else:
                tx_hashes.append(tx_hash)
                updated.append(metal)
                logger.info("metal_tx_submitted", metal=metal.value, tx_hash=tx_hash, price_e6=price_e6)

            if index < len(metals) - 1:
                await self._sleep(self.settings.inter_tx_delay_seconds)

        success = not failures
        if success:
            logger.info("oracle_updated", tx_hashes=tx_hashes, metals=[m.value for m in updated])
        else:
            logger.warning("oracle_partially_updated", updated=[m.value for m in updated], failures=failures)

        return UpdateResult(
            success=success,
            tx_hashes=tx_hashes,
            updated_metals=updated,
            prices=submitted,
            auxiliary_price=auxiliary_price,
            error="; ".join(failures) or None,
        )
