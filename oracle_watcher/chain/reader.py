"""
ORACLE WATCHER — Oracle Reader
Reads the prices currently stored on chain. Never raises: an unreachable or
misbehaving contract yields the all-zero sentinel.
"""
from oracle_watcher.chain.contract import OracleContract
from oracle_watcher.data.models import METALS, MetalPrices, OnChainPrices
from oracle_watcher.utils.helpers import from_e6
from oracle_watcher.utils.logger import get_logger

logger = get_logger("oracle_reader")


class OracleReader:

    def __init__(self, contract: OracleContract):
        self.contract = contract

    async def _read_all(self) -> OnChainPrices:
        raw = await self.contract.get_all_prices()
        return OnChainPrices(
            prices=MetalPrices(
                gold=from_e6(raw.gold),
                silver=from_e6(raw.silver),
                platinum=from_e6(raw.platinum),
                palladium=from_e6(raw.palladium),
            ),
            auxiliary_price=from_e6(raw.auxiliary),
            last_updated=raw.last_updated,
        )

    async def _read_each(self) -> OnChainPrices:
        values = {}
        for metal in METALS:
            values[metal.value] = from_e6(await self.contract.get_price(metal))
        return OnChainPrices(prices=MetalPrices(**values))

    async def read(self) -> OnChainPrices:
        try:
            if self.contract.shape == "per_metal":
                result = await self._read_each()
            else:
                result = await self._read_all()
        except Exception as e:
            logger.error("oracle_read_failed", error=str(e) or type(e).__name__)
            return OnChainPrices.unreachable()

        logger.debug(
            "oracle_prices_read",
            **{k: round(v, 2) for k, v in result.prices.as_dict().items()},
            auxiliary=round(result.auxiliary_price, 2),
        )
        return result
