"""
ORACLE WATCHER — Oracle Contract Interface
The two supported contract shapes:
- all_prices: getAllPrices() / setAllPrices(gold, silver, platinum, palladium, auxiliary)
- per_metal:  getPrice(metalId) / updatePrice(metalId, priceE6)
All values crossing this interface are E6 fixed-point integers.
"""
from abc import ABC, abstractmethod
from typing import NamedTuple

from oracle_watcher.data.models import Metal


class ChainError(Exception):
    """An RPC call or transaction failed."""


class MissingCredentialError(ChainError):
    """No signing key configured; retrying cannot help."""


class AllPricesE6(NamedTuple):
    gold: int
    silver: int
    platinum: int
    palladium: int
    auxiliary: int
    last_updated: int


class OracleContract(ABC):
    """Chain-facing operations used by the reader and the updater."""

    shape: str = "all_prices"

    @property
    @abstractmethod
    def can_sign(self) -> bool:
        """True when a signing key is available for transactions."""

    @abstractmethod
    async def get_all_prices(self) -> AllPricesE6:
        pass

    @abstractmethod
    async def get_price(self, metal: Metal) -> int:
        pass

    @abstractmethod
    async def set_all_prices(self, gold: int, silver: int, platinum: int, palladium: int, auxiliary: int) -> str:
        """Submit one transaction for everything; returns the tx hash."""

    @abstractmethod
    async def update_price(self, metal: Metal, price_e6: int) -> str:
        """Submit one transaction for one metal; returns the tx hash."""

    async def close(self) -> None:
        pass
