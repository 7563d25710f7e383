"""
ORACLE WATCHER — Web3 Oracle Contract
AsyncWeb3 binding for the on-chain metal oracle. Reads are plain eth_calls;
writes are built, signed locally with the configured key and broadcast as
raw transactions.
"""
from typing import Any, Dict, List, Optional

import aiohttp
from web3 import AsyncHTTPProvider, AsyncWeb3

from oracle_watcher.chain.contract import AllPricesE6, ChainError, MissingCredentialError, OracleContract
from oracle_watcher.config.settings import ChainSettings, get_settings
from oracle_watcher.data.models import METALS, Metal
from oracle_watcher.utils.logger import get_logger

logger = get_logger("web3_contract")


def _fn(name: str, inputs: List[Dict[str, str]], outputs: List[Dict[str, str]], mutability: str) -> Dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "inputs": inputs,
        "outputs": outputs,
        "stateMutability": mutability,
    }


def _uint(name: str) -> Dict[str, str]:
    return {"name": name, "type": "uint256", "internalType": "uint256"}


_METAL_ID = {"name": "metalId", "type": "bytes32", "internalType": "bytes32"}

ORACLE_ABI: List[Dict[str, Any]] = [
    _fn(
        "getAllPrices",
        [],
        [_uint("goldE6"), _uint("silverE6"), _uint("platinumE6"), _uint("palladiumE6"),
         _uint("auxiliaryE6"), _uint("lastUpdated")],
        "view",
    ),
    _fn(
        "setAllPrices",
        [_uint("goldE6"), _uint("silverE6"), _uint("platinumE6"), _uint("palladiumE6"), _uint("auxiliaryE6")],
        [],
        "nonpayable",
    ),
    _fn("getPrice", [_METAL_ID], [_uint("priceE6")], "view"),
    _fn("updatePrice", [_METAL_ID, _uint("priceE6")], [], "nonpayable"),
]


def metal_id(metal: Metal) -> bytes:
    """bytes32 identifier of a metal: keccak256 of its upper-case name."""
    return bytes(AsyncWeb3.keccak(text=Metal(metal).value.upper()))


METAL_IDS: Dict[Metal, bytes] = {m: metal_id(m) for m in METALS}


class Web3OracleContract(OracleContract):
    """OracleContract over JSON-RPC."""

    def __init__(self, settings: Optional[ChainSettings] = None):
        self.settings = settings or get_settings().chain
        self.shape = self.settings.contract_shape

        provider = AsyncHTTPProvider(
            self.settings.rpc_url,
            request_kwargs={"timeout": aiohttp.ClientTimeout(total=self.settings.rpc_timeout_seconds)},
        )
        self.w3 = AsyncWeb3(provider)
        self.contract = self.w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(self.settings.oracle_address),
            abi=ORACLE_ABI,
        )
        self.account = self.w3.eth.account.from_key(self.settings.private_key) if self.settings.private_key else None

    @property
    def can_sign(self) -> bool:
        return self.account is not None

    async def close(self) -> None:
        await self.w3.provider.disconnect()

    # ─── Reads ──────────────────────────────────────────────────

    async def get_all_prices(self) -> AllPricesE6:
        values = await self.contract.functions.getAllPrices().call()
        if len(values) != 6:
            raise ChainError(f"getAllPrices returned {len(values)} values")
        return AllPricesE6(*(int(v) for v in values))

    async def get_price(self, metal: Metal) -> int:
        return int(await self.contract.functions.getPrice(METAL_IDS[Metal(metal)]).call())

    # ─── Writes ─────────────────────────────────────────────────

    async def set_all_prices(self, gold: int, silver: int, platinum: int, palladium: int, auxiliary: int) -> str:
        return await self._transact(
            self.contract.functions.setAllPrices(gold, silver, platinum, palladium, auxiliary),
            label="setAllPrices",
        )

    async def update_price(self, metal: Metal, price_e6: int) -> str:
        return await self._transact(
            self.contract.functions.updatePrice(METAL_IDS[Metal(metal)], price_e6),
            label=f"updatePrice:{Metal(metal).value}",
        )

    async def _transact(self, call, label: str) -> str:
        if self.account is None:
            raise MissingCredentialError("PRIVATE_KEY not set")

        nonce = await self.w3.eth.get_transaction_count(self.account.address, "pending")
        tx = await call.build_transaction({"from": self.account.address, "nonce": nonce})
        signed = self.account.sign_transaction(tx)
        tx_hash = AsyncWeb3.to_hex(await self.w3.eth.send_raw_transaction(signed.raw_transaction))
        logger.info("oracle_tx_submitted", call=label, tx_hash=tx_hash, nonce=nonce)

        if self.settings.wait_for_receipt:
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.settings.receipt_timeout_seconds
            )
            if receipt["status"] != 1:
                raise ChainError(f"{label} reverted ({tx_hash})")
            logger.info("oracle_tx_confirmed", call=label, tx_hash=tx_hash, block=receipt["blockNumber"])

        return tx_hash
