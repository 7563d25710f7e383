"""
ORACLE WATCHER — Runtime Composition
Builds the object graph from settings and owns its lifecycle.
"""
from dataclasses import dataclass
from typing import List, Optional

from oracle_watcher.alerts.channels import AlertChannel, TelegramChannel, WebhookChannel
from oracle_watcher.alerts.dispatcher import AlertDispatcher
from oracle_watcher.analysis.analyzer import PER_METAL, PriceAnalyzer
from oracle_watcher.chain.contract import OracleContract
from oracle_watcher.chain.reader import OracleReader
from oracle_watcher.chain.updater import OracleUpdater
from oracle_watcher.chain.web3_contract import Web3OracleContract
from oracle_watcher.config.settings import AppSettings, get_settings
from oracle_watcher.data.adapters.crypto_adapter import CoinGeckoAdapter
from oracle_watcher.data.adapters.goldapi_adapter import GoldApiAdapter
from oracle_watcher.data.adapters.metals_live_adapter import MetalsLiveAdapter
from oracle_watcher.data.fetcher import PriceFetcher
from oracle_watcher.scheduler.watcher import WatcherScheduler
from oracle_watcher.state.backends import KeyValueBackend, MemoryBackend, RedisBackend
from oracle_watcher.state.store import StateStore
from oracle_watcher.utils.logger import get_logger

logger = get_logger("runtime")


@dataclass
class WatcherRuntime:
    settings: AppSettings
    store: StateStore
    fetcher: PriceFetcher
    contract: OracleContract
    reader: OracleReader
    updater: OracleUpdater
    dispatcher: AlertDispatcher
    analyzer: PriceAnalyzer
    scheduler: WatcherScheduler


def build_backend(settings: AppSettings) -> KeyValueBackend:
    if settings.store.store_backend == "memory":
        logger.warning("memory_store_selected", msg="state is not shared and is lost on restart")
        return MemoryBackend()
    return RedisBackend(settings.store.redis_url, timeout_seconds=settings.store.redis_timeout_seconds)


def build_channels(settings: AppSettings) -> List[AlertChannel]:
    channels: List[AlertChannel] = [WebhookChannel(settings.alerts)]
    if TelegramChannel.enabled(settings.alerts):
        channels.append(TelegramChannel(settings.alerts))
    return channels


def resolve_strategy(settings: AppSettings) -> str:
    """A per-metal contract has no setAllPrices, so it forces per-metal updates."""
    if settings.chain.contract_shape == "per_metal" and settings.chain.update_strategy != PER_METAL:
        logger.warning("update_strategy_forced", strategy=PER_METAL, contract_shape="per_metal")
        return PER_METAL
    return settings.chain.update_strategy


def build_runtime(
    settings: Optional[AppSettings] = None,
    backend: Optional[KeyValueBackend] = None,
    contract: Optional[OracleContract] = None,
    channels: Optional[List[AlertChannel]] = None,
) -> WatcherRuntime:
    settings = settings or get_settings()
    strategy = resolve_strategy(settings)

    store = StateStore(backend or build_backend(settings), settings.store)
    fetcher = PriceFetcher(
        primary=GoldApiAdapter(settings.feeds),
        secondary=MetalsLiveAdapter(settings.feeds),
        store=store,
        auxiliary=CoinGeckoAdapter(settings.feeds),
        settings=settings.feeds,
    )
    contract = contract or Web3OracleContract(settings.chain)
    reader = OracleReader(contract)
    updater = OracleUpdater(contract, store, settings.chain, strategy=strategy)
    dispatcher = AlertDispatcher(store, channels if channels is not None else build_channels(settings), settings.alerts)
    analyzer = PriceAnalyzer(settings.thresholds, strategy=strategy)
    scheduler = WatcherScheduler(store, fetcher, reader, analyzer, updater, dispatcher, settings)

    if not contract.can_sign:
        logger.warning("private_key_missing", msg="oracle updates will fail until PRIVATE_KEY is set")

    return WatcherRuntime(
        settings=settings,
        store=store,
        fetcher=fetcher,
        contract=contract,
        reader=reader,
        updater=updater,
        dispatcher=dispatcher,
        analyzer=analyzer,
        scheduler=scheduler,
    )


async def start_runtime(runtime: WatcherRuntime) -> None:
    await runtime.scheduler.start()
    logger.info("runtime_started", strategy=runtime.updater.strategy)


async def stop_runtime(runtime: WatcherRuntime) -> None:
    await runtime.scheduler.stop()
    for name, close in (
        ("fetcher", runtime.fetcher.close),
        ("dispatcher", runtime.dispatcher.close),
        ("contract", runtime.contract.close),
        ("store", runtime.store.close),
    ):
        try:
            await close()
        except Exception as e:
            logger.warning("runtime_close_failed", component=name, error=str(e))
    logger.info("runtime_stopped")
