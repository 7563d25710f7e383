"""
ORACLE WATCHER — Main Entry Point
Serves the admin/status API; the watcher loop runs inside the app lifespan.
"""
import uvicorn

from oracle_watcher.config.settings import get_settings
from oracle_watcher.utils.logger import setup_logging, get_logger

logger = get_logger("main")


def log_config_banner() -> None:
    """Effective configuration, secrets reduced to set/unset."""
    settings = get_settings()
    logger.info(
        "oracle_watcher_config",
        version=settings.version,
        port=settings.port,
        poll_interval_s=settings.poll_interval_seconds,
        deviation_threshold_pct=settings.thresholds.deviation_threshold_pct,
        anomaly_threshold_pct=settings.thresholds.anomaly_threshold_pct,
        stale_threshold_s=settings.thresholds.stale_threshold_seconds,
        oracle_address=settings.chain.oracle_address,
        rpc_url=settings.chain.rpc_url,
        contract_shape=settings.chain.contract_shape,
        update_strategy=settings.chain.update_strategy,
        store_backend=settings.store.store_backend,
        goldapi_key_set=bool(settings.feeds.goldapi_key),
        private_key_set=bool(settings.chain.private_key),
        api_key_set=bool(settings.watcher_api_key),
        telegram_enabled=bool(settings.alerts.telegram_bot_token and settings.alerts.telegram_chat_id),
    )


def run_api():
    """Run the FastAPI application."""
    settings = get_settings()
    setup_logging()
    log_config_banner()
    uvicorn.run(
        "oracle_watcher.api.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run_api()
