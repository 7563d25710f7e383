"""
ORACLE WATCHER — Central Configuration
All settings are loaded from environment variables with sensible defaults.
"""
from typing import Dict, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class FeedSettings(BaseSettings):
    """Price feed endpoints, keys and the hardcoded fallback table ($/oz)."""
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    goldapi_key: str = ""
    goldapi_base_url: str = "https://www.goldapi.io/api"
    goldapi_rate_delay_seconds: float = 1.5

    metals_live_url: str = "https://api.metals.live/v1/spot"

    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    auxiliary_coin_id: str = "ethereum"

    feed_timeout_seconds: float = 10.0

    fallback_gold: float = 5050.0
    fallback_silver: float = 89.0
    fallback_platinum: float = 2280.0
    fallback_palladium: float = 1820.0
    fallback_auxiliary: float = 3000.0

    def fallback_prices(self) -> Dict[str, float]:
        return {
            "gold": self.fallback_gold,
            "silver": self.fallback_silver,
            "platinum": self.fallback_platinum,
            "palladium": self.fallback_palladium,
        }


class ThresholdSettings(BaseSettings):
    """Deviation, anomaly, staleness and escalation thresholds."""
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    deviation_threshold_pct: float = 0.5
    anomaly_threshold_pct: float = 5.0
    stale_threshold_seconds: float = 600.0
    # Per-metal overrides for the deviation threshold, e.g. {"silver": 1.0}
    metal_deviation_thresholds: Dict[str, float] = Field(default_factory=dict)

    alert_after_errors: int = 3
    max_consecutive_errors: int = 10

    @field_validator("deviation_threshold_pct", "anomaly_threshold_pct", "stale_threshold_seconds")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("threshold must be > 0")
        return value

    def deviation_threshold_for(self, metal: str) -> float:
        return self.metal_deviation_thresholds.get(metal, self.deviation_threshold_pct)


class ChainSettings(BaseSettings):
    """Oracle contract, RPC endpoint and update strategy."""
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    rpc_url: str = "https://mainnet.base.org"
    private_key: str = ""
    oracle_address: str = "0xbB109166062D718756D0389F4bA2aB02A36F296c"

    # all_prices: getAllPrices/setAllPrices, per_metal: getPrice/updatePrice
    contract_shape: Literal["all_prices", "per_metal"] = "all_prices"
    # atomic: one tx for everything, per_metal: one tx per deviating metal
    update_strategy: Literal["atomic", "per_metal"] = "atomic"

    rpc_timeout_seconds: float = 15.0
    retry_attempts: int = 3
    retry_base_delay_seconds: float = 2.0
    retry_max_delay_seconds: float = 15.0
    inter_tx_delay_seconds: float = 2.0

    wait_for_receipt: bool = False
    receipt_timeout_seconds: float = 60.0


class StoreSettings(BaseSettings):
    """Key-value state store."""
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    store_backend: Literal["redis", "memory"] = "redis"
    redis_url: str = "redis://127.0.0.1:6379/0"
    redis_timeout_seconds: float = 5.0

    namespace: str = "oracle:watcher"
    shared_cache_key: str = "metal:prices:cache"
    shared_stale_key: str = "metal:prices:stale"
    spread_config_key: str = "admin:spread:config:v2"
    shared_cache_ttl_seconds: int = 60
    history_max_entries: int = 1000


class AlertSettings(BaseSettings):
    """Notification channels and cooldown."""
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_url: str = "https://vault.auxite.io"
    push_path: str = "/api/admin/push-send"
    app_admin_token: str = ""

    telegram_bot_token: str = ""
    telegram_chat_id: str = ""

    alert_cooldown_seconds: int = 300
    alert_timeout_seconds: float = 10.0


class AppSettings(BaseSettings):
    """Top-level application settings."""
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "Oracle Watcher"
    version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 3001
    watcher_api_key: str = ""

    poll_interval_seconds: float = 90.0

    feeds: FeedSettings = Field(default_factory=FeedSettings)
    thresholds: ThresholdSettings = Field(default_factory=ThresholdSettings)
    chain: ChainSettings = Field(default_factory=ChainSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    alerts: AlertSettings = Field(default_factory=AlertSettings)


# Singleton
_settings: Optional[AppSettings] = None


def get_settings() -> AppSettings:
    global _settings
    if _settings is None:
        _settings = AppSettings()
    return _settings
