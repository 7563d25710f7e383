"""
ORACLE WATCHER — Data Models
Canonical data structures used across the entire watcher.
All prices are USD per troy ounce.
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any, Tuple
from datetime import datetime
from enum import Enum

SCHEMA_VERSION = 1


class Metal(str, Enum):
    GOLD = "gold"
    SILVER = "silver"
    PLATINUM = "platinum"
    PALLADIUM = "palladium"


METALS: Tuple[Metal, ...] = (Metal.GOLD, Metal.SILVER, Metal.PLATINUM, Metal.PALLADIUM)


class PriceSource(str, Enum):
    GOLDAPI = "goldapi"
    METALS_LIVE = "metals-live"
    STALE_CACHE = "redis-stale"
    HARDCODED = "hardcoded"
    OVERRIDE = "override"


class MetalPrices(BaseModel):
    """One price per metal, all non-negative."""
    gold: float = Field(ge=0)
    silver: float = Field(ge=0)
    platinum: float = Field(ge=0)
    palladium: float = Field(ge=0)

    @classmethod
    def zero(cls) -> "MetalPrices":
        """The all-zero sentinel for an unreachable or uninitialized oracle."""
        return cls(gold=0.0, silver=0.0, platinum=0.0, palladium=0.0)

    def get(self, metal: Metal) -> float:
        return getattr(self, Metal(metal).value)

    def as_dict(self) -> Dict[str, float]:
        return {m.value: self.get(m) for m in METALS}


class FetchResult(BaseModel):
    """Best-effort outcome of the fetch chain."""
    prices: MetalPrices
    auxiliary_price: float = 0.0
    source: PriceSource
    duration_ms: int = 0
    errors: List[str] = Field(default_factory=list)


class OnChainPrices(BaseModel):
    """Prices currently stored in the oracle contract."""
    prices: MetalPrices
    auxiliary_price: float = 0.0
    last_updated: int = 0
    reachable: bool = True

    @classmethod
    def unreachable(cls) -> "OnChainPrices":
        return cls(prices=MetalPrices.zero(), auxiliary_price=0.0, last_updated=0, reachable=False)


class AnomalyType(str, Enum):
    PRICE_SPIKE = "price_spike"
    PRICE_CRASH = "price_crash"
    SOURCE_FAILURE = "source_failure"
    STALE_DATA = "stale_data"


class Severity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


class Anomaly(BaseModel):
    type: AnomalyType
    metal: Optional[Metal] = None
    severity: Severity
    message: str
    value: Optional[float] = None


class AnalysisResult(BaseModel):
    anomalies: List[Anomaly] = Field(default_factory=list)
    deviations: Dict[str, float] = Field(default_factory=dict)
    should_update: bool = False
    metals_to_update: List[Metal] = Field(default_factory=list)


class SubmittedPrices(BaseModel):
    base: MetalPrices
    with_spread: MetalPrices


class UpdateResult(BaseModel):
    success: bool
    tx_hashes: List[str] = Field(default_factory=list)
    updated_metals: List[Metal] = Field(default_factory=list)
    prices: SubmittedPrices
    auxiliary_price: float = 0.0
    error: Optional[str] = None


class AlertType(str, Enum):
    ORACLE_STALE = "oracle_stale"
    PRICE_ANOMALY = "price_anomaly"
    SOURCE_FAILURE = "source_failure"
    UPDATE_FAILURE = "update_failure"
    KILL_SWITCH = "kill_switch"
    WATCHER_ERROR = "watcher_error"


class AlertPayload(BaseModel):
    type: AlertType
    severity: Severity
    title: str
    body: str
    data: Dict[str, Any] = Field(default_factory=dict)


class WatcherState(str, Enum):
    RUNNING = "running"
    PAUSED = "paused"
    ERROR = "error"
    STOPPED = "stopped"


# ─── Persisted records ──────────────────────────────────────────
# Every record stored in the state store carries schema_version; a record
# with another version is treated as absent.

class WatcherStatus(BaseModel):
    schema_version: int = SCHEMA_VERSION
    state: WatcherState
    uptime_start: Optional[datetime] = None
    error_count: int = 0
    last_cycle_ms: int = 0


class LastFetchRecord(BaseModel):
    schema_version: int = SCHEMA_VERSION
    timestamp: datetime
    prices: MetalPrices
    auxiliary_price: float = 0.0
    source: PriceSource
    errors: List[str] = Field(default_factory=list)


class LastUpdateRecord(BaseModel):
    schema_version: int = SCHEMA_VERSION
    timestamp: datetime
    tx_hashes: List[str] = Field(default_factory=list)
    metals: List[Metal] = Field(default_factory=list)
    source: PriceSource
    prices: SubmittedPrices
    auxiliary_price: float = 0.0


class PriceSnapshot(BaseModel):
    schema_version: int = SCHEMA_VERSION
    timestamp: datetime
    fetched: MetalPrices
    on_chain: MetalPrices
    deviations: Dict[str, float] = Field(default_factory=dict)
    source: PriceSource


class OverridePrices(BaseModel):
    """Operator-supplied prices that replace the fetch chain until expiry."""
    prices: MetalPrices
    auxiliary_price: Optional[float] = None
    expires_at: datetime

    def is_active(self, now: datetime) -> bool:
        return now < self.expires_at


class SharedPriceCache(BaseModel):
    """Normalized prices shared with other processes reading the same store."""
    gold: float
    silver: float
    platinum: float
    palladium: float
    auxiliary_price: float = 0.0
    timestamp: int = 0  # unix milliseconds

    def metal_prices(self) -> MetalPrices:
        return MetalPrices(
            gold=self.gold, silver=self.silver,
            platinum=self.platinum, palladium=self.palladium,
        )


class Spread(BaseModel):
    buy: float = 0.0
    sell: float = 0.0


class SpreadConfig(BaseModel):
    """Buy/sell spreads in percent, owned by the wallet admin."""
    metals: Dict[Metal, Spread]

    @classmethod
    def default(cls) -> "SpreadConfig":
        return cls(metals={
            Metal.GOLD: Spread(buy=1.5, sell=1.5),
            Metal.SILVER: Spread(buy=2.0, sell=2.0),
            Metal.PLATINUM: Spread(buy=2.0, sell=2.0),
            Metal.PALLADIUM: Spread(buy=2.5, sell=2.5),
        })

    def buy_pct(self, metal: Metal) -> float:
        spread = self.metals.get(Metal(metal))
        if spread is None:
            return SpreadConfig.default().metals[Metal(metal)].buy
        return spread.buy
