"""
ORACLE WATCHER — Price Analyzer
Deviation from the on-chain oracle, cycle-to-cycle spike/crash detection and
oracle staleness. Pure: all inputs are passed in, nothing is read or written.
"""
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from oracle_watcher.config.settings import ThresholdSettings, get_settings
from oracle_watcher.data.models import (
    METALS,
    AnalysisResult,
    Anomaly,
    AnomalyType,
    Metal,
    MetalPrices,
    Severity,
)
from oracle_watcher.utils.helpers import pct_change, round_pct, utc_now

ATOMIC = "atomic"
PER_METAL = "per_metal"

UNINITIALIZED_DEVIATION = 100.0


def _metal_name(metal: Metal) -> str:
    return metal.value.capitalize()


def compute_deviations(
    fetched: MetalPrices,
    on_chain: MetalPrices,
    thresholds: ThresholdSettings,
) -> Tuple[Dict[str, float], List[Metal]]:
    """Per-metal deviation (%) from the on-chain price and the metals that exceed their threshold."""
    deviations: Dict[str, float] = {}
    flagged: List[Metal] = []
    for metal in METALS:
        current = fetched.get(metal)
        stored = on_chain.get(metal)

        if stored <= 0:
            # Oracle not initialized or unreachable
            deviations[metal.value] = UNINITIALIZED_DEVIATION
            flagged.append(metal)
            continue

        deviation = abs(current - stored) / stored * 100
        deviations[metal.value] = round_pct(deviation)
        if deviation > thresholds.deviation_threshold_for(metal.value):
            flagged.append(metal)
    return deviations, flagged


def detect_price_moves(
    fetched: MetalPrices,
    previous: Optional[MetalPrices],
    anomaly_threshold_pct: float,
) -> List[Anomaly]:
    """Spike/crash anomalies between the previous and the current fetch."""
    anomalies: List[Anomaly] = []
    if previous is None:
        return anomalies

    for metal in METALS:
        before = previous.get(metal)
        if before <= 0:
            continue
        now_price = fetched.get(metal)
        change = pct_change(before, now_price)
        if abs(change) <= anomaly_threshold_pct:
            continue

        spike = change > 0
        anomalies.append(Anomaly(
            type=AnomalyType.PRICE_SPIKE if spike else AnomalyType.PRICE_CRASH,
            metal=metal,
            severity=Severity.CRITICAL,
            message=(
                f"{_metal_name(metal)} {'spiked' if spike else 'crashed'} {abs(change):.1f}% "
                f"(${before:.2f} → ${now_price:.2f}/oz)"
            ),
            value=round_pct(change),
        ))
    return anomalies


def detect_staleness(
    last_update_at: Optional[datetime],
    now: datetime,
    stale_threshold_seconds: float,
) -> Optional[Anomaly]:
    if last_update_at is None:
        return None
    elapsed = (now - last_update_at).total_seconds()
    if elapsed <= stale_threshold_seconds:
        return None
    minutes = round(elapsed / 60)
    return Anomaly(
        type=AnomalyType.STALE_DATA,
        severity=Severity.WARNING,
        message=f"Oracle has not been updated for {minutes} minutes",
        value=minutes,
    )


def analyze(
    fetched: MetalPrices,
    on_chain: MetalPrices,
    previous_fetch: Optional[MetalPrices],
    last_update_at: Optional[datetime],
    *,
    now: Optional[datetime] = None,
    thresholds: Optional[ThresholdSettings] = None,
    strategy: str = ATOMIC,
) -> AnalysisResult:
    """
    Compare fetched prices with the oracle and the previous cycle.

    The three checks are independent: anomalies never imply or suppress an
    update. Under the atomic strategy any deviating metal schedules all four;
    under per_metal only the deviating metals are scheduled.
    """
    thresholds = thresholds or get_settings().thresholds
    now = now or utc_now()

    deviations, flagged = compute_deviations(fetched, on_chain, thresholds)

    anomalies = detect_price_moves(fetched, previous_fetch, thresholds.anomaly_threshold_pct)
    stale = detect_staleness(last_update_at, now, thresholds.stale_threshold_seconds)
    if stale is not None:
        anomalies.append(stale)

    should_update = bool(flagged)
    if not should_update:
        metals_to_update: List[Metal] = []
    elif strategy == PER_METAL:
        metals_to_update = flagged
    else:
        metals_to_update = list(METALS)

    return AnalysisResult(
        anomalies=anomalies,
        deviations=deviations,
        should_update=should_update,
        metals_to_update=metals_to_update,
    )


class PriceAnalyzer:
    """Binds thresholds and update strategy to analyze()."""

    def __init__(self, thresholds: Optional[ThresholdSettings] = None, strategy: str = ATOMIC):
        self.thresholds = thresholds or get_settings().thresholds
        self.strategy = strategy

    def analyze(
        self,
        fetched: MetalPrices,
        on_chain: MetalPrices,
        previous_fetch: Optional[MetalPrices] = None,
        last_update_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> AnalysisResult:
        return analyze(
            fetched,
            on_chain,
            previous_fetch,
            last_update_at,
            now=now,
            thresholds=self.thresholds,
            strategy=self.strategy,
        )
