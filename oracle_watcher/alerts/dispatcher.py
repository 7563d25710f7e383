"""
ORACLE WATCHER — Alert Dispatcher
Per-type cooldown in the state store, fan-out to every configured channel.
"""
from typing import List, Optional, Sequence

from oracle_watcher.alerts.channels import AlertChannel
from oracle_watcher.config.settings import AlertSettings, get_settings
from oracle_watcher.data.models import AlertPayload, AlertType, Anomaly, AnomalyType
from oracle_watcher.state.store import StateStore
from oracle_watcher.utils.logger import get_logger

logger = get_logger("alert_dispatcher")

ANOMALY_ALERT_TYPES = {
    AnomalyType.PRICE_SPIKE: AlertType.PRICE_ANOMALY,
    AnomalyType.PRICE_CRASH: AlertType.PRICE_ANOMALY,
    AnomalyType.SOURCE_FAILURE: AlertType.SOURCE_FAILURE,
    AnomalyType.STALE_DATA: AlertType.ORACLE_STALE,
}


def anomaly_title(anomaly_type: AnomalyType) -> str:
    """'price_spike' -> 'Oracle Alert: Price Spike'"""
    return "Oracle Alert: " + anomaly_type.value.replace("_", " ").title()


def anomaly_to_alert(anomaly: Anomaly) -> AlertPayload:
    return AlertPayload(
        type=ANOMALY_ALERT_TYPES.get(anomaly.type, AlertType.WATCHER_ERROR),
        severity=anomaly.severity,
        title=anomaly_title(anomaly.type),
        body=anomaly.message,
        data={
            "metal": anomaly.metal.value if anomaly.metal else None,
            "value": anomaly.value,
        },
    )


class AlertDispatcher:

    def __init__(
        self,
        store: StateStore,
        channels: Sequence[AlertChannel],
        settings: Optional[AlertSettings] = None,
    ):
        self.store = store
        self.channels: List[AlertChannel] = list(channels)
        self.settings = settings or get_settings().alerts

    async def close(self) -> None:
        for channel in self.channels:
            await channel.close()

    async def _on_cooldown(self, alert_type: AlertType) -> bool:
        try:
            return await self.store.is_alert_on_cooldown(alert_type.value)
        except Exception as e:
            logger.error("alert_cooldown_read_failed", type=alert_type.value, error=str(e))
            return False

    async def send(self, alert: AlertPayload) -> bool:
        """Deliver unless this alert type is on cooldown; True if any channel delivered."""
        if await self._on_cooldown(alert.type):
            logger.debug("alert_on_cooldown", type=alert.type.value)
            return False

        if not self.channels:
            logger.warning("alert_no_channels", type=alert.type.value, title=alert.title)
            return False

        logger.info("alert_sending", type=alert.type.value, severity=alert.severity.value, title=alert.title)
        delivered = [ch.name for ch in self.channels if await ch.deliver(alert)]
        if not delivered:
            logger.error("alert_send_failed", type=alert.type.value)
            return False

        try:
            await self.store.set_alert_cooldown(alert.type.value, self.settings.alert_cooldown_seconds)
        except Exception as e:
            logger.error("alert_cooldown_write_failed", type=alert.type.value, error=str(e))
        logger.info("alert_sent", type=alert.type.value, channels=delivered)
        return True

    async def send_anomalies(self, anomalies: Sequence[Anomaly]) -> None:
        for anomaly in anomalies:
            await self.send(anomaly_to_alert(anomaly))
