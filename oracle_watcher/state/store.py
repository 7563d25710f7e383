"""
ORACLE WATCHER — State Store
Typed access to every key the watcher owns (under the oracle:watcher
namespace) plus the shared price cache and spread config it exchanges with
the wallet app.

Reads never raise: a failing backend or an unreadable record yields a safe
default. Writes made by the tick (records, status, counters, shared cache,
history) are logged and dropped on failure so an outage never stops an
update. Operator writes (kill switch, override) raise so the caller sees them.
"""
import json
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from oracle_watcher.config.settings import StoreSettings, get_settings
from oracle_watcher.data.models import (
    SCHEMA_VERSION,
    LastFetchRecord,
    LastUpdateRecord,
    MetalPrices,
    OverridePrices,
    PriceSnapshot,
    SharedPriceCache,
    SpreadConfig,
    WatcherState,
    WatcherStatus,
)
from oracle_watcher.state.backends import KeyValueBackend
from oracle_watcher.utils.helpers import parse_timestamp, utc_now
from oracle_watcher.utils.logger import get_logger

logger = get_logger("state_store")

R = TypeVar("R", bound=BaseModel)


class StateKeys:
    """Key layout, namespaced for the watcher and shared with the wallet app."""

    def __init__(self, settings: StoreSettings):
        ns = settings.namespace.rstrip(":")
        self.kill_switch = f"{ns}:kill_switch"
        self.override_prices = f"{ns}:override:prices"
        self.override_expires = f"{ns}:override:expires"
        self.last_update = f"{ns}:last_update"
        self.last_fetch = f"{ns}:last_fetch"
        self.status = f"{ns}:status"
        self.error_count = f"{ns}:error_count"
        self.price_history = f"{ns}:price_history"
        self._cooldown_prefix = f"{ns}:alert:cooldown"

        self.shared_price_cache = settings.shared_cache_key
        self.shared_price_stale = settings.shared_stale_key
        self.spread_config = settings.spread_config_key

    def alert_cooldown(self, alert_type: str) -> str:
        return f"{self._cooldown_prefix}:{alert_type}"


class StateStore:
    """Durable watcher state on top of a key-value backend."""

    def __init__(
        self,
        backend: KeyValueBackend,
        settings: Optional[StoreSettings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.backend = backend
        self.settings = settings or get_settings().store
        self.keys = StateKeys(self.settings)
        self._clock = clock

    async def close(self) -> None:
        await self.backend.close()

    # ─── Record (de)serialization ───────────────────────────────

    def _decode(self, raw: Optional[str], model: Type[R], key: str) -> Optional[R]:
        """Validate a stored JSON record; anything unreadable counts as absent."""
        if not raw:
            return None
        try:
            record = model.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("state_record_invalid", key=key, errors=e.error_count())
            return None
        version = getattr(record, "schema_version", SCHEMA_VERSION)
        if version != SCHEMA_VERSION:
            logger.warning("state_record_version_mismatch", key=key, version=version)
            return None
        return record

    async def _read(self, key: str, model: Type[R]) -> Optional[R]:
        try:
            raw = await self.backend.get(key)
        except Exception as e:
            logger.error("state_read_failed", key=key, error=str(e))
            return None
        return self._decode(raw, model, key)

    async def _write(self, key: str, value: str) -> bool:
        try:
            await self.backend.set(key, value)
            return True
        except Exception as e:
            logger.error("state_write_failed", key=key, error=str(e))
            return False

    # ─── Kill Switch ────────────────────────────────────────────

    async def get_kill_switch(self) -> bool:
        try:
            value = await self.backend.get(self.keys.kill_switch)
        except Exception as e:
            logger.error("kill_switch_read_failed", error=str(e))
            return False
        return value == "true"

    async def set_kill_switch(self, active: bool) -> None:
        await self.backend.set(self.keys.kill_switch, "true" if active else "false")
        logger.info("kill_switch_updated", active=active)

    # ─── Override Prices ────────────────────────────────────────

    async def get_override(self) -> Optional[OverridePrices]:
        """Return the active override, clearing it once it has expired."""
        try:
            expires_raw = await self.backend.get(self.keys.override_expires)
            prices_raw = await self.backend.get(self.keys.override_prices)
        except Exception as e:
            logger.error("override_read_failed", error=str(e))
            return None

        if not prices_raw or not expires_raw:
            return None

        expires_at = parse_timestamp(expires_raw)
        if expires_at is None:
            logger.warning("override_expiry_invalid", value=expires_raw)
            return None

        try:
            payload = json.loads(prices_raw)
            auxiliary = payload.pop("auxiliary_price", None) if isinstance(payload, dict) else None
            override = OverridePrices(
                prices=MetalPrices.model_validate(payload),
                auxiliary_price=auxiliary,
                expires_at=expires_at,
            )
        except (ValueError, ValidationError) as e:
            logger.warning("override_prices_invalid", error=str(e))
            return None

        if not override.is_active(self._clock()):
            try:
                await self.clear_override()
            except Exception as e:
                logger.error("override_clear_failed", error=str(e))
            return None
        return override

    async def set_override(
        self,
        prices: MetalPrices,
        expires_in_minutes: float,
        auxiliary_price: Optional[float] = None,
    ) -> OverridePrices:
        expires_at = self._clock() + timedelta(minutes=expires_in_minutes)
        payload = prices.as_dict()
        if auxiliary_price is not None:
            payload["auxiliary_price"] = auxiliary_price
        await self.backend.set(self.keys.override_prices, json.dumps(payload))
        await self.backend.set(self.keys.override_expires, expires_at.isoformat())
        logger.info("override_set", prices=prices.as_dict(), expires_at=expires_at.isoformat())
        return OverridePrices(prices=prices, auxiliary_price=auxiliary_price, expires_at=expires_at)

    async def clear_override(self) -> None:
        await self.backend.delete(self.keys.override_prices, self.keys.override_expires)
        logger.info("override_cleared")

    # ─── Last Update / Last Fetch Records ───────────────────────

    async def get_last_update(self) -> Optional[LastUpdateRecord]:
        return await self._read(self.keys.last_update, LastUpdateRecord)

    async def set_last_update(self, record: LastUpdateRecord) -> None:
        await self._write(self.keys.last_update, record.model_dump_json())

    async def get_last_fetch(self) -> Optional[LastFetchRecord]:
        return await self._read(self.keys.last_fetch, LastFetchRecord)

    async def set_last_fetch(self, record: LastFetchRecord) -> None:
        await self._write(self.keys.last_fetch, record.model_dump_json())

    # ─── Watcher Status ─────────────────────────────────────────

    async def get_status(self) -> WatcherStatus:
        try:
            raw = await self.backend.get(self.keys.status)
        except Exception as e:
            logger.error("status_read_failed", error=str(e))
            return WatcherStatus(state=WatcherState.ERROR)
        status = self._decode(raw, WatcherStatus, self.keys.status)
        return status or WatcherStatus(state=WatcherState.STOPPED)

    async def set_status(self, status: WatcherStatus) -> None:
        await self._write(self.keys.status, status.model_dump_json())

    # ─── Error Tracking ─────────────────────────────────────────

    async def increment_error_count(self) -> int:
        """New consecutive-error count; 0 when the counter cannot be written."""
        try:
            return await self.backend.incr(self.keys.error_count)
        except Exception as e:
            logger.error("error_count_increment_failed", error=str(e))
            return 0

    async def reset_error_count(self) -> None:
        await self._write(self.keys.error_count, "0")

    async def get_error_count(self) -> int:
        try:
            value = await self.backend.get(self.keys.error_count)
            return int(value or 0)
        except (ValueError, TypeError):
            return 0
        except Exception as e:
            logger.error("error_count_read_failed", error=str(e))
            return 0

    # ─── Price History ──────────────────────────────────────────

    async def push_price_snapshot(self, snapshot: PriceSnapshot) -> None:
        try:
            await self.backend.lpush(self.keys.price_history, snapshot.model_dump_json())
            await self.backend.ltrim(self.keys.price_history, 0, self.settings.history_max_entries - 1)
        except Exception as e:
            logger.error("price_snapshot_push_failed", error=str(e))

    async def get_price_history(self, limit: int = 50) -> List[PriceSnapshot]:
        try:
            raw_items = await self.backend.lrange(self.keys.price_history, 0, max(1, limit) - 1)
        except Exception as e:
            logger.error("price_history_read_failed", error=str(e))
            return []
        snapshots = []
        for raw in raw_items:
            snapshot = self._decode(raw, PriceSnapshot, self.keys.price_history)
            if snapshot is not None:
                snapshots.append(snapshot)
        return snapshots

    # ─── Alert Cooldown ─────────────────────────────────────────

    async def is_alert_on_cooldown(self, alert_type: str) -> bool:
        value = await self.backend.get(self.keys.alert_cooldown(alert_type))
        return value is not None

    async def set_alert_cooldown(self, alert_type: str, ttl_seconds: int) -> None:
        await self.backend.setex(self.keys.alert_cooldown(alert_type), ttl_seconds, "true")

    # ─── Shared Price Cache (wallet app reads these) ────────────

    async def update_shared_price_cache(self, prices: MetalPrices, auxiliary_price: float) -> None:
        data = SharedPriceCache(
            **prices.as_dict(),
            auxiliary_price=auxiliary_price,
            timestamp=int(self._clock().timestamp() * 1000),
        ).model_dump_json()
        try:
            await self.backend.setex(self.keys.shared_price_cache, self.settings.shared_cache_ttl_seconds, data)
            await self.backend.set(self.keys.shared_price_stale, data)
        except Exception as e:
            logger.error("shared_price_cache_update_failed", error=str(e))

    async def get_stale_prices(self) -> Optional[SharedPriceCache]:
        """Last known-good prices; raises on transport errors so the fetcher can report them."""
        raw = await self.backend.get(self.keys.shared_price_stale)
        if not raw:
            return None
        try:
            return SharedPriceCache.model_validate_json(raw)
        except ValidationError:
            logger.warning("stale_prices_invalid")
            return None

    # ─── Spread Config (written by the wallet admin) ────────────

    async def get_spread_config(self) -> SpreadConfig:
        try:
            raw = await self.backend.get(self.keys.spread_config)
        except Exception as e:
            logger.error("spread_config_read_failed", error=str(e))
            return SpreadConfig.default()
        if not raw:
            return SpreadConfig.default()
        try:
            return SpreadConfig.model_validate_json(raw)
        except ValidationError:
            logger.warning("spread_config_invalid")
            return SpreadConfig.default()
