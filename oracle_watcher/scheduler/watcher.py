"""
ORACLE WATCHER — Watcher Scheduler
The monitoring loop. One tick:
  1. read kill switch, override and the previous fetch/update records
  2. prices from the override or the fetch chain
  3. on-chain prices
  4. analysis
  5. anomaly alerts
  6. oracle update (unless the kill switch is on) with error escalation
  7. watcher status
  8. price history snapshot
Ticks are single-flight: a tick requested while one is running is dropped.
"""
import asyncio
import contextlib
import time
from datetime import datetime
from typing import Callable, List, Optional, Set

from pydantic import BaseModel, Field

from oracle_watcher.alerts.dispatcher import AlertDispatcher
from oracle_watcher.analysis.analyzer import PriceAnalyzer
from oracle_watcher.chain.reader import OracleReader
from oracle_watcher.chain.updater import OracleUpdater
from oracle_watcher.config.settings import AppSettings, get_settings
from oracle_watcher.data.fetcher import PriceFetcher
from oracle_watcher.data.models import (
    AlertPayload,
    AlertType,
    Anomaly,
    LastFetchRecord,
    LastUpdateRecord,
    OverridePrices,
    PriceSnapshot,
    PriceSource,
    Severity,
    WatcherState,
    WatcherStatus,
)
from oracle_watcher.state.store import StateStore
from oracle_watcher.utils.helpers import utc_now
from oracle_watcher.utils.logger import get_logger
from oracle_watcher.utils.retry import Sleep

logger = get_logger("watcher")


class TickReport(BaseModel):
    """What a single tick did."""
    source: Optional[PriceSource] = None
    should_update: bool = False
    updated: bool = False
    skipped_reason: Optional[str] = None
    anomalies: List[Anomaly] = Field(default_factory=list)
    duration_ms: int = 0
    error: Optional[str] = None


class WatcherScheduler:

    def __init__(
        self,
        store: StateStore,
        fetcher: PriceFetcher,
        reader: OracleReader,
        analyzer: PriceAnalyzer,
        updater: OracleUpdater,
        dispatcher: AlertDispatcher,
        settings: Optional[AppSettings] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Optional[Sleep] = None,
    ):
        self.store = store
        self.fetcher = fetcher
        self.reader = reader
        self.analyzer = analyzer
        self.updater = updater
        self.dispatcher = dispatcher
        self.settings = settings or get_settings()
        self._clock = clock
        self._sleep = sleep or asyncio.sleep

        self._in_progress = False
        self._task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def tick_in_progress(self) -> bool:
        return self._in_progress

    # ─── Lifecycle ──────────────────────────────────────────────

    async def start(self) -> None:
        if self.is_running:
            return
        try:
            previous = await self.store.get_status()
            await self.store.set_status(WatcherStatus(
                state=WatcherState.RUNNING,
                uptime_start=self._clock(),
                error_count=await self.store.get_error_count(),
                last_cycle_ms=previous.last_cycle_ms,
            ))
        except Exception as e:
            logger.error("running_status_write_failed", error=str(e))
        logger.info("scheduler_started", interval_s=self.settings.poll_interval_seconds)
        self._task = asyncio.create_task(self._loop())

    async def _loop(self) -> None:
        while True:
            await self.tick()
            await self._sleep(self.settings.poll_interval_seconds)

    async def stop(self) -> None:
        tasks = [t for t in [self._task, *self._background] if t is not None]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._task = None
        self._background.clear()

        try:
            status = await self.store.get_status()
            await self.store.set_status(status.model_copy(update={"state": WatcherState.STOPPED}))
        except Exception as e:
            logger.error("stopped_status_write_failed", error=str(e))
        logger.info("scheduler_stopped")

    async def force_tick(self) -> TickReport:
        logger.info("force_tick_requested")
        return await self.tick()

    def trigger(self) -> asyncio.Task:
        """Run a forced tick in the background and return immediately."""
        task = asyncio.create_task(self.force_tick())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # ─── Tick ───────────────────────────────────────────────────

    async def tick(self) -> TickReport:
        if self._in_progress:
            logger.warning("tick_skipped_in_progress")
            return TickReport(skipped_reason="in_progress")

        self._in_progress = True
        started = time.monotonic()
        try:
            return await self._run_tick(started)
        except Exception as e:
            return await self._tick_failed(e, started)
        finally:
            self._in_progress = False

    async def _run_tick(self, started: float) -> TickReport:
        # 1. Control state, read before anything is written this cycle
        kill_switch = await self.store.get_kill_switch()
        override = await self.store.get_override()
        previous_fetch = await self.store.get_last_fetch()
        last_update = await self.store.get_last_update()

        # 2. Prices
        if override is not None:
            prices = override.prices
            auxiliary_price = await self._override_auxiliary(override)
            source = PriceSource.OVERRIDE
            logger.info("using_override_prices", prices=prices.as_dict(), expires_at=override.expires_at.isoformat())
        else:
            fetched = await self.fetcher.fetch()
            prices, auxiliary_price, source = fetched.prices, fetched.auxiliary_price, fetched.source
            await self.store.set_last_fetch(LastFetchRecord(
                timestamp=self._clock(),
                prices=prices,
                auxiliary_price=auxiliary_price,
                source=source,
                errors=fetched.errors,
            ))
            if source == PriceSource.HARDCODED and fetched.errors:
                await self.dispatcher.send(AlertPayload(
                    type=AlertType.SOURCE_FAILURE,
                    severity=Severity.WARNING,
                    title="Oracle: All Price Sources Failed",
                    body=(
                        "GoldAPI and metals.live both failed. Using hardcoded fallback. "
                        f"Errors: {'; '.join(fetched.errors)}"
                    ),
                    data={"errors": fetched.errors},
                ))

        # 3. On-chain
        on_chain = await self.reader.read()

        # 4. Analysis
        analysis = self.analyzer.analyze(
            prices,
            on_chain.prices,
            previous_fetch.prices if previous_fetch else None,
            last_update.timestamp if last_update else None,
            now=self._clock(),
        )

        # 5. Alerts
        if analysis.anomalies:
            await self.dispatcher.send_anomalies(analysis.anomalies)

        # 6. Update
        updated = False
        skipped_reason = None
        if not analysis.should_update:
            skipped_reason = "within_threshold"
        elif kill_switch:
            skipped_reason = "kill_switch"
            logger.info("update_skipped_kill_switch", deviations=analysis.deviations)
        else:
            logger.info("updating_oracle", deviations=analysis.deviations,
                        metals=[m.value for m in analysis.metals_to_update])
            result = await self.updater.update(prices, auxiliary_price, analysis.metals_to_update)
            if result.updated_metals:
                await self.store.set_last_update(LastUpdateRecord(
                    timestamp=self._clock(),
                    tx_hashes=result.tx_hashes,
                    metals=result.updated_metals,
                    source=source,
                    prices=result.prices,
                    auxiliary_price=result.auxiliary_price,
                ))
            if result.success:
                await self.store.reset_error_count()
                updated = True
            else:
                kill_switch = await self._escalate(result.error)

        # 7. Status
        duration_ms = int((time.monotonic() - started) * 1000)
        await self._write_status(
            WatcherState.PAUSED if kill_switch else WatcherState.RUNNING,
            await self.store.get_error_count(),
            duration_ms,
        )

        # 8. History
        await self.store.push_price_snapshot(PriceSnapshot(
            timestamp=self._clock(),
            fetched=prices,
            on_chain=on_chain.prices,
            deviations=analysis.deviations,
            source=source,
        ))

        logger.info(
            "tick_complete",
            duration_ms=duration_ms,
            source=source.value,
            should_update=analysis.should_update,
            updated=updated,
            kill_switch=kill_switch,
            anomalies=len(analysis.anomalies),
        )
        return TickReport(
            source=source,
            should_update=analysis.should_update,
            updated=updated,
            skipped_reason=skipped_reason,
            anomalies=analysis.anomalies,
            duration_ms=duration_ms,
        )

    async def _override_auxiliary(self, override: OverridePrices) -> float:
        if override.auxiliary_price:
            return override.auxiliary_price
        try:
            stale = await self.store.get_stale_prices()
        except Exception as e:
            logger.warning("auxiliary_stale_read_failed", error=str(e))
            stale = None
        if stale is not None and stale.auxiliary_price > 0:
            return stale.auxiliary_price
        return self.settings.feeds.fallback_auxiliary

    async def _escalate(self, error: Optional[str]) -> bool:
        """Count a failed update; returns True once the watcher has auto-paused."""
        thresholds = self.settings.thresholds
        error_count = await self.store.increment_error_count()
        logger.warning("oracle_update_failure_counted", error_count=error_count, error=error)

        if error_count >= thresholds.alert_after_errors:
            await self.dispatcher.send(AlertPayload(
                type=AlertType.UPDATE_FAILURE,
                severity=Severity.CRITICAL,
                title="Oracle: Update Failed",
                body=f"Oracle update failed {error_count} consecutive times. Error: {error}",
                data={"errorCount": error_count, "error": error},
            ))

        if error_count >= thresholds.max_consecutive_errors:
            await self.store.set_kill_switch(True)
            logger.error("watcher_auto_paused", error_count=error_count)
            await self.dispatcher.send(AlertPayload(
                type=AlertType.WATCHER_ERROR,
                severity=Severity.CRITICAL,
                title="Oracle Watcher Auto-Paused",
                body=f"Auto-paused after {error_count} consecutive failures.",
                data={"errorCount": error_count},
            ))
            return True
        return False

    async def _write_status(self, state: WatcherState, error_count: int, duration_ms: int) -> None:
        previous = await self.store.get_status()
        await self.store.set_status(WatcherStatus(
            state=state,
            uptime_start=previous.uptime_start or self._clock(),
            error_count=error_count,
            last_cycle_ms=duration_ms,
        ))

    async def _tick_failed(self, error: Exception, started: float) -> TickReport:
        message = str(error) or type(error).__name__
        duration_ms = int((time.monotonic() - started) * 1000)
        try:
            error_count = await self.store.increment_error_count()
            logger.error("tick_failed", error=message, error_count=error_count)
            await self._write_status(WatcherState.ERROR, error_count, duration_ms)
        except Exception as e:
            logger.error("tick_failure_not_recorded", error=message, store_error=str(e))
        return TickReport(skipped_reason="error", error=message, duration_ms=duration_ms)
