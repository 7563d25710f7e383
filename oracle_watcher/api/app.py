"""
ORACLE WATCHER — FastAPI Application
Health and status endpoints for the platform, plus the admin controls
(kill switch, manual override, forced update) used by the wallet admin panel.
"""
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, StrictBool

from oracle_watcher.data.models import METALS, AlertPayload, AlertType, MetalPrices, Severity
from oracle_watcher.runtime import WatcherRuntime, build_runtime, start_runtime, stop_runtime
from oracle_watcher.utils.helpers import round_pct, utc_timestamp
from oracle_watcher.utils.logger import get_logger, setup_logging

logger = get_logger("api")

HISTORY_DEFAULT_LIMIT = 50
HISTORY_MAX_LIMIT = 200


class KillSwitchRequest(BaseModel):
    active: StrictBool


class OverridePricesInput(BaseModel):
    gold: float = Field(gt=0)
    silver: float = Field(gt=0)
    platinum: float = Field(gt=0)
    palladium: float = Field(gt=0)


class OverrideRequest(BaseModel):
    prices: OverridePricesInput
    expiresInMinutes: float = Field(default=60, gt=0)
    auxiliaryPrice: Optional[float] = Field(default=None, gt=0)


# ─── Dependencies ───────────────────────────────────────────────

def get_runtime(request: Request) -> WatcherRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Watcher not initialized")
    return runtime


def require_admin(request: Request, runtime: WatcherRuntime = Depends(get_runtime)) -> None:
    """Bearer token check; open when no API key is configured."""
    api_key = runtime.settings.watcher_api_key
    if not api_key:
        return
    if request.headers.get("authorization") != f"Bearer {api_key}":
        raise HTTPException(status_code=401, detail="Unauthorized")


def _deviations(fetched: Optional[MetalPrices], on_chain: Optional[MetalPrices]) -> Dict[str, float]:
    if fetched is None or on_chain is None:
        return {}
    out = {}
    for metal in METALS:
        stored = on_chain.get(metal)
        if stored > 0:
            out[metal.value] = round_pct(abs(fetched.get(metal) - stored) / stored * 100)
    return out


def create_app(runtime: Optional[WatcherRuntime] = None, start_scheduler: bool = True) -> FastAPI:
    """
    Build the HTTP app. Without a runtime one is built from settings at
    startup; the scheduler loop runs for the lifetime of the app unless
    start_scheduler is False.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging()
        if app.state.runtime is None:
            app.state.runtime = build_runtime()
        settings = app.state.runtime.settings
        app.state.started_at = time.monotonic()
        logger.info("oracle_watcher_starting", version=settings.version, port=settings.port)

        if start_scheduler:
            await start_runtime(app.state.runtime)
        logger.info("oracle_watcher_ready")

        yield

        logger.info("oracle_watcher_shutting_down")
        if start_scheduler:
            await stop_runtime(app.state.runtime)

    app = FastAPI(
        title="Oracle Watcher",
        description="Precious-metals on-chain price oracle watcher",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.runtime = runtime
    app.state.started_at = time.monotonic()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    def uptime_seconds() -> int:
        return int(round(time.monotonic() - app.state.started_at))

    # ─── Public ─────────────────────────────────────────────────

    @app.get("/health", tags=["System"])
    async def health(runtime: WatcherRuntime = Depends(get_runtime)):
        return {
            "status": "ok",
            "version": runtime.settings.version,
            "uptime": uptime_seconds(),
        }

    @app.get("/status", tags=["System"])
    async def status(runtime: WatcherRuntime = Depends(get_runtime)):
        store = runtime.store
        watcher_status = await store.get_status()
        last_update = await store.get_last_update()
        last_fetch = await store.get_last_fetch()
        kill_switch = await store.get_kill_switch()
        override = await store.get_override()
        error_count = await store.get_error_count()

        chain = await runtime.reader.read()
        on_chain = chain.prices if chain.reachable else None
        fetched = last_fetch.prices if last_fetch else None

        settings = runtime.settings
        return {
            "status": "ok",
            "version": settings.version,
            "uptime": uptime_seconds(),
            "state": watcher_status.state.value,
            "killSwitch": kill_switch,
            "overrideActive": override is not None,
            "overridePrices": override.model_dump(mode="json") if override else None,
            "consecutiveErrors": error_count,
            "lastCycleMs": watcher_status.last_cycle_ms,
            "tickInProgress": runtime.scheduler.tick_in_progress,
            "lastUpdate": {
                "timestamp": last_update.timestamp.isoformat(),
                "metals": [m.value for m in last_update.metals],
                "source": last_update.source.value,
                "txHashes": last_update.tx_hashes,
            } if last_update else None,
            "lastFetch": {
                "timestamp": last_fetch.timestamp.isoformat(),
                "source": last_fetch.source.value,
                "errors": last_fetch.errors,
            } if last_fetch else None,
            "prices": {
                "current": fetched.as_dict() if fetched else None,
                "onChain": on_chain.as_dict() if on_chain else None,
                "deviations": _deviations(fetched, on_chain),
            },
            "config": {
                "pollIntervalSeconds": settings.poll_interval_seconds,
                "deviationThresholdPct": settings.thresholds.deviation_threshold_pct,
                "anomalyThresholdPct": settings.thresholds.anomaly_threshold_pct,
                "staleThresholdSeconds": settings.thresholds.stale_threshold_seconds,
                "updateStrategy": runtime.updater.strategy,
                "contractShape": settings.chain.contract_shape,
            },
        }

    @app.get("/prices", tags=["Prices"])
    async def prices(runtime: WatcherRuntime = Depends(get_runtime)):
        last_fetch = await runtime.store.get_last_fetch()
        chain = await runtime.reader.read()
        on_chain: Optional[Dict[str, Any]] = None
        if chain.reachable:
            on_chain = {**chain.prices.as_dict(), "auxiliary": chain.auxiliary_price}
        return {
            "fetched": last_fetch.prices.as_dict() if last_fetch else None,
            "fetchedAt": last_fetch.timestamp.isoformat() if last_fetch else None,
            "source": last_fetch.source.value if last_fetch else None,
            "onChain": on_chain,
        }

    @app.get("/history", tags=["Prices"])
    async def history(
        limit: int = Query(HISTORY_DEFAULT_LIMIT),
        runtime: WatcherRuntime = Depends(get_runtime),
    ):
        if limit <= 0:
            limit = HISTORY_DEFAULT_LIMIT
        snapshots = await runtime.store.get_price_history(min(limit, HISTORY_MAX_LIMIT))
        return {
            "count": len(snapshots),
            "history": [s.model_dump(mode="json") for s in snapshots],
        }

    # ─── Admin ──────────────────────────────────────────────────

    @app.post("/admin/kill-switch", tags=["Admin"], dependencies=[Depends(require_admin)])
    async def kill_switch(body: KillSwitchRequest, runtime: WatcherRuntime = Depends(get_runtime)):
        await runtime.store.set_kill_switch(body.active)
        logger.info("kill_switch_toggled_via_api", active=body.active)
        await runtime.dispatcher.send(AlertPayload(
            type=AlertType.KILL_SWITCH,
            severity=Severity.WARNING,
            title=f"Oracle Kill Switch {'Activated' if body.active else 'Deactivated'}",
            body=(
                "Oracle updates are paused until the kill switch is turned off."
                if body.active else "Oracle updates resume on the next tick."
            ),
            data={"active": body.active},
        ))
        return {"success": True, "killSwitch": body.active}

    @app.post("/admin/override", tags=["Admin"], dependencies=[Depends(require_admin)])
    async def set_override(body: OverrideRequest, runtime: WatcherRuntime = Depends(get_runtime)):
        override = await runtime.store.set_override(
            MetalPrices(**body.prices.model_dump()),
            body.expiresInMinutes,
            auxiliary_price=body.auxiliaryPrice,
        )
        logger.info("override_set_via_api", prices=override.prices.as_dict(), minutes=body.expiresInMinutes)
        return {
            "success": True,
            "override": override.prices.as_dict(),
            "auxiliaryPrice": override.auxiliary_price,
            "expiresAt": override.expires_at.isoformat(),
        }

    @app.delete("/admin/override", tags=["Admin"], dependencies=[Depends(require_admin)])
    async def clear_override(runtime: WatcherRuntime = Depends(get_runtime)):
        await runtime.store.clear_override()
        return {"success": True, "message": "Override cleared"}

    @app.post("/admin/force-update", tags=["Admin"], dependencies=[Depends(require_admin)])
    async def force_update(runtime: WatcherRuntime = Depends(get_runtime)):
        logger.info("force_update_via_api")
        runtime.scheduler.trigger()
        return {"success": True, "message": "Force update triggered", "timestamp": utc_timestamp()}

    return app


app = create_app()
