from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response
import structlog

from race_signals.config import settings
from race_signals.connectors.base import FeedConnector
from race_signals.db import get_session
from race_signals.errors import ConfigurationError, FeedError, FusionReadError
from race_signals.monitor import build_connector, run_cycle
from race_signals.repo.price_state import PostgresPriceStateStore
from race_signals.repo.reads import PostgresSignalReader
from race_signals.repo.upserts import PostgresCatalog
from race_signals.signals.fusion import SignalFusionEngine, SignalReader, signal_counts
from race_signals.source_config import SourceConfig, load_sources
from race_signals.sql import fetch_all, fetch_one
from race_signals.tracking.catalog import EventCatalog
from race_signals.tracking.price_state import PriceStateStore


log = structlog.get_logger(__name__)

app = FastAPI(title="racing-market-signals")

REQS = Counter("api_requests_total", "Total API requests", ["path"])
LAT = Histogram("api_request_seconds", "API request latency", ["path"])
FUSION_FAILURES = Counter("fusion_read_failures_total", "Signal requests failed on a bulk read")
CYCLES = Counter("monitor_cycles_total", "Monitor cycles triggered over HTTP", ["status"])


@dataclass
class MonitorComponents:
    connector: FeedConnector
    store: PriceStateStore
    catalog: EventCatalog
    sources: list[SourceConfig]


def get_signal_reader() -> SignalReader:
    return PostgresSignalReader(get_session)


def get_fusion_engine(reader: SignalReader = Depends(get_signal_reader)) -> SignalFusionEngine:
    return SignalFusionEngine(reader, settings)


def get_monitor_components() -> MonitorComponents:
    return MonitorComponents(
        connector=build_connector(settings),
        store=PostgresPriceStateStore(get_session, noise_floor=settings.price_noise_floor),
        catalog=PostgresCatalog(get_session),
        sources=load_sources(settings.sources_config_path),
    )


@app.exception_handler(FusionReadError)
async def fusion_read_error(request: Request, exc: FusionReadError) -> JSONResponse:
    FUSION_FAILURES.inc()
    log.error("signals_request_failed", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=503, content={"success": False, "error": str(exc)})


@app.exception_handler(FeedError)
async def feed_error(request: Request, exc: FeedError) -> JSONResponse:
    CYCLES.labels("failed").inc()
    return JSONResponse(status_code=502, content={"success": False, "error": str(exc)})


@app.exception_handler(ConfigurationError)
async def configuration_error(request: Request, exc: ConfigurationError) -> JSONResponse:
    CYCLES.labels("failed").inc()
    return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})


@app.get("/health")
async def health() -> dict:
    REQS.labels("/health").inc()
    checks: dict[str, str] = {}

    try:
        async with get_session() as session:
            await fetch_one(session, "SELECT 1")
        checks["database"] = "healthy"
    except Exception as e:
        checks["database"] = f"unhealthy: {e}"

    try:
        async with get_session() as session:
            latest = await fetch_one(session, "SELECT MAX(updated_at) AS max_ts FROM price_state")
            state_rows = await fetch_all(session, "SELECT component, is_dirty FROM orchestrator_state")
        if latest and latest.get("max_ts"):
            age = (datetime.now(timezone.utc) - latest["max_ts"]).total_seconds() / 60
            checks["prices_age_minutes"] = f"{age:.1f}"
        else:
            checks["prices_age_minutes"] = "no_data"
        checks["dirty_components"] = str(sum(1 for r in state_rows if r.get("is_dirty")))
    except Exception as e:
        checks["data_freshness"] = f"error: {e}"

    return {
        "status": "healthy" if checks.get("database") == "healthy" else "degraded",
        "checks": checks,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/metrics")
async def metrics() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/signals")
async def signals(
    as_of: datetime | None = None,
    engine: SignalFusionEngine = Depends(get_fusion_engine),
) -> dict:
    REQS.labels("/signals").inc()
    with LAT.labels("/signals").time():
        rows = await engine.fuse(as_of)
    body = {
        "success": True,
        "signals": [s.model_dump(mode="json") for s in rows],
        **signal_counts(rows),
        "generated_at": datetime.now(timezone.utc).isoformat(),
    }
    if not rows:
        body["message"] = "no qualifying signals right now"
    return body


@app.get("/movers")
async def movers(
    as_of: datetime | None = None,
    min_pct: float | None = Query(None, ge=0),
    engine: SignalFusionEngine = Depends(get_fusion_engine),
) -> dict:
    REQS.labels("/movers").inc()
    with LAT.labels("/movers").time():
        groups = await engine.movers(as_of, min_pct)
    return {"success": True, "events": [g.model_dump(mode="json") for g in groups]}


@app.get("/value-edges")
async def value_edges(
    as_of: datetime | None = None,
    estimator: str | None = None,
    threshold: float | None = Query(None, ge=0),
    engine: SignalFusionEngine = Depends(get_fusion_engine),
) -> dict:
    REQS.labels("/value-edges").inc()
    with LAT.labels("/value-edges").time():
        edges = await engine.value_candidates(as_of, estimator, threshold)
    return {"success": True, "candidates": [asdict(e) for e in edges]}


@app.get("/top-picks")
async def top_picks(
    as_of: datetime | None = None,
    min_agree: int | None = None,
    min_prob: float = Query(0.0, ge=0, le=1),
    engine: SignalFusionEngine = Depends(get_fusion_engine),
) -> dict:
    REQS.labels("/top-picks").inc()
    with LAT.labels("/top-picks").time():
        picks = await engine.top_picks(as_of, min_agree, min_prob)
    return {"success": True, "picks": [p.model_dump(mode="json") for p in picks]}


@app.post("/monitor/run")
async def monitor_run(
    force: bool = False,
    components: MonitorComponents = Depends(get_monitor_components),
) -> dict:
    REQS.labels("/monitor/run").inc()
    try:
        with LAT.labels("/monitor/run").time():
            summary = await run_cycle(
                components.connector,
                components.store,
                components.catalog,
                components.sources,
                config=settings,
                force=force,
            )
    finally:
        await components.connector.aclose()
    CYCLES.labels(summary.status).inc()
    return summary.model_dump(mode="json")
