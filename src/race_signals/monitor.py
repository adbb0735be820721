"""One polling cycle of the price monitor.

A cycle fetches the day's racecards, refreshes event and entry metadata,
turns every tracked bookmaker quote into a :class:`PriceQuote` and folds it
into the price state store. Records are independent: a bad quote or a failed
upsert is counted and logged with its key, the rest of the batch carries on.
Feed and configuration failures propagate so the scheduler sees a failed run.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

from race_signals.config import Settings, settings as default_settings
from race_signals.connectors.base import FeedConnector
from race_signals.connectors.mock import MockConnector
from race_signals.connectors.racing_api import RacingApiConnector
from race_signals.data_quality.validators import validate_keys, validate_observed_at, validate_price
from race_signals.errors import ConfigurationError, InvalidPriceError
from race_signals.market_hours import is_within_active_window
from race_signals.odds import parse_price
from race_signals.schemas import CompetitorEntry, EventMeta, FeedEvent, IngestSummary, PriceQuote
from race_signals.source_config import SourceConfig, primary_source, resolve_source
from race_signals.tracking.catalog import EventCatalog
from race_signals.tracking.price_state import Key, ObservationResult, PriceStateStore

log = structlog.get_logger(__name__)

SCOPE = "monitor_prices"


@dataclass
class Rejected:
    key: Key
    reason: str
    context: dict[str, Any] = field(default_factory=dict)


def build_connector(config: Settings) -> FeedConnector:
    if config.mock_mode:
        return MockConnector(config.mock_feed_path, tz_name=config.market_timezone)
    return RacingApiConnector(
        config.feed_base_url,
        config.feed_username,
        config.feed_password,
        timeout_seconds=config.feed_timeout_seconds,
        max_retries=config.feed_max_retries,
        tz_name=config.market_timezone,
    )


def event_metadata(events: list[FeedEvent]) -> tuple[list[EventMeta], list[CompetitorEntry]]:
    metas: list[EventMeta] = []
    entries: list[CompetitorEntry] = []
    for ev in events:
        metas.append(
            EventMeta(
                event_id=ev.event_id,
                venue_id=ev.venue_id,
                venue_name=ev.venue_name,
                race_date=ev.race_date,
                start_at=ev.start_at,
            )
        )
        for c in ev.competitors:
            entries.append(
                CompetitorEntry(
                    event_id=ev.event_id,
                    competitor_id=c.competitor_id,
                    name=c.name,
                    handler_id=c.handler_id,
                    handler_name=c.handler_name,
                    rider_name=c.rider_name,
                    number=c.number,
                    silk_url=c.silk_url,
                )
            )
    return metas, entries


def extract_quotes(
    events: list[FeedEvent],
    sources: list[SourceConfig],
    now: datetime,
) -> tuple[list[PriceQuote], list[Rejected]]:
    """One quote per (event, competitor, source), plus the records rejected.

    Feed labels are mapped onto configured sources; when several labels map to
    the same source (e.g. an exchange and a sportsbook line of one bookmaker)
    the alias listed first wins. Labels of untracked bookmakers are ignored.
    """
    chosen: dict[Key, tuple[int, Any]] = {}
    for ev in events:
        for c in ev.competitors:
            for q in c.quotes:
                src = resolve_source(q.source, sources)
                if src is None:
                    continue
                key = (ev.event_id, c.competitor_id, src.source_id)
                rank = src.preference(q.source)
                held = chosen.get(key)
                if held is None or rank < held[0]:
                    chosen[key] = (rank, q)

    quotes: list[PriceQuote] = []
    rejected: list[Rejected] = []
    for key, (_, q) in chosen.items():
        event_id, competitor_id, source_id = key
        ok, err = validate_keys(event_id, competitor_id, source_id)
        if not ok:
            rejected.append(Rejected(key, err))
            continue
        try:
            price = parse_price(q.decimal, q.fractional)
        except InvalidPriceError as e:
            rejected.append(Rejected(key, str(e), {"decimal": q.decimal, "fractional": q.fractional}))
            continue
        ok, err = validate_price(price)
        if not ok:
            rejected.append(Rejected(key, err, {"price": price}))
            continue
        observed_at = q.updated_at or now
        ok, err = validate_observed_at(observed_at, now)
        if not ok:
            rejected.append(Rejected(key, err, {"observed_at": observed_at}))
            continue
        quotes.append(
            PriceQuote(
                event_id=event_id,
                competitor_id=competitor_id,
                source_id=source_id,
                price=price,
                fractional=q.fractional,
                observed_at=observed_at,
            )
        )
    return quotes, rejected


async def apply_quotes(
    store: PriceStateStore,
    quotes: list[PriceQuote],
    concurrency: int = 8,
) -> tuple[dict[Key, ObservationResult], list[Rejected]]:
    """Upsert quotes in parallel across keys; each key is applied once."""
    sem = asyncio.Semaphore(max(1, concurrency))
    results: dict[Key, ObservationResult] = {}
    failures: list[Rejected] = []

    async def one(q: PriceQuote) -> None:
        async with sem:
            try:
                results[q.key] = await store.upsert(q)
            except Exception as e:
                log.error(
                    "price_upsert_failed",
                    event_id=q.event_id,
                    competitor_id=q.competitor_id,
                    source_id=q.source_id,
                    price=q.price,
                    error=str(e),
                )
                failures.append(Rejected(q.key, f"upsert failed: {e}", {"price": q.price}))

    await asyncio.gather(*(one(q) for q in quotes))
    return results, failures


async def _record(catalog: EventCatalog, rows: list[Rejected]) -> None:
    for r in rows:
        event_id, competitor_id, source_id = r.key
        context = {"event_id": event_id, "competitor_id": competitor_id, "source_id": source_id, **r.context}
        try:
            await catalog.record_quality_issue(SCOPE, r.reason, context)
        except Exception as e:
            log.error("quality_log_write_failed", error=str(e), **context)


async def run_cycle(
    connector: FeedConnector,
    store: PriceStateStore,
    catalog: EventCatalog,
    sources: list[SourceConfig],
    *,
    config: Settings | None = None,
    now: datetime | None = None,
    force: bool = False,
) -> IngestSummary:
    cfg = config or default_settings
    now = now or datetime.now(timezone.utc)

    if not force and not is_within_active_window(
        now, cfg.active_window_start, cfg.active_window_end, cfg.market_timezone
    ):
        log.info("monitor_outside_window", now=now.isoformat(), tz=cfg.market_timezone)
        return IngestSummary(status="skipped", started_at=now, message="outside active window")
    if not sources:
        raise ConfigurationError("no price sources configured")

    events = await connector.fetch_events()
    if not events:
        log.info("monitor_no_events")
        return IngestSummary(status="ok", started_at=now, message="no events in feed")

    metas, entries = event_metadata(events)
    await catalog.upsert_events(metas)
    await catalog.upsert_entries(entries)

    quotes, rejected = extract_quotes(events, sources, now)
    for r in rejected:
        log.warning("price_record_skipped", key=r.key, reason=r.reason)
    results, failures = await apply_quotes(store, quotes, cfg.ingest_concurrency)
    await _record(catalog, rejected + failures)

    primary = primary_source(sources)
    synced = await catalog.sync_entry_prices(
        [
            (key[0], key[1], res.state.current_price)
            for key, res in results.items()
            if key[2] == primary
        ]
    )

    summary = IngestSummary(
        status="ok",
        started_at=now,
        events=len(events),
        processed=len(quotes),
        created=sum(1 for r in results.values() if r.created),
        changed=sum(1 for r in results.values() if r.changed),
        unchanged=sum(1 for r in results.values() if not r.created and not r.changed),
        skipped=len(rejected),
        failed=len(failures),
    )
    log.info("monitor_cycle_done", synced_entries=synced, **summary.model_dump(exclude={"started_at", "message"}))
    return summary
