from datetime import date, datetime, timezone
from pathlib import Path

import pytest

from race_signals.config import Settings
from race_signals.connectors.base import FeedConnector
from race_signals.errors import ConfigurationError, FeedError
from race_signals.monitor import extract_quotes, run_cycle
from race_signals.schemas import CompetitorEntry, FeedCompetitor, FeedEvent, FeedQuote, Movement
from race_signals.source_config import SourceConfig
from race_signals.tracking.catalog import InMemoryCatalog
from race_signals.tracking.price_state import InMemoryPriceStateStore

ROOT = Path(__file__).resolve().parent.parent
NOW = datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)
CFG = Settings(
    market_timezone="Europe/London",
    active_window_start="08:00",
    active_window_end="21:00",
    ingest_concurrency=4,
)
SOURCES = [
    SourceConfig("Betfair", aliases=("Betfair Exchange", "Betfair Sportsbook"), primary=True),
    SourceConfig("Ladbrokes"),
]


def _event(prices: dict[str, list[FeedQuote]]) -> FeedEvent:
    return FeedEvent(
        event_id="r1",
        venue_id="ascot",
        venue_name="Ascot",
        race_date=date(2026, 10, 19),
        start_at=datetime(2026, 10, 19, 13, 30, tzinfo=timezone.utc),
        competitors=[
            FeedCompetitor(competitor_id=cid, name=cid.upper(), handler_id="t1", quotes=quotes)
            for cid, quotes in prices.items()
        ],
    )


class FakeConnector(FeedConnector):
    def __init__(self, *batches):
        self.batches = list(batches)
        self.calls = 0

    async def fetch_events(self):
        self.calls += 1
        return self.batches.pop(0)


class FailingConnector(FeedConnector):
    async def fetch_events(self):
        raise FeedError("racecards request failed with status 503")


def _q(source: str, decimal: str, fractional: str | None = None) -> FeedQuote:
    return FeedQuote(source=source, decimal=decimal, fractional=fractional)


@pytest.mark.asyncio
async def test_cycle_creates_then_tracks_changes():
    store, catalog = InMemoryPriceStateStore(), InMemoryCatalog()
    first = [_event({"h1": [_q("Betfair Exchange", "5.0")], "h2": [_q("Betfair Exchange", "3.0")]})]
    second = [_event({"h1": [_q("Betfair Exchange", "4.0")], "h2": [_q("Betfair Exchange", "3.0")]})]
    connector = FakeConnector(first, second)

    s1 = await run_cycle(connector, store, catalog, SOURCES, config=CFG, now=NOW)
    assert (s1.status, s1.events, s1.processed, s1.created, s1.changed) == ("ok", 1, 2, 2, 0)

    s2 = await run_cycle(connector, store, catalog, SOURCES, config=CFG, now=NOW)
    assert (s2.created, s2.changed, s2.unchanged, s2.skipped, s2.failed) == (0, 1, 1, 0, 0)

    state = store.states[("r1", "h1", "Betfair")]
    assert state.movement is Movement.SHORTENING
    assert state.movement_pct == -20.0
    assert state.change_count == 1
    assert catalog.entries[("r1", "h1")].current_price == 4.0
    assert catalog.events["r1"].venue_name == "Ascot"


@pytest.mark.asyncio
async def test_outside_active_window_is_a_no_op():
    connector = FakeConnector([_event({"h1": [_q("Betfair Exchange", "5.0")]})])
    late = datetime(2026, 10, 19, 20, 30, tzinfo=timezone.utc)  # 21:30 in London

    summary = await run_cycle(connector, InMemoryPriceStateStore(), InMemoryCatalog(), SOURCES, config=CFG, now=late)
    assert summary.status == "skipped"
    assert connector.calls == 0

    summary = await run_cycle(
        connector, InMemoryPriceStateStore(), InMemoryCatalog(), SOURCES, config=CFG, now=late, force=True
    )
    assert summary.status == "ok"
    assert connector.calls == 1


@pytest.mark.asyncio
async def test_bad_records_are_skipped_and_logged():
    store, catalog = InMemoryPriceStateStore(), InMemoryCatalog()
    events = [
        _event(
            {
                "h1": [_q("Betfair Exchange", "SP", "SP")],
                "h2": [_q("Betfair Exchange", "0")],
                "h3": [_q("Ladbrokes", "9/2"), _q("Coral", "6.0")],
            }
        )
    ]
    summary = await run_cycle(FakeConnector(events), store, catalog, SOURCES, config=CFG, now=NOW)

    assert summary.skipped == 2
    assert summary.processed == 1
    assert set(store.states) == {("r1", "h3", "Ladbrokes")}
    assert store.states[("r1", "h3", "Ladbrokes")].current_price == 5.5
    assert {row["context"]["competitor_id"] for row in catalog.quality_log} == {"h1", "h2"}
    assert all(row["scope"] == "monitor_prices" for row in catalog.quality_log)
    # only the primary source is written back to entries
    assert catalog.entries[("r1", "h3")].current_price is None


def test_exchange_alias_preferred_over_sportsbook():
    events = [_event({"h1": [_q("Betfair Sportsbook", "4.5"), _q("betfair exchange", "5.0")]})]
    quotes, rejected = extract_quotes(events, SOURCES, NOW)
    assert rejected == []
    assert [(q.source_id, q.price) for q in quotes] == [("Betfair", 5.0)]
    assert quotes[0].observed_at == NOW


def test_future_timestamps_are_rejected():
    q = FeedQuote(source="Ladbrokes", decimal="3.0", updated_at=datetime(2026, 10, 19, 11, 0, tzinfo=timezone.utc))
    quotes, rejected = extract_quotes([_event({"h1": [q]})], SOURCES, NOW)
    assert quotes == []
    assert rejected[0].reason == "observed_at is in the future"


class FlakyStore(InMemoryPriceStateStore):
    async def upsert(self, quote):
        if quote.competitor_id == "h2":
            raise ConnectionError("connection reset")
        return await super().upsert(quote)


@pytest.mark.asyncio
async def test_persistence_failure_does_not_abort_batch():
    store, catalog = FlakyStore(), InMemoryCatalog()
    events = [_event({"h1": [_q("Betfair Exchange", "5.0")], "h2": [_q("Betfair Exchange", "3.0")]})]
    summary = await run_cycle(FakeConnector(events), store, catalog, SOURCES, config=CFG, now=NOW)

    assert (summary.created, summary.failed) == (1, 1)
    assert ("r1", "h1", "Betfair") in store.states
    assert catalog.quality_log[0]["context"]["competitor_id"] == "h2"


@pytest.mark.asyncio
async def test_feed_failure_propagates():
    with pytest.raises(FeedError):
        await run_cycle(FailingConnector(), InMemoryPriceStateStore(), InMemoryCatalog(), SOURCES, config=CFG, now=NOW)


@pytest.mark.asyncio
async def test_missing_sources_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        await run_cycle(FakeConnector([]), InMemoryPriceStateStore(), InMemoryCatalog(), [], config=CFG, now=NOW)


@pytest.mark.asyncio
async def test_mock_feed_file_runs_end_to_end():
    from race_signals.connectors.mock import MockConnector
    from race_signals.source_config import load_sources

    store, catalog = InMemoryPriceStateStore(), InMemoryCatalog()
    summary = await run_cycle(
        MockConnector(str(ROOT / "data" / "mock" / "racecards.json")),
        store,
        catalog,
        load_sources(str(ROOT / "config" / "sources.yml")),
        config=CFG,
        now=NOW,
    )
    assert summary.status == "ok"
    assert summary.events == 3
    assert summary.skipped == 1  # the "SP" quote
    assert store.states[("rac_101", "hrs_1", "Betfair")].current_price == 5.0
    assert ("rac_101", "hrs_3", "Coral") not in store.states
    # "2:05" is an afternoon off time, 14:05 BST
    assert catalog.events["rac_102"].start_at.astimezone(timezone.utc).hour == 13


@pytest.mark.asyncio
async def test_entry_price_sync_counts_matched_entries_only():
    catalog = InMemoryCatalog()
    await catalog.upsert_entries([CompetitorEntry(event_id="e1", competitor_id="c1")])
    assert await catalog.sync_entry_prices([("e1", "c1", 4.0), ("e1", "zz", 9.0)]) == 1
    assert catalog.entries[("e1", "c1")].current_price == 4.0
    assert ("e1", "zz") not in catalog.entries
