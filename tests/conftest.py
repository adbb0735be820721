from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from race_signals.schemas import CompetitorEntry, EventMeta, Movement, PriceState
from race_signals.tracking.catalog import InMemoryCatalog
from race_signals.tracking.price_state import InMemoryPriceStateStore

ESTIMATORS = ["mlp", "rf", "xgboost", "benter", "ensemble"]
RACE_DAY = date(2026, 10, 19)
# 11:00 in London (BST)
AS_OF = datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)


def mover(event_id: str, competitor_id: str, pct: float, source_id: str = "Betfair") -> PriceState:
    current = round(10.0 * (1 + pct / 100), 4)
    return PriceState(
        event_id=event_id,
        competitor_id=competitor_id,
        source_id=source_id,
        initial_price=10.0,
        previous_price=10.0,
        current_price=current,
        change_count=1,
        last_change_at=AS_OF,
        movement=Movement.SHORTENING if pct < 0 else Movement.LENGTHENING,
        movement_pct=pct,
    )


def entry(event_id: str, competitor_id: str, handler_id: str | None, p: float, price: float | None = None) -> CompetitorEntry:
    return CompetitorEntry(
        event_id=event_id,
        competitor_id=competitor_id,
        name=f"Horse {competitor_id}",
        handler_id=handler_id,
        handler_name=f"Trainer {handler_id}" if handler_id else None,
        current_price=price,
        probabilities={name: p for name in ESTIMATORS},
    )


@pytest.fixture
def market() -> tuple[InMemoryPriceStateStore, InMemoryCatalog]:
    """Two venues on race day; e2 has already started at ``AS_OF``.

    Expected signals: c2 strong (top pick, -30), c1 strong (sole entry, -12),
    c4 medium (-40), c3 medium (-15).
    """
    store = InMemoryPriceStateStore()
    catalog = InMemoryCatalog()

    for ev in (
        EventMeta(event_id="e1", venue_id="V1", venue_name="Ascot", race_date=RACE_DAY,
                  start_at=datetime(2026, 10, 19, 14, 0, tzinfo=timezone.utc)),
        EventMeta(event_id="e2", venue_id="V1", venue_name="Ascot", race_date=RACE_DAY,
                  start_at=datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)),
        EventMeta(event_id="e3", venue_id="V2", venue_name="Wolverhampton", race_date=RACE_DAY,
                  start_at=datetime(2026, 10, 19, 15, 0, tzinfo=timezone.utc)),
    ):
        catalog.events[ev.event_id] = ev

    for e in (
        entry("e1", "c1", "H1", 0.1),
        entry("e1", "c2", "H2", 0.5, price=4.0),
        entry("e1", "c3", "H2", 0.4, price=2.0),
        entry("e2", "c6", "H2", 1.0, price=2.0),
        entry("e3", "c4", "H3", 0.2, price=10.0),
        entry("e3", "c5", "H3", 0.8, price=1.5),
    ):
        catalog.entries[(e.event_id, e.competitor_id)] = e

    for s in (
        mover("e1", "c1", -12.0),
        mover("e1", "c2", -30.0),
        mover("e1", "c3", -15.0),
        mover("e3", "c4", -40.0),
        mover("e3", "c5", -5.0),
        mover("e2", "c6", -50.0),
    ):
        store.states[s.key] = s

    return store, catalog
