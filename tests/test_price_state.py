import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from race_signals.errors import InvalidPriceError
from race_signals.repo.price_state import PostgresPriceStateStore
from race_signals.schemas import Movement, PriceQuote
from race_signals.tracking.price_state import InMemoryPriceStateStore, apply_observation

T0 = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)
KEY = ("e1", "c1", "Betfair")


def quote(price: float, minutes: int = 0) -> PriceQuote:
    return PriceQuote(
        event_id="e1", competitor_id="c1", source_id="Betfair",
        price=price, observed_at=T0 + timedelta(minutes=minutes),
    )


@pytest.mark.asyncio
async def test_first_observation_creates_stable_state():
    store = InMemoryPriceStateStore()
    res = await store.upsert(quote(5.0))
    assert res.created
    assert res.change is None
    s = res.state
    assert s.initial_price == s.current_price == 5.0
    assert s.movement is Movement.STABLE
    assert s.change_count == 0
    assert s.movement_pct is None
    assert s.last_change_at is None


@pytest.mark.asyncio
async def test_five_to_four_is_a_twenty_percent_shortening():
    store = InMemoryPriceStateStore()
    await store.upsert(quote(5.0))
    res = await store.upsert(quote(4.0, minutes=1))

    s = res.state
    assert s.movement_pct == -20.0
    assert s.movement is Movement.SHORTENING
    assert s.change_count == 1
    assert s.previous_price == 5.0
    assert s.initial_price == 5.0
    assert s.last_change_at == T0 + timedelta(minutes=1)

    (change,) = store.changes_for(KEY)
    assert change.from_price == 5.0
    assert change.to_price == 4.0
    assert change.change_abs == -1.0
    assert change.change_pct == -20.0
    assert change.direction is Movement.SHORTENING
    assert change.id == 1


@pytest.mark.asyncio
async def test_replaying_current_price_is_a_no_op():
    store = InMemoryPriceStateStore()
    await store.upsert(quote(5.0))
    await store.upsert(quote(4.0, minutes=1))
    before = store.states[KEY]

    res = await store.upsert(quote(4.0, minutes=2))
    assert not res.changed
    assert not res.created
    assert res.state == before
    assert store.states[KEY].change_count == 1
    assert store.states[KEY].last_change_at == T0 + timedelta(minutes=1)
    assert len(store.changes_for(KEY)) == 1


@pytest.mark.asyncio
async def test_decreasing_sequence_counts_each_distinct_change():
    store = InMemoryPriceStateStore()
    prices = [10.0, 8.0, 8.0, 6.0, 5.0, 5.0, 4.0]
    for i, p in enumerate(prices):
        res = await store.upsert(quote(p, minutes=i))
        if res.changed:
            assert res.state.movement is Movement.SHORTENING
    s = store.states[KEY]
    assert s.change_count == len(set(prices)) - 1
    assert s.initial_price == 10.0
    assert s.current_price == 4.0
    assert len(store.changes_for(KEY)) == s.change_count


@pytest.mark.asyncio
async def test_lengthening_and_rounding():
    store = InMemoryPriceStateStore()
    await store.upsert(quote(4.0))
    res = await store.upsert(quote(5.0, minutes=1))
    assert res.state.movement is Movement.LENGTHENING
    assert res.state.movement_pct == 25.0

    res = await store.upsert(quote(4.8, minutes=2))
    assert res.state.movement is Movement.SHORTENING
    assert res.state.movement_pct == -4.0
    assert res.state.previous_price == 5.0

    store = InMemoryPriceStateStore()
    await store.upsert(quote(3.0))
    res = await store.upsert(quote(2.9, minutes=1))
    assert res.state.movement_pct == -3.33


@pytest.mark.asyncio
async def test_noise_floor_suppresses_jitter():
    store = InMemoryPriceStateStore(noise_floor=0.1)
    await store.upsert(quote(5.0))
    res = await store.upsert(quote(4.95, minutes=1))
    assert not res.changed
    assert store.states[KEY].current_price == 5.0

    res = await store.upsert(quote(4.8, minutes=2))
    assert res.changed
    assert store.states[KEY].change_count == 1


def test_invalid_price_is_rejected_without_touching_state():
    prior = apply_observation(None, quote(5.0)).state
    bad = PriceQuote.model_construct(
        event_id="e1", competitor_id="c1", source_id="Betfair", price=-1.0, observed_at=T0
    )
    with pytest.raises(InvalidPriceError):
        apply_observation(prior, bad)
    assert prior.current_price == 5.0

    with pytest.raises(ValidationError):
        quote(0.0)


@pytest.mark.asyncio
@pytest.mark.parametrize("store_cls", [InMemoryPriceStateStore, PostgresPriceStateStore])
async def test_infinite_price_is_rejected_by_both_stores(store_cls):
    def no_session():
        raise AssertionError("rejected prices must not reach the database")

    store = store_cls() if store_cls is InMemoryPriceStateStore else store_cls(no_session)
    with pytest.raises(InvalidPriceError):
        await store.upsert(quote(float("inf")))
    if isinstance(store, InMemoryPriceStateStore):
        assert store.states == {}


@pytest.mark.asyncio
async def test_concurrent_updates_to_one_key_stay_consistent():
    store = InMemoryPriceStateStore()
    await store.upsert(quote(5.0))
    prices = [4.0, 4.5, 4.0, 3.5, 4.5, 3.0, 3.0, 2.5] * 5
    await asyncio.gather(*(store.upsert(quote(p, minutes=i + 1)) for i, p in enumerate(prices)))

    s = store.states[KEY]
    changes = store.changes_for(KEY)
    assert s.change_count == len(changes)
    # the log chains: each change starts where the previous one ended
    for a, b in zip(changes, changes[1:]):
        assert b.from_price == a.to_price
    assert changes[-1].to_price == s.current_price


@pytest.mark.asyncio
async def test_mark_inactive():
    store = InMemoryPriceStateStore()
    await store.upsert(quote(5.0))
    other = PriceQuote(event_id="e2", competitor_id="c9", source_id="Betfair", price=3.0, observed_at=T0)
    await store.upsert(other)

    assert await store.mark_inactive(["e1"]) == 1
    assert await store.mark_inactive(["e1"]) == 0
    assert store.states[KEY].is_active is False
    assert store.states[other.key].is_active is True
    assert [s.event_id for s in store.active_states()] == ["e2"]
