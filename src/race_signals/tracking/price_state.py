"""Per (event, competitor, source) price state and its movement rules.

A state row is created on the first observation of a key and updated only
when a later observation differs from the stored price by at least the
noise floor. Each real change bumps ``change_count`` and appends one
:class:`PriceChangeEvent`; replaying the stored price is a no-op.
"""
from __future__ import annotations

import asyncio
import math
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable

import structlog

from race_signals.errors import InvalidPriceError
from race_signals.schemas import Movement, PriceChangeEvent, PriceQuote, PriceState

log = structlog.get_logger(__name__)

PCT_DECIMALS = 2

Key = tuple[str, str, str]


@dataclass(frozen=True)
class ObservationResult:
    state: PriceState
    change: PriceChangeEvent | None = None
    created: bool = False

    @property
    def changed(self) -> bool:
        return self.change is not None


def movement_between(previous: float, current: float) -> tuple[Movement, float]:
    """Direction and signed percentage move relative to ``previous``."""
    pct = round(100.0 * (current - previous) / previous, PCT_DECIMALS)
    if current < previous:
        return Movement.SHORTENING, pct
    if current > previous:
        return Movement.LENGTHENING, pct
    return Movement.STABLE, 0.0


def apply_observation(
    prior: PriceState | None,
    quote: PriceQuote,
    *,
    noise_floor: float = 0.0,
) -> ObservationResult:
    """Fold one observed price into the stored state for its key."""
    price = quote.price
    if price is None or not math.isfinite(price) or price <= 0:
        raise InvalidPriceError(f"price must be positive: {price}")

    if prior is None:
        state = PriceState(
            event_id=quote.event_id,
            competitor_id=quote.competitor_id,
            source_id=quote.source_id,
            initial_price=price,
            current_price=price,
        )
        return ObservationResult(state=state, created=True)

    delta = price - prior.current_price
    if delta == 0 or abs(delta) < noise_floor:
        return ObservationResult(state=prior)

    movement, pct = movement_between(prior.current_price, price)
    state = prior.model_copy(
        update={
            "previous_price": prior.current_price,
            "current_price": price,
            "change_count": prior.change_count + 1,
            "last_change_at": quote.observed_at,
            "movement": movement,
            "movement_pct": pct,
        }
    )
    change = PriceChangeEvent(
        event_id=quote.event_id,
        competitor_id=quote.competitor_id,
        source_id=quote.source_id,
        from_price=prior.current_price,
        to_price=price,
        change_abs=round(delta, PCT_DECIMALS),
        change_pct=pct,
        direction=movement,
        source_ts=quote.observed_at,
    )
    return ObservationResult(state=state, change=change)


class PriceStateStore(ABC):
    """Keyed price state with an atomic compare-and-update ``upsert``."""

    @abstractmethod
    async def upsert(self, quote: PriceQuote) -> ObservationResult:
        """Apply one observation; concurrent calls for one key must serialize."""
        raise NotImplementedError

    @abstractmethod
    async def mark_inactive(self, event_ids: Iterable[str]) -> int:
        raise NotImplementedError


class InMemoryPriceStateStore(PriceStateStore):
    """Process-local store; one lock per key makes read-compare-write atomic."""

    def __init__(self, noise_floor: float = 0.0):
        self.noise_floor = noise_floor
        self.states: dict[Key, PriceState] = {}
        self.changes: list[PriceChangeEvent] = []
        self._locks: dict[Key, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def upsert(self, quote: PriceQuote) -> ObservationResult:
        async with self._locks[quote.key]:
            result = apply_observation(self.states.get(quote.key), quote, noise_floor=self.noise_floor)
            if result.created or result.changed:
                self.states[quote.key] = result.state
            if result.change is not None:
                self.changes.append(result.change.model_copy(update={"id": len(self.changes) + 1}))
            return result

    async def mark_inactive(self, event_ids: Iterable[str]) -> int:
        wanted = set(event_ids)
        n = 0
        for key, state in self.states.items():
            if state.event_id in wanted and state.is_active:
                self.states[key] = state.model_copy(update={"is_active": False})
                n += 1
        log.info("price_state_deactivated", events=len(wanted), rows=n)
        return n

    def active_states(self) -> list[PriceState]:
        return [s for s in self.states.values() if s.is_active]

    def changes_for(self, key: Key) -> list[PriceChangeEvent]:
        return [c for c in self.changes if (c.event_id, c.competitor_id, c.source_id) == key]

