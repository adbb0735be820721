from __future__ import annotations

import math
from contextlib import AbstractAsyncContextManager
from typing import Any, Callable, Iterable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from race_signals.errors import InvalidPriceError
from race_signals.schemas import PriceChangeEvent, PriceQuote, PriceState
from race_signals.sql import fetch_all, fetch_one
from race_signals.tracking.price_state import Key, ObservationResult, PriceStateStore

log = structlog.get_logger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

# One statement: the conditional ON CONFLICT compares against the stored row
# under its row lock, and the data-modifying CTE logs the change in the same
# transaction. No row comes back when the price is unchanged or within the
# noise floor.
UPSERT_PRICE_STATE_SQL = """
WITH upserted AS (
  INSERT INTO price_state AS ps (
    event_id, competitor_id, source_id,
    initial_price, previous_price, current_price,
    change_count, last_change_at, movement, movement_pct, is_active
  )
  VALUES (
    :event_id, :competitor_id, :source_id,
    :price, NULL, :price,
    0, NULL, 'stable', NULL, true
  )
  ON CONFLICT (event_id, competitor_id, source_id) DO UPDATE SET
    previous_price = ps.current_price,
    current_price = EXCLUDED.current_price,
    change_count = ps.change_count + 1,
    last_change_at = :observed_at,
    movement = CASE WHEN EXCLUDED.current_price < ps.current_price THEN 'shortening' ELSE 'lengthening' END,
    movement_pct = ROUND((100 * (EXCLUDED.current_price - ps.current_price) / ps.current_price)::numeric, 2)::double precision,
    updated_at = NOW()
  WHERE EXCLUDED.current_price <> ps.current_price
    AND ABS(EXCLUDED.current_price - ps.current_price) >= :noise_floor
  RETURNING ps.*, (ps.xmax = 0) AS inserted
),
logged AS (
  INSERT INTO price_change_events(
    event_id, competitor_id, source_id,
    from_price, to_price, change_abs, change_pct, direction, source_ts
  )
  SELECT
    event_id, competitor_id, source_id,
    previous_price, current_price,
    ROUND((current_price - previous_price)::numeric, 2)::double precision,
    movement_pct, movement, last_change_at
  FROM upserted
  WHERE NOT inserted
  RETURNING id
)
SELECT u.*, (SELECT id FROM logged) AS change_id
FROM upserted u
"""

SELECT_PRICE_STATE_SQL = """
SELECT * FROM price_state
WHERE event_id = :event_id AND competitor_id = :competitor_id AND source_id = :source_id
"""

_STATE_FIELDS = set(PriceState.model_fields)


def state_from_row(row: dict[str, Any]) -> PriceState:
    return PriceState(**{k: v for k, v in row.items() if k in _STATE_FIELDS})


class PostgresPriceStateStore(PriceStateStore):
    """Price state in PostgreSQL; every upsert is its own short transaction."""

    def __init__(self, session_factory: SessionFactory, noise_floor: float = 0.0):
        self.session_factory = session_factory
        self.noise_floor = noise_floor

    async def upsert(self, quote: PriceQuote) -> ObservationResult:
        if not math.isfinite(quote.price) or quote.price <= 0:
            raise InvalidPriceError(f"price must be positive: {quote.price}")
        params = {
            "event_id": quote.event_id,
            "competitor_id": quote.competitor_id,
            "source_id": quote.source_id,
            "price": float(quote.price),
            "observed_at": quote.observed_at,
            "noise_floor": float(self.noise_floor),
        }
        async with self.session_factory() as session:
            row = await fetch_one(session, UPSERT_PRICE_STATE_SQL, params)
            if row is None:
                stored = await fetch_one(session, SELECT_PRICE_STATE_SQL, params)
                await session.commit()
                if stored is None:
                    # the row was deleted between the two statements
                    raise RuntimeError(f"price_state row vanished for {quote.key}")
                return ObservationResult(state=state_from_row(stored))
            await session.commit()

        state = state_from_row(row)
        if row["inserted"]:
            return ObservationResult(state=state, created=True)
        change = PriceChangeEvent(
            id=row["change_id"],
            event_id=state.event_id,
            competitor_id=state.competitor_id,
            source_id=state.source_id,
            from_price=state.previous_price,
            to_price=state.current_price,
            change_abs=round(state.current_price - state.previous_price, 2),
            change_pct=state.movement_pct,
            direction=state.movement,
            source_ts=quote.observed_at,
        )
        return ObservationResult(state=state, change=change)

    async def mark_inactive(self, event_ids: Iterable[str]) -> int:
        ids = sorted(set(event_ids))
        if not ids:
            return 0
        async with self.session_factory() as session:
            rows = await fetch_all(
                session,
                """
                UPDATE price_state SET is_active = false, updated_at = NOW()
                WHERE event_id IN :event_ids AND is_active
                RETURNING event_id
                """,
                {"event_ids": ids},
                expanding=["event_ids"],
            )
            await session.commit()
        log.info("price_state_deactivated", events=len(ids), rows=len(rows))
        return len(rows)
