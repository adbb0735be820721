from __future__ import annotations

import json
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from race_signals.repo.price_state import SessionFactory
from race_signals.schemas import CompetitorEntry, EventMeta
from race_signals.sql import execute, fetch_one
from race_signals.tracking.catalog import EventCatalog


async def upsert_event(session: AsyncSession, e: EventMeta) -> None:
    await execute(
        session,
        """
        INSERT INTO events(event_id, venue_id, venue_name, race_date, start_at, updated_at)
        VALUES (:event_id, :venue_id, :venue_name, :race_date, :start_at, NOW())
        ON CONFLICT (event_id) DO UPDATE SET
          venue_id=EXCLUDED.venue_id,
          venue_name=EXCLUDED.venue_name,
          race_date=EXCLUDED.race_date,
          start_at=COALESCE(EXCLUDED.start_at, events.start_at),
          updated_at=NOW()
        """,
        {
            "event_id": e.event_id,
            "venue_id": e.venue_id,
            "venue_name": e.venue_name,
            "race_date": e.race_date,
            "start_at": e.start_at,
        },
    )


async def upsert_entry(session: AsyncSession, e: CompetitorEntry) -> None:
    await execute(
        session,
        """
        INSERT INTO entries(event_id, competitor_id, name, handler_id, handler_name,
                            rider_name, number, silk_url, updated_at)
        VALUES (:event_id, :competitor_id, :name, :handler_id, :handler_name,
                :rider_name, :number, :silk_url, NOW())
        ON CONFLICT (event_id, competitor_id) DO UPDATE SET
          name=COALESCE(EXCLUDED.name, entries.name),
          handler_id=COALESCE(EXCLUDED.handler_id, entries.handler_id),
          handler_name=COALESCE(EXCLUDED.handler_name, entries.handler_name),
          rider_name=COALESCE(EXCLUDED.rider_name, entries.rider_name),
          number=COALESCE(EXCLUDED.number, entries.number),
          silk_url=COALESCE(EXCLUDED.silk_url, entries.silk_url),
          updated_at=NOW()
        """,
        {
            "event_id": e.event_id,
            "competitor_id": e.competitor_id,
            "name": e.name,
            "handler_id": e.handler_id,
            "handler_name": e.handler_name,
            "rider_name": e.rider_name,
            "number": e.number,
            "silk_url": e.silk_url,
        },
    )


async def sync_entry_price(session: AsyncSession, event_id: str, competitor_id: str, price: float) -> bool:
    row = await fetch_one(
        session,
        """
        UPDATE entries SET current_price=:price, updated_at=NOW()
        WHERE event_id=:event_id AND competitor_id=:competitor_id
        RETURNING competitor_id
        """,
        {"event_id": event_id, "competitor_id": competitor_id, "price": price},
    )
    return row is not None


async def merge_entry_probabilities(
    session: AsyncSession, event_id: str, competitor_id: str, probabilities: dict[str, float]
) -> bool:
    row = await fetch_one(
        session,
        """
        UPDATE entries SET
          probabilities=COALESCE(probabilities, '{}'::jsonb) || CAST(:probabilities AS jsonb),
          updated_at=NOW()
        WHERE event_id=:event_id AND competitor_id=:competitor_id
        RETURNING competitor_id
        """,
        {
            "event_id": event_id,
            "competitor_id": competitor_id,
            "probabilities": json.dumps(probabilities),
        },
    )
    return row is not None


async def log_quality_issue(
    session: AsyncSession, scope: str, message: str, context: dict[str, Any], level: str = "error"
) -> None:
    await execute(
        session,
        """
        INSERT INTO data_quality_log(scope, level, message, context)
        VALUES (:scope, :level, :message, CAST(:context AS jsonb))
        """,
        {"scope": scope, "level": level, "message": message, "context": json.dumps(context, default=str)},
    )


class PostgresCatalog(EventCatalog):
    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    async def upsert_events(self, events: list[EventMeta]) -> None:
        async with self.session_factory() as session:
            for e in events:
                await upsert_event(session, e)
            await session.commit()

    async def upsert_entries(self, entries: list[CompetitorEntry]) -> None:
        async with self.session_factory() as session:
            for e in entries:
                await upsert_entry(session, e)
            await session.commit()

    async def sync_entry_prices(self, prices: list[tuple[str, str, float]]) -> int:
        async with self.session_factory() as session:
            n = 0
            for event_id, competitor_id, price in prices:
                if await sync_entry_price(session, event_id, competitor_id, price):
                    n += 1
            await session.commit()
        return n

    async def update_probabilities(self, rows: list[tuple[str, str, dict[str, float]]]) -> int:
        async with self.session_factory() as session:
            n = 0
            for event_id, competitor_id, probs in rows:
                if await merge_entry_probabilities(session, event_id, competitor_id, probs):
                    n += 1
            await session.commit()
        return n

    async def record_quality_issue(self, scope: str, message: str, context: dict[str, Any]) -> None:
        async with self.session_factory() as session:
            await log_quality_issue(session, scope, message, context)
            await session.commit()
