from __future__ import annotations

from datetime import date
from typing import Sequence

from race_signals.repo.price_state import SessionFactory, state_from_row
from race_signals.schemas import CompetitorEntry, EventMeta, PriceState
from race_signals.signals.fusion import SignalReader
from race_signals.sql import fetch_all


class PostgresSignalReader(SignalReader):
    """Bulk reads for the fusion engine; one short session per read."""

    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    async def fetch_movers(self, min_movement_pct: float, source_id: str | None = None) -> list[PriceState]:
        sql = """
        SELECT * FROM price_state
        WHERE is_active
          AND movement = 'shortening'
          AND movement_pct <= :max_pct
        """
        params: dict = {"max_pct": -abs(min_movement_pct)}
        if source_id is not None:
            sql += " AND source_id = :source_id"
            params["source_id"] = source_id
        sql += " ORDER BY movement_pct ASC"
        async with self.session_factory() as session:
            rows = await fetch_all(session, sql, params)
        return [state_from_row(r) for r in rows]

    async def fetch_events(self, race_date: date) -> list[EventMeta]:
        async with self.session_factory() as session:
            rows = await fetch_all(
                session,
                """
                SELECT event_id, venue_id, venue_name, race_date, start_at
                FROM events
                WHERE race_date = :race_date
                ORDER BY start_at NULLS LAST, event_id
                """,
                {"race_date": race_date},
            )
        return [EventMeta(**r) for r in rows]

    async def fetch_entries(self, event_ids: Sequence[str]) -> list[CompetitorEntry]:
        ids = sorted(set(event_ids))
        if not ids:
            return []
        async with self.session_factory() as session:
            rows = await fetch_all(
                session,
                """
                SELECT event_id, competitor_id, name, handler_id, handler_name,
                       rider_name, number, silk_url, current_price,
                       COALESCE(probabilities, '{}'::jsonb) AS probabilities
                FROM entries
                WHERE event_id IN :event_ids
                """,
                {"event_ids": ids},
                expanding=["event_ids"],
            )
        return [CompetitorEntry(**r) for r in rows]
