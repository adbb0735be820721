"""Event and entry metadata written by the monitor and read by fusion."""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from race_signals.schemas import CompetitorEntry, EventMeta


class EventCatalog(ABC):
    @abstractmethod
    async def upsert_events(self, events: list[EventMeta]) -> None:
        raise NotImplementedError

    @abstractmethod
    async def upsert_entries(self, entries: list[CompetitorEntry]) -> None:
        """Write entry metadata; stored prices and probabilities are kept."""
        raise NotImplementedError

    @abstractmethod
    async def sync_entry_prices(self, prices: list[tuple[str, str, float]]) -> int:
        """Set current prices on existing entries; returns how many matched."""
        raise NotImplementedError

    @abstractmethod
    async def update_probabilities(self, rows: list[tuple[str, str, dict[str, float]]]) -> int:
        """Merge estimator values into existing entries; returns how many matched."""
        raise NotImplementedError

    @abstractmethod
    async def record_quality_issue(self, scope: str, message: str, context: dict[str, Any]) -> None:
        raise NotImplementedError


class InMemoryCatalog(EventCatalog):
    def __init__(self) -> None:
        self.events: dict[str, EventMeta] = {}
        self.entries: dict[tuple[str, str], CompetitorEntry] = {}
        self.quality_log: list[dict[str, Any]] = []

    async def upsert_events(self, events: list[EventMeta]) -> None:
        for e in events:
            self.events[e.event_id] = e

    async def upsert_entries(self, entries: list[CompetitorEntry]) -> None:
        for e in entries:
            key = (e.event_id, e.competitor_id)
            existing = self.entries.get(key)
            if existing is not None:
                e = e.model_copy(
                    update={
                        "current_price": existing.current_price,
                        "probabilities": existing.probabilities,
                    }
                )
            self.entries[key] = e

    async def sync_entry_prices(self, prices: list[tuple[str, str, float]]) -> int:
        n = 0
        for event_id, competitor_id, price in prices:
            entry = self.entries.get((event_id, competitor_id))
            if entry is None:
                continue
            self.entries[(event_id, competitor_id)] = entry.model_copy(update={"current_price": price})
            n += 1
        return n

    async def update_probabilities(self, rows: list[tuple[str, str, dict[str, float]]]) -> int:
        n = 0
        for event_id, competitor_id, probs in rows:
            entry = self.entries.get((event_id, competitor_id))
            if entry is None:
                continue
            merged = {**entry.probabilities, **probs}
            self.entries[(event_id, competitor_id)] = entry.model_copy(update={"probabilities": merged})
            n += 1
        return n

    async def record_quality_issue(self, scope: str, message: str, context: dict[str, Any]) -> None:
        self.quality_log.append({"scope": scope, "level": "error", "message": message, "context": context})
