from __future__ import annotations

from abc import ABC, abstractmethod

from race_signals.schemas import FeedEvent


class FeedConnector(ABC):
    @abstractmethod
    async def fetch_events(self) -> list[FeedEvent]:
        """Today's scheduled events with every competitor's current quotes."""
        raise NotImplementedError

    async def aclose(self) -> None:
        return None
