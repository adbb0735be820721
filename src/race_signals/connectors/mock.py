from __future__ import annotations

import json
from pathlib import Path

from race_signals.connectors.base import FeedConnector
from race_signals.connectors.racing_api import parse_racecards
from race_signals.errors import ConfigurationError, FeedPayloadError
from race_signals.schemas import FeedEvent


class MockConnector(FeedConnector):
    """Reads a racecards payload from a local JSON file."""

    def __init__(self, path: str, tz_name: str = "Europe/London"):
        self.path = path
        self.tz_name = tz_name

    async def fetch_events(self) -> list[FeedEvent]:
        p = Path(self.path)
        if not p.exists():
            raise ConfigurationError(f"mock feed file not found: {self.path}")
        try:
            payload = json.loads(p.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise FeedPayloadError(f"mock feed is not valid JSON: {e}") from e
        return parse_racecards(payload, self.tz_name)
