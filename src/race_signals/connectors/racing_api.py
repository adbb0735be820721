"""Racecards connector for The Racing API (racecards with bookmaker odds)."""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

import httpx
import structlog

from race_signals.connectors.base import FeedConnector
from race_signals.connectors.rate_limit import RACING_API_RATE_LIMITER, RateLimiter, retry_with_backoff
from race_signals.errors import ConfigurationError, FeedError, FeedPayloadError
from race_signals.market_hours import resolve_start_time
from race_signals.schemas import FeedCompetitor, FeedEvent, FeedQuote

log = structlog.get_logger(__name__)

RACECARDS_PATH = "/racecards/pro"


def _str_or_none(v: Any) -> str | None:
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def _int_or_none(v: Any) -> int | None:
    try:
        return int(str(v).strip())
    except (TypeError, ValueError):
        return None


def _parse_ts(v: Any) -> datetime | None:
    s = _str_or_none(v)
    if s is None:
        return None
    try:
        ts = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


def _parse_quotes(rows: Any) -> list[FeedQuote]:
    if not isinstance(rows, list):
        return []
    out: list[FeedQuote] = []
    for o in rows:
        if not isinstance(o, dict):
            continue
        source = _str_or_none(o.get("bookmaker"))
        if source is None:
            continue
        out.append(
            FeedQuote(
                source=source,
                fractional=_str_or_none(o.get("fractional")),
                decimal=_str_or_none(o.get("decimal")),
                updated_at=_parse_ts(o.get("updated")),
            )
        )
    return out


def _parse_runner(r: dict) -> FeedCompetitor | None:
    competitor_id = _str_or_none(r.get("horse_id"))
    if competitor_id is None:
        return None
    return FeedCompetitor(
        competitor_id=competitor_id,
        name=_str_or_none(r.get("horse")),
        handler_id=_str_or_none(r.get("trainer_id")),
        handler_name=_str_or_none(r.get("trainer")),
        rider_name=_str_or_none(r.get("jockey")),
        number=_int_or_none(r.get("number")),
        silk_url=_str_or_none(r.get("silk_url")),
        quotes=_parse_quotes(r.get("odds")),
    )


def parse_racecards(payload: Any, tz_name: str = "Europe/London") -> list[FeedEvent]:
    """Turn a racecards payload into events.

    Races lacking an id, venue or date and runners lacking an id are dropped
    with a warning; a payload without a ``racecards`` list is rejected.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("racecards"), list):
        raise FeedPayloadError("payload has no racecards list")

    events: list[FeedEvent] = []
    for race in payload["racecards"]:
        if not isinstance(race, dict):
            continue
        event_id = _str_or_none(race.get("race_id"))
        venue_name = _str_or_none(race.get("course"))
        venue_id = _str_or_none(race.get("course_id")) or venue_name
        try:
            race_date = date.fromisoformat(str(race.get("date", "")).strip()[:10])
        except ValueError:
            race_date = None
        if event_id is None or venue_id is None or race_date is None:
            log.warning("racecard_skipped", race_id=event_id, course=venue_name, date=race.get("date"))
            continue

        runners = race.get("runners") if isinstance(race.get("runners"), list) else []
        competitors = [c for c in (_parse_runner(r) for r in runners if isinstance(r, dict)) if c is not None]
        events.append(
            FeedEvent(
                event_id=event_id,
                venue_id=venue_id,
                venue_name=venue_name,
                race_date=race_date,
                start_at=resolve_start_time(
                    race_date, _str_or_none(race.get("off_dt")), _str_or_none(race.get("off_time")), tz_name
                ),
                competitors=competitors,
                raw=race,
            )
        )
    return events


class RacingApiConnector(FeedConnector):
    """Fetches the day's racecards with odds over HTTP basic auth."""

    def __init__(
        self,
        base_url: str,
        username: str | None,
        password: str | None,
        *,
        timeout_seconds: float = 12.0,
        max_retries: int = 2,
        retry_delay: float = 1.0,
        tz_name: str = "Europe/London",
        client: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
    ):
        if not username or not password:
            raise ConfigurationError("feed_username and feed_password are required for the live feed")
        self.url = base_url.rstrip("/") + RACECARDS_PATH
        self.auth = httpx.BasicAuth(username, password)
        self.tz_name = tz_name
        self.rate_limiter = rate_limiter or RACING_API_RATE_LIMITER
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))
        self._get_racecards = retry_with_backoff(max_retries=max_retries, initial_delay=retry_delay)(
            self._get_racecards_once
        )

    async def _get_racecards_once(self) -> Any:
        await self.rate_limiter.acquire()
        response = await self.client.get(self.url, auth=self.auth)
        response.raise_for_status()
        return response.json()

    async def fetch_events(self) -> list[FeedEvent]:
        try:
            payload = await self._get_racecards()
        except httpx.HTTPStatusError as e:
            raise FeedError(f"racecards request failed with status {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise FeedError(f"racecards request failed: {e!r}") from e
        except ValueError as e:
            raise FeedPayloadError(f"racecards response is not JSON: {e}") from e

        events = parse_racecards(payload, self.tz_name)
        log.info(
            "racecards_fetched",
            events=len(events),
            competitors=sum(len(e.competitors) for e in events),
        )
        return events

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
