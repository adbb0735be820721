"""Market-local clock helpers: active-hours gate, race day, off times."""
from __future__ import annotations

from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

import structlog

log = structlog.get_logger(__name__)


def parse_clock(value: str) -> time:
    """``"08:00"`` -> ``time(8, 0)``."""
    hh, mm = value.strip().split(":")[:2]
    return time(int(hh), int(mm))


def to_market_time(now: datetime, tz_name: str) -> datetime:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(ZoneInfo(tz_name))


def market_today(now: datetime, tz_name: str) -> date:
    return to_market_time(now, tz_name).date()


def is_within_active_window(now: datetime, start: str, end: str, tz_name: str) -> bool:
    """True when the market-local wall clock is in ``[start, end)``."""
    local = to_market_time(now, tz_name).time().replace(second=0, microsecond=0)
    return parse_clock(start) <= local < parse_clock(end)


def resolve_start_time(
    race_date: date,
    off_dt: str | None,
    off_time: str | None,
    tz_name: str,
) -> datetime | None:
    """Resolve an event's start as an aware datetime.

    An ISO ``off_dt`` wins. A bare ``off_time`` is read on ``race_date`` in the
    market timezone; the feed writes afternoon races on a 12-hour clock, so
    hours 1-9 are shifted to 13-21.
    """
    if off_dt:
        try:
            parsed = datetime.fromisoformat(off_dt.replace("Z", "+00:00"))
        except ValueError as e:
            log.warning("start_time_parse_failed", off_dt=off_dt, error=str(e))
        else:
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=ZoneInfo(tz_name))
            return parsed

    if not off_time:
        return None
    try:
        hh, mm = (int(p) for p in off_time.strip()[:5].split(":"))
    except ValueError:
        log.warning("start_time_parse_failed", off_time=off_time)
        return None
    if 1 <= hh <= 9:
        hh += 12
    if not (0 <= hh <= 23 and 0 <= mm <= 59):
        return None
    return datetime.combine(race_date, time(hh, mm), tzinfo=ZoneInfo(tz_name))
