from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

# feed timestamps are stamped by the bookmaker, allow for clock drift
MAX_CLOCK_SKEW = timedelta(minutes=5)


def validate_price(p: float | None) -> tuple[bool, str | None]:
    if p is None:
        return False, "price missing"
    if not math.isfinite(p) or p <= 0:
        return False, f"price must be positive: {p}"
    return True, None


def validate_observed_at(ts: datetime | None, now: datetime | None = None) -> tuple[bool, str | None]:
    if ts is None:
        return False, "observed_at missing"
    if ts.tzinfo is None:
        return False, "observed_at must be timezone-aware"
    now = now or datetime.now(timezone.utc)
    if ts > now + MAX_CLOCK_SKEW:
        return False, "observed_at is in the future"
    return True, None


def validate_keys(event_id: str | None, competitor_id: str | None, source_id: str | None) -> tuple[bool, str | None]:
    missing = [
        name
        for name, v in (("event_id", event_id), ("competitor_id", competitor_id), ("source_id", source_id))
        if not v
    ]
    if missing:
        return False, f"missing identifiers: {', '.join(missing)}"
    return True, None
