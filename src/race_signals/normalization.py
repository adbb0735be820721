"""Cross-field normalization of independent win-probability estimators.

Raw estimator outputs are per-competitor scores that need not sum to any
fixed total across an event. Normalizing divides each competitor's raw value
by the event-wide sum for that estimator, so values from different events
and fields of different sizes become comparable. Estimators are never mixed.
"""
from __future__ import annotations

import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

from race_signals.schemas import CompetitorEntry


def _raw(entry: CompetitorEntry, estimator: str) -> float:
    v = entry.probabilities.get(estimator)
    if v is None:
        return 0.0
    try:
        f = float(v)
    except (TypeError, ValueError):
        return 0.0
    # negative or non-finite scores carry no probability mass
    return f if math.isfinite(f) and f > 0 else 0.0


def normalize(entries: Sequence[CompetitorEntry], estimator: str, scale: float = 1.0) -> dict[str, float]:
    """Normalize one estimator across the competitors of a single event.

    Competitors with a zero or missing raw value get 0. When no competitor has
    a positive raw value every competitor gets 0, so callers never divide by
    zero. Non-zero results sum to ``scale``.
    """
    raws = {e.competitor_id: _raw(e, estimator) for e in entries}
    total = math.fsum(raws.values())
    if total <= 0:
        return {cid: 0.0 for cid in raws}
    return {cid: (r / total) * scale if r > 0 else 0.0 for cid, r in raws.items()}


def normalize_all(
    entries: Sequence[CompetitorEntry], estimators: Iterable[str], scale: float = 1.0
) -> dict[str, dict[str, float]]:
    return {name: normalize(entries, name, scale) for name in estimators}


def group_by_event(entries: Iterable[CompetitorEntry]) -> dict[str, list[CompetitorEntry]]:
    out: dict[str, list[CompetitorEntry]] = {}
    for e in entries:
        out.setdefault(e.event_id, []).append(e)
    return out


@dataclass(frozen=True)
class TopPick:
    estimator: str
    competitor_id: str
    probability: float


def _tie_rank(entry: CompetitorEntry, tie_estimator: str) -> tuple:
    price = entry.current_price if entry.current_price and entry.current_price > 0 else math.inf
    return (-_raw(entry, tie_estimator), price, entry.name or "", entry.competitor_id)


def top_pick(
    entries: Sequence[CompetitorEntry],
    estimator: str,
    normalized: Mapping[str, float] | None = None,
    *,
    min_prob: float = 0.0,
    tie_estimator: str = "ensemble",
) -> TopPick | None:
    """Highest normalized value for ``estimator`` in one event.

    Ties go to the higher ``tie_estimator`` raw value, then the shorter price,
    then name. Returns None when no competitor has a positive value at or
    above ``min_prob``.
    """
    if normalized is None:
        normalized = normalize(entries, estimator)
    best: CompetitorEntry | None = None
    best_p = 0.0
    for e in entries:
        p = normalized.get(e.competitor_id, 0.0)
        if p <= 0 or p < min_prob:
            continue
        if best is None or p > best_p or (p == best_p and _tie_rank(e, tie_estimator) < _tie_rank(best, tie_estimator)):
            best, best_p = e, p
    if best is None:
        return None
    return TopPick(estimator=estimator, competitor_id=best.competitor_id, probability=best_p)


def top_picks_by_competitor(
    entries: Sequence[CompetitorEntry],
    estimators: Sequence[str],
    *,
    min_prob: float = 0.0,
    tie_estimator: str = "ensemble",
) -> dict[str, list[str]]:
    """competitor_id -> estimators (in configured order) ranking it first."""
    agreeing: dict[str, list[str]] = {}
    for name, norm in normalize_all(entries, estimators).items():
        pick = top_pick(entries, name, norm, min_prob=min_prob, tie_estimator=tie_estimator)
        if pick is not None:
            agreeing.setdefault(pick.competitor_id, []).append(name)
    return agreeing
