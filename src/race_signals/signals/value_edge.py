"""Edge of an estimator's normalized probability over the market price."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Sequence

from race_signals.normalization import normalize
from race_signals.odds import implied_probability
from race_signals.schemas import CompetitorEntry


@dataclass(frozen=True)
class ValueEdge:
    event_id: str
    competitor_id: str
    price: float | None
    implied_probability: float
    normalized_probability: float
    edge: float | None

    @property
    def is_defined(self) -> bool:
        return self.edge is not None

    def is_value(self, threshold: float) -> bool:
        return self.edge is not None and self.edge > threshold


def compute_edge(
    price: float | None,
    normalized_probability: float,
    *,
    event_id: str = "",
    competitor_id: str = "",
) -> ValueEdge:
    """``edge = normalized / implied`` with ``implied = 1 / decimal price``.

    ``normalized_probability`` is on the 0-1 scale. The edge is None whenever
    the price is missing or non-positive, since there is no implied
    probability to compare against.
    """
    implied = implied_probability(price)
    edge = normalized_probability / implied if implied > 0 else None
    return ValueEdge(
        event_id=event_id,
        competitor_id=competitor_id,
        price=price,
        implied_probability=implied,
        normalized_probability=normalized_probability,
        edge=edge,
    )


def event_edges(entries: Sequence[CompetitorEntry], estimator: str) -> list[ValueEdge]:
    """Edges for every competitor of one event against ``estimator``."""
    norm = normalize(entries, estimator)
    return [
        compute_edge(
            e.current_price,
            norm.get(e.competitor_id, 0.0),
            event_id=e.event_id,
            competitor_id=e.competitor_id,
        )
        for e in entries
    ]


def rank_edges(edges: Iterable[ValueEdge], threshold: float | None = None) -> list[ValueEdge]:
    """Defined edges, best first; equal edges go to the shorter price.

    With ``threshold`` set, only edges strictly above it are kept.
    """
    kept = [
        e for e in edges
        if e.edge is not None and (threshold is None or e.edge > threshold)
    ]
    kept.sort(
        key=lambda e: (
            -e.edge,
            e.price if e.price is not None and math.isfinite(e.price) else math.inf,
            e.event_id,
            e.competitor_id,
        )
    )
    return kept
