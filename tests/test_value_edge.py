import math

from race_signals.schemas import CompetitorEntry
from race_signals.signals.value_edge import ValueEdge, compute_edge, event_edges, rank_edges


def _edge(cid: str, edge: float | None, price: float | None) -> ValueEdge:
    return ValueEdge(
        event_id="e1", competitor_id=cid, price=price,
        implied_probability=0.0, normalized_probability=0.0, edge=edge,
    )


def test_compute_edge_uses_decimal_implied_probability():
    e = compute_edge(4.0, 0.5)
    assert e.implied_probability == 0.25
    assert e.edge == 2.0
    assert e.is_value(1.1)
    assert not e.is_value(2.0)


def test_edge_undefined_for_missing_or_non_positive_price():
    for price in (None, 0.0, -3.0):
        e = compute_edge(price, 0.5)
        assert e.edge is None
        assert not e.is_defined
        assert not e.is_value(0.0)


def test_rank_edges_descending_ties_to_shorter_price():
    ranked = rank_edges(
        [
            _edge("long", 1.5, 5.0),
            _edge("none", None, None),
            _edge("best", 2.0, 10.0),
            _edge("short", 1.5, 3.0),
        ]
    )
    assert [e.competitor_id for e in ranked] == ["best", "short", "long"]


def test_rank_edges_threshold_is_strict():
    ranked = rank_edges([_edge("a", 1.1, 5.0), _edge("b", 1.6, 5.0), _edge("c", 2.0, 5.0)], threshold=1.1)
    assert [e.competitor_id for e in ranked] == ["c", "b"]


def test_event_edges_normalize_before_comparing():
    entries = [
        CompetitorEntry(event_id="e1", competitor_id="a", current_price=4.0, probabilities={"ensemble": 0.30}),
        CompetitorEntry(event_id="e1", competitor_id="b", current_price=2.0, probabilities={"ensemble": 0.15}),
        CompetitorEntry(event_id="e1", competitor_id="c", current_price=None, probabilities={"ensemble": 0.05}),
    ]
    edges = {e.competitor_id: e for e in event_edges(entries, "ensemble")}
    assert math.isclose(edges["a"].normalized_probability, 0.6)
    assert math.isclose(edges["a"].edge, 2.4)
    assert math.isclose(edges["b"].edge, 0.6)
    assert edges["c"].edge is None
