import math

from race_signals.normalization import normalize, normalize_all, top_pick, top_picks_by_competitor
from race_signals.schemas import CompetitorEntry


def _field(values: dict[str, dict[str, float]], prices: dict[str, float] | None = None) -> list[CompetitorEntry]:
    prices = prices or {}
    return [
        CompetitorEntry(event_id="e1", competitor_id=cid, name=cid, probabilities=p, current_price=prices.get(cid))
        for cid, p in values.items()
    ]


def test_ensemble_example_normalizes_to_unit_sum():
    entries = _field({"a": {"ensemble": 0.30}, "b": {"ensemble": 0.15}, "c": {"ensemble": 0.05}})
    norm = normalize(entries, "ensemble")
    assert math.isclose(norm["a"], 0.60, abs_tol=1e-9)
    assert math.isclose(norm["b"], 0.30, abs_tol=1e-9)
    assert math.isclose(norm["c"], 0.10, abs_tol=1e-9)
    assert abs(sum(norm.values()) - 1.0) < 1e-6


def test_reporting_scale():
    entries = _field({"a": {"ensemble": 3}, "b": {"ensemble": 1}})
    norm = normalize(entries, "ensemble", scale=100.0)
    assert math.isclose(norm["a"], 75.0)
    assert math.isclose(norm["b"], 25.0)


def test_all_zero_or_missing_never_divides():
    entries = _field({"a": {"ensemble": 0.0}, "b": {}, "c": {"mlp": 0.4}})
    assert normalize(entries, "ensemble") == {"a": 0.0, "b": 0.0, "c": 0.0}


def test_zero_raw_excluded_from_normalization_set():
    entries = _field({"a": {"rf": 0.2}, "b": {"rf": 0.0}, "c": {"rf": 0.6}})
    norm = normalize(entries, "rf")
    assert norm["b"] == 0.0
    assert abs(norm["a"] + norm["c"] - 1.0) < 1e-6


def test_negative_and_nan_count_as_zero():
    entries = _field({"a": {"rf": -1.0}, "b": {"rf": float("nan")}, "c": {"rf": 0.5}})
    assert normalize(entries, "rf") == {"a": 0.0, "b": 0.0, "c": 1.0}


def test_estimators_normalized_independently():
    entries = _field({"a": {"mlp": 0.2, "rf": 0.9}, "b": {"mlp": 0.2, "rf": 0.1}})
    both = normalize_all(entries, ["mlp", "rf"])
    assert both["mlp"] == {"a": 0.5, "b": 0.5}
    assert math.isclose(both["rf"]["a"], 0.9)
    # re-deriving gives the same answer
    assert normalize(entries, "rf") == both["rf"]


def test_top_pick_highest_normalized():
    entries = _field({"a": {"mlp": 0.1}, "b": {"mlp": 0.7}, "c": {"mlp": 0.2}})
    pick = top_pick(entries, "mlp")
    assert pick.competitor_id == "b"
    assert math.isclose(pick.probability, 0.7)


def test_top_pick_tie_breaks_on_ensemble_then_price():
    entries = _field(
        {
            "a": {"mlp": 0.3, "ensemble": 0.2},
            "b": {"mlp": 0.3, "ensemble": 0.4},
            "c": {"mlp": 0.1, "ensemble": 0.9},
        }
    )
    assert top_pick(entries, "mlp").competitor_id == "b"

    entries = _field(
        {"a": {"mlp": 0.3, "ensemble": 0.2}, "b": {"mlp": 0.3, "ensemble": 0.2}},
        prices={"a": 6.0, "b": 3.0},
    )
    assert top_pick(entries, "mlp").competitor_id == "b"


def test_top_pick_none_without_mass_or_below_min_prob():
    assert top_pick(_field({"a": {}, "b": {"mlp": 0.0}}), "mlp") is None
    entries = _field({"a": {"mlp": 0.6}, "b": {"mlp": 0.4}})
    assert top_pick(entries, "mlp", min_prob=0.7) is None
    assert top_pick(entries, "mlp", min_prob=0.6).competitor_id == "a"


def test_top_picks_by_competitor_collects_agreeing_estimators():
    entries = _field(
        {
            "a": {"mlp": 0.5, "rf": 0.6, "ensemble": 0.2},
            "b": {"mlp": 0.2, "rf": 0.1, "ensemble": 0.7},
        }
    )
    assert top_picks_by_competitor(entries, ["mlp", "rf", "ensemble"]) == {"a": ["mlp", "rf"], "b": ["ensemble"]}
