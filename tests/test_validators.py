from datetime import datetime, timedelta, timezone

from race_signals.data_quality.validators import validate_keys, validate_observed_at, validate_price

NOW = datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)


def test_validate_price():
    assert validate_price(2.5) == (True, None)
    for bad in (None, 0.0, -1.0, float("nan"), float("inf")):
        ok, err = validate_price(bad)
        assert not ok and err


def test_validate_observed_at():
    assert validate_observed_at(NOW - timedelta(minutes=3), NOW)[0]
    assert validate_observed_at(NOW + timedelta(minutes=4), NOW)[0]
    assert not validate_observed_at(NOW + timedelta(minutes=6), NOW)[0]
    assert validate_observed_at(datetime(2026, 10, 19, 9, 0), NOW) == (False, "observed_at must be timezone-aware")
    assert not validate_observed_at(None, NOW)[0]


def test_validate_keys():
    assert validate_keys("e1", "c1", "Betfair") == (True, None)
    assert validate_keys("e1", "", None) == (False, "missing identifiers: competitor_id, source_id")
