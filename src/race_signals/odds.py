"""Price parsing and conversion.

All prices inside the system are decimal odds (stake included, so evens is
2.0). Fractional labels such as ``"5/2"`` are accepted on input and produced
for display, never stored as the price of record.
"""
from __future__ import annotations

import math
import re

from race_signals.errors import InvalidPriceError

_DECIMAL_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(?:\(\s*\d+\s*/\s*\d+\s*\))?\s*$")
_FRACTION_RE = re.compile(r"^\s*(\d+)\s*/\s*(\d+)\s*$")
_EVENS = {"EVS", "EVN", "EVENS"}

# (profit per unit staked, conventional UK label)
COMMON_FRACTIONS: list[tuple[float, str]] = [
    (0.1, "1/10"), (0.11, "1/9"), (0.13, "1/8"), (0.14, "1/7"),
    (0.17, "1/6"), (0.2, "1/5"), (0.22, "2/9"), (0.25, "1/4"),
    (0.29, "2/7"), (0.3, "3/10"), (0.33, "1/3"), (0.36, "4/11"),
    (0.4, "2/5"), (0.44, "4/9"), (0.45, "9/20"), (0.5, "1/2"),
    (0.53, "8/15"), (0.57, "4/7"), (0.6, "3/5"), (0.62, "8/13"),
    (0.67, "2/3"), (0.73, "8/11"), (0.75, "3/4"), (0.8, "4/5"),
    (0.83, "5/6"), (0.91, "10/11"), (1.0, "EVS"), (1.1, "11/10"),
    (1.2, "6/5"), (1.25, "5/4"), (1.3, "13/10"), (1.33, "4/3"),
    (1.4, "7/5"), (1.5, "6/4"), (1.67, "5/3"), (1.8, "9/5"),
    (2.0, "2/1"), (2.25, "9/4"), (2.5, "5/2"), (2.75, "11/4"),
    (3.0, "3/1"), (3.5, "7/2"), (4.0, "4/1"), (4.5, "9/2"),
    (5.0, "5/1"), (5.5, "11/2"), (6.0, "6/1"), (7.0, "7/1"),
    (8.0, "8/1"), (9.0, "9/1"), (10.0, "10/1"), (11.0, "11/1"),
    (12.0, "12/1"), (14.0, "14/1"), (16.0, "16/1"), (18.0, "18/1"),
    (20.0, "20/1"), (22.0, "22/1"), (25.0, "25/1"), (28.0, "28/1"),
    (33.0, "33/1"), (40.0, "40/1"), (50.0, "50/1"), (66.0, "66/1"),
    (80.0, "80/1"), (100.0, "100/1"),
]


def fractional_to_decimal(label: str | None) -> float | None:
    """``"5/2"`` -> 3.5, ``"EVS"`` -> 2.0; anything else -> None."""
    if label is None:
        return None
    s = str(label).strip().upper()
    if not s:
        return None
    if s in _EVENS:
        return 2.0
    m = _FRACTION_RE.match(s)
    if not m:
        return None
    num, den = int(m.group(1)), int(m.group(2))
    if den == 0:
        return None
    return num / den + 1.0


def _parse_decimal(value: str | float | int | None) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    s = str(value).strip()
    if not s or _FRACTION_RE.match(s):
        return None
    # tolerates "11 (10/1)" as written by some feeds
    m = _DECIMAL_RE.match(s)
    return float(m.group(1)) if m else None


def parse_price(decimal: str | float | int | None = None, fractional: str | None = None) -> float:
    """Resolve a quote to decimal odds, preferring the decimal field.

    Raises
    ------
    InvalidPriceError
        If neither field yields a finite price strictly greater than zero.
    """
    price = _parse_decimal(decimal)
    if price is None:
        price = fractional_to_decimal(fractional)
    if price is None and isinstance(decimal, str):
        price = fractional_to_decimal(decimal)
    if price is None:
        raise InvalidPriceError(f"unparsable price: decimal={decimal!r} fractional={fractional!r}")
    if not math.isfinite(price) or price <= 0:
        raise InvalidPriceError(f"price must be positive: {price}")
    return price


def implied_probability(price: float | None) -> float:
    """Market-implied win probability of a decimal price: ``1 / price``.

    Returns 0.0 for missing, non-finite or non-positive prices; callers treat
    0.0 as "no implied probability".
    """
    if price is None or not math.isfinite(price) or price <= 0:
        return 0.0
    return 1.0 / price


def decimal_to_fractional(price: str | float | None) -> str:
    """Render decimal odds as the nearest conventional fractional label."""
    if price is None:
        return "TBC"
    s = str(price).strip()
    if not s:
        return "TBC"
    if s.upper() in _EVENS:
        return "EVS"
    if _FRACTION_RE.match(s):
        return s.replace(" ", "")
    try:
        d = float(s)
    except ValueError:
        return "TBC"
    if not math.isfinite(d) or d <= 0:
        return "TBC"
    if d <= 1:
        return "EVS"

    profit = d - 1
    best_profit, best_label = min(COMMON_FRACTIONS, key=lambda c: abs(profit - c[0]))
    diff = abs(profit - best_profit)
    if diff / max(profit, 0.01) < 0.12 or diff < 0.08:
        return best_label

    rounded = round(profit)
    return "EVS" if rounded <= 0 else f"{rounded}/1"
