"""Estimator outputs loaded from tabular files."""
from __future__ import annotations

from typing import IO, Sequence

import pandas as pd
import structlog

from race_signals.errors import ConfigurationError

log = structlog.get_logger(__name__)

ID_COLUMNS = ("event_id", "competitor_id")


def read_estimates(
    source: str | IO[str],
    estimators: Sequence[str],
) -> list[tuple[str, str, dict[str, float]]]:
    """Rows of ``(event_id, competitor_id, {estimator: raw value})``.

    Columns other than the ids and the configured estimators are ignored.
    Blank, non-numeric and negative values are dropped per cell, so a row only
    carries the estimators it actually has.
    """
    df = pd.read_csv(source, dtype={"event_id": str, "competitor_id": str}, float_precision="round_trip")
    missing = [c for c in ID_COLUMNS if c not in df.columns]
    if missing:
        raise ConfigurationError(f"estimates file is missing columns: {', '.join(missing)}")

    present = [name for name in estimators if name in df.columns]
    if not present:
        log.warning("estimates_no_estimator_columns", expected=list(estimators))
        return []

    df = df.dropna(subset=list(ID_COLUMNS))
    for name in present:
        df[name] = pd.to_numeric(df[name], errors="coerce")

    rows: list[tuple[str, str, dict[str, float]]] = []
    dropped = 0
    for rec in df[list(ID_COLUMNS) + present].to_dict(orient="records"):
        probs = {}
        for name in present:
            v = rec[name]
            if pd.isna(v) or v < 0:
                dropped += int(not pd.isna(v))
                continue
            probs[name] = float(v)
        if probs:
            rows.append((str(rec["event_id"]).strip(), str(rec["competitor_id"]).strip(), probs))
    if dropped:
        log.warning("estimates_negative_values_dropped", n=dropped)
    return rows
