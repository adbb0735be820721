"""Report how fresh the tracked prices are."""
from __future__ import annotations

from datetime import datetime, timezone

import pandas as pd
import sqlalchemy

from race_signals.config import settings


def age_status(minutes: float) -> str:
    return "FRESH" if minutes < 5 else "STALE" if minutes < 60 else "VERY STALE"


def main() -> None:
    engine = sqlalchemy.create_engine(settings.database_url_sync)
    now = datetime.now(timezone.utc)

    prices = pd.read_sql(
        """
        SELECT source_id, COUNT(*) AS n, MAX(updated_at) AS max_ts,
               SUM(CASE WHEN movement = 'shortening' THEN 1 ELSE 0 END) AS shortening
        FROM price_state
        WHERE is_active
        GROUP BY source_id
        ORDER BY source_id
        """,
        engine,
    )
    last_change = pd.read_sql("SELECT MAX(created_at) AS max_ts FROM price_change_events", engine).iloc[0]["max_ts"]

    print("=" * 60)
    print("Price Freshness Check")
    print("=" * 60)
    print(f"Current time: {now}")
    for _, r in prices.iterrows():
        m = (now - pd.to_datetime(r["max_ts"], utc=True)).total_seconds() / 60
        print(f"{r['source_id']:<16} rows={r['n']:<6} shortening={r['shortening']:<5} age={m:.1f} min - {age_status(m)}")
    if prices.empty:
        print("No active price state")
    if last_change is not None and not pd.isna(last_change):
        m = (now - pd.to_datetime(last_change, utc=True)).total_seconds() / 60
        print(f"\nLast price change: {m:.1f} min ago")
    print("=" * 60)


if __name__ == "__main__":
    main()
