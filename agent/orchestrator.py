from __future__ import annotations

import argparse
import asyncio
import json
from datetime import datetime, timezone
from typing import Awaitable, Callable

import structlog

from race_signals.config import settings
from race_signals.db import get_session
from race_signals.logging import configure_logging
from race_signals.sql import execute, fetch_all

log = structlog.get_logger(__name__)

COMPONENT = "monitor_prices"


async def load_state() -> list[dict]:
    async with get_session() as session:
        return await fetch_all(
            session,
            "SELECT component, last_run_at, last_failure_at, is_dirty, metadata FROM orchestrator_state",
        )


async def mark_component_complete(component: str, metadata: dict | None = None) -> None:
    """Record a successful run of ``component``."""
    async with get_session() as session:
        await execute(
            session,
            """
            INSERT INTO orchestrator_state(component, last_run_at, is_dirty, metadata)
            VALUES (:component, :last_run_at, false, CAST(:metadata AS jsonb))
            ON CONFLICT (component) DO UPDATE SET
              last_run_at=EXCLUDED.last_run_at,
              is_dirty=false,
              metadata=EXCLUDED.metadata
            """,
            {
                "component": component,
                "last_run_at": datetime.now(timezone.utc),
                "metadata": json.dumps(metadata or {}, default=str),
            },
        )
        await session.commit()


async def mark_component_failed(component: str) -> None:
    """Record a failed run; the component stays dirty until the next success."""
    async with get_session() as session:
        await execute(
            session,
            """
            INSERT INTO orchestrator_state(component, last_failure_at, is_dirty)
            VALUES (:component, :last_failure_at, true)
            ON CONFLICT (component) DO UPDATE SET
              last_failure_at=EXCLUDED.last_failure_at,
              is_dirty=true
            """,
            {"component": component, "last_failure_at": datetime.now(timezone.utc)},
        )
        await session.commit()


async def run_once(force: bool = False) -> str:
    """Run one monitor cycle and record its outcome; returns the summary status."""
    from pipelines.monitor_prices import run as monitor_prices

    try:
        summary = await monitor_prices(force=force)
    except Exception as e:
        log.error("component_failed", component=COMPONENT, error=str(e), error_type=type(e).__name__)
        await mark_component_failed(COMPONENT)
        raise
    await mark_component_complete(COMPONENT, summary.model_dump(exclude={"started_at"}))
    return summary.status


async def run_scheduled(
    interval_sec: int,
    force: bool = False,
    cycle: Callable[[bool], Awaitable[str]] = run_once,
    max_cycles: int | None = None,
) -> None:
    """Run cycles on a fixed cadence; a failed cycle never stops the loop."""
    n = 0
    while max_cycles is None or n < max_cycles:
        started = asyncio.get_running_loop().time()
        try:
            await cycle(force)
        except Exception as e:
            log.warning("cycle_failed_continuing", error=str(e))
        n += 1
        if max_cycles is not None and n >= max_cycles:
            break
        elapsed = asyncio.get_running_loop().time() - started
        await asyncio.sleep(max(0.0, interval_sec - elapsed))


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--mode", choices=["once", "scheduled"], default="once")
    ap.add_argument("--interval-sec", type=int, default=settings.monitor_interval_sec)
    ap.add_argument("--force", action="store_true", help="ignore the active-hours window")
    args = ap.parse_args()

    configure_logging()
    if args.mode == "once":
        asyncio.run(run_once(args.force))
    else:
        asyncio.run(run_scheduled(args.interval_sec, args.force))


if __name__ == "__main__":
    main()
