from __future__ import annotations

import argparse
import asyncio

import structlog

from race_signals.config import settings
from race_signals.db import get_session
from race_signals.logging import configure_logging
from race_signals.monitor import build_connector, run_cycle
from race_signals.repo.price_state import PostgresPriceStateStore
from race_signals.repo.upserts import PostgresCatalog
from race_signals.schemas import IngestSummary
from race_signals.source_config import load_sources

log = structlog.get_logger(__name__)


async def run(force: bool = False) -> IngestSummary:
    configure_logging()
    connector = build_connector(settings)
    try:
        summary = await run_cycle(
            connector,
            PostgresPriceStateStore(get_session, noise_floor=settings.price_noise_floor),
            PostgresCatalog(get_session),
            load_sources(settings.sources_config_path),
            config=settings,
            force=force,
        )
    finally:
        await connector.aclose()
    log.info("monitor_prices_done", status=summary.status, mock_mode=settings.mock_mode)
    return summary


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run one price monitor cycle")
    parser.add_argument("--force", action="store_true", help="ignore the active-hours window")
    args = parser.parse_args()
    asyncio.run(run(force=args.force))
