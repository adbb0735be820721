from __future__ import annotations

import argparse
import asyncio

import structlog

from race_signals.config import settings
from race_signals.db import get_session
from race_signals.estimates import read_estimates
from race_signals.logging import configure_logging
from race_signals.repo.upserts import PostgresCatalog

log = structlog.get_logger(__name__)


async def run(path: str = "data/mock/estimates.csv") -> int:
    configure_logging()
    rows = read_estimates(path, settings.estimators)
    n = await PostgresCatalog(get_session).update_probabilities(rows)
    if n < len(rows):
        log.warning("estimates_unmatched_entries", rows=len(rows), matched=n)
    log.info("load_estimates_done", path=path, rows=len(rows), matched=n)
    return n


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Load estimator outputs into entries")
    parser.add_argument("path", nargs="?", default="data/mock/estimates.csv")
    args = parser.parse_args()
    asyncio.run(run(args.path))
