"""
Deep resync: one live pass plus one full pass with a widened ended-day
window, for backfilling after downtime.

Usage: python -m reconciler.resync [--days N]
"""
from __future__ import annotations

import argparse
import asyncio
import sys

from shared.config import get_settings
from shared.errors import ConfigurationError
from shared.utils.logging import get_logger, setup_logging

from reconciler.engine import ReconciliationEngine
from reconciler.service import reconciler_runtime

logger = get_logger(__name__)


async def main(argv: list[str] | None = None) -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Re-ingest ended fixtures for a trailing window.")
    parser.add_argument("--days", type=int, default=settings.resync_days_back, help="days of ended events to fetch")
    args = parser.parse_args(argv)

    setup_logging("resync")
    try:
        async with reconciler_runtime(settings) as rt:
            engine = ReconciliationEngine(rt.feed, rt.store, redis=rt.redis, settings=settings)
            live = await engine.live_pass()
            full = await engine.full_pass(days_back=args.days)
    except ConfigurationError as exc:
        logger.error("resync_configuration_error", error=str(exc))
        return 1

    logger.info(
        "resync_completed",
        days=args.days,
        live_events=live.events,
        full_events=full.events,
        created=live.created + full.created,
        updated=live.updated + full.updated,
        failed_units=live.failed_units + full.failed_units,
    )
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
