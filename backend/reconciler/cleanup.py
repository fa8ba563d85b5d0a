"""
Administrative cleanup pass.

Folds duplicate records into one per fixture, deletes the rest, then fills
missing logo URLs from stored image ids. This is the only code path that
deletes records by policy; the reconciliation loops never do.

Usage: python -m reconciler.cleanup [--dry-run]
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import dataclass

from shared.config import get_settings
from shared.errors import ConfigurationError
from shared.identity import fuzzy_key
from shared.store.base import MatchStore
from shared.utils.logging import get_logger, setup_logging

from ingest.mapping.mapper import EventMapper
from reconciler.dedupe import cluster_duplicates, pick_better
from reconciler.merge import merge_records
from reconciler.service import reconciler_runtime

logger = get_logger(__name__)


@dataclass
class CleanupReport:
    scanned: int = 0
    duplicate_groups: int = 0
    removed: int = 0
    logos_backfilled: int = 0


async def cleanup_store(
    store: MatchStore,
    mapper: EventMapper,
    window_s: int,
    bucket_s: int,
    dry_run: bool = False,
) -> CleanupReport:
    report = CleanupReport()
    records = await store.list_all()
    report.scanned = len(records)

    survivors = []
    for cluster in cluster_duplicates(records, window_s):
        if len(cluster) == 1:
            survivors.append(cluster[0])
            continue
        report.duplicate_groups += 1
        winner = cluster[0]
        for other in cluster[1:]:
            winner = pick_better(winner, other)
        survivor = winner
        for other in cluster:
            if other.id == winner.id:
                continue
            survivor = merge_records(survivor, other)
            report.removed += 1
            if not dry_run:
                await store.delete(other.id)
        logger.info(
            "cleanup_group_folded",
            fuzzy_key=fuzzy_key(winner, bucket_s),
            kept=str(winner.id),
            removed=len(cluster) - 1,
        )
        if survivor is not winner and not dry_run:
            await store.upsert(survivor)
        survivors.append(survivor)

    for record in survivors:
        if record.has_logos:
            continue
        home, away = record.home_team, record.away_team
        updates = {}
        if home.image_id and not home.logo_url:
            updates["home_team"] = home.model_copy(update={"logo_url": mapper.logo_url(home.image_id)})
        if away.image_id and not away.logo_url:
            updates["away_team"] = away.model_copy(update={"logo_url": mapper.logo_url(away.image_id)})
        if not updates:
            continue
        report.logos_backfilled += 1
        if not dry_run:
            patched = record.model_copy(update=updates)
            await store.update_fields(
                record.id,
                logos_resolved=patched.has_logos,
                **updates,
            )
    return report


async def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Fold duplicate matches and backfill logos.")
    parser.add_argument("--dry-run", action="store_true", help="report without writing")
    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging("cleanup")
    try:
        async with reconciler_runtime(settings, require_feed=False) as rt:
            report = await cleanup_store(
                rt.store,
                EventMapper(settings),
                settings.fuzzy_window_s,
                settings.fuzzy_bucket_s,
                dry_run=args.dry_run,
            )
    except ConfigurationError as exc:
        logger.error("cleanup_configuration_error", error=str(exc))
        return 1

    logger.info("cleanup_completed", dry_run=args.dry_run, **vars(report))
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
