"""
Read-side deduplication.

Defends consumers against duplicates that slipped past write-side merging.
Records are grouped by (league, home, away) and clustered by start time;
each cluster keeps one representative.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable

from shared.identity import identity_triple
from shared.models.domain import MatchRecord

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

DEFAULT_WINDOW_S = 240


def _rank(record: MatchRecord) -> tuple[int, int, int, datetime]:
    return (
        record.status.rank,
        len(record.timeline),
        1 if record.secondary_id else 0,
        record.updated_at or _EPOCH,
    )


def pick_better(a: MatchRecord, b: MatchRecord) -> MatchRecord:
    """
    Choose the representative of two duplicates.

    Status rank (LIVE > FINISHED > SCHEDULED), then the richer timeline, then
    presence of a secondary id, then the most recently updated. Ties keep ``a``.
    """
    return b if _rank(b) > _rank(a) else a


def cluster_duplicates(records: Iterable[MatchRecord], window_s: int = DEFAULT_WINDOW_S) -> list[list[MatchRecord]]:
    """
    Group records that describe the same fixture.

    Records lacking a league, a team name or a start time form their own
    single-member clusters.
    """
    by_triple: dict[tuple[str, str, str], list[MatchRecord]] = {}
    clusters: list[list[MatchRecord]] = []
    for record in records:
        triple = identity_triple(record)
        if triple is None or record.start_time is None:
            clusters.append([record])
            continue
        by_triple.setdefault(triple, []).append(record)

    for group in by_triple.values():
        group.sort(key=lambda r: r.start_time)
        current = [group[0]]
        for record in group[1:]:
            if (record.start_time - current[0].start_time).total_seconds() <= window_s:
                current.append(record)
            else:
                clusters.append(current)
                current = [record]
        clusters.append(current)
    return clusters


def dedupe(records: Iterable[MatchRecord], window_s: int = DEFAULT_WINDOW_S) -> list[MatchRecord]:
    """Keep one record per fixture, sorted by start time."""
    kept: list[MatchRecord] = []
    for cluster in cluster_duplicates(records, window_s):
        best = cluster[0]
        for other in cluster[1:]:
            best = pick_better(best, other)
        kept.append(best)
    kept.sort(key=lambda r: (r.start_time or _EPOCH, r.league.name, r.home_team.name))
    return kept
