"""
Tests for the administrative cleanup pass.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from shared.config import Settings
from shared.models.domain import MatchRecord, TeamInfo
from shared.models.enums import MatchStatus
from ingest.mapping.mapper import EventMapper
from reconciler.cleanup import cleanup_store

from conftest import InMemoryMatchStore

KICKOFF = datetime(2026, 10, 19, 18, 0, tzinfo=timezone.utc)


async def seed(store: InMemoryMatchStore) -> tuple[MatchRecord, MatchRecord, MatchRecord]:
    live = MatchRecord(
        primary_id="E1",
        league={"name": "Italy Serie A"},
        start_time=KICKOFF,
        status=MatchStatus.LIVE,
        home_team=TeamInfo(name="Inter", score=1),
        away_team=TeamInfo(name="Milan"),
    )
    duplicate = MatchRecord(
        secondary_id="FI123",
        league={"name": "Italy Serie A"},
        start_time=KICKOFF + timedelta(seconds=100),
        home_team=TeamInfo(name="inter"),
        away_team=TeamInfo(name="Milan"),
    )
    other = MatchRecord(
        primary_id="E2",
        league={"name": "Italy Serie A"},
        start_time=KICKOFF,
        home_team=TeamInfo(name="Roma", image_id="7"),
        away_team=TeamInfo(name="Lazio", image_id="8"),
    )
    for record in (live, duplicate, other):
        await store.upsert(record)
    return live, duplicate, other


@pytest.mark.asyncio
async def test_cleanup_folds_duplicates_and_backfills_logos(store: InMemoryMatchStore, settings: Settings) -> None:
    live, duplicate, other = await seed(store)

    report = await cleanup_store(store, EventMapper(settings), window_s=240, bucket_s=120)

    assert (report.scanned, report.duplicate_groups, report.removed, report.logos_backfilled) == (3, 1, 1, 1)
    assert set(store.rows) == {live.id, other.id}

    kept = store.rows[live.id]
    assert kept.secondary_id == "FI123"
    assert kept.home_team.score == 1

    patched = store.rows[other.id]
    assert patched.home_team.logo_url == settings.logo_cdn_template.format(image_id="7")
    assert patched.away_team.logo_url.endswith("8.png")
    assert patched.logos_resolved is True


@pytest.mark.asyncio
async def test_cleanup_dry_run_writes_nothing(store: InMemoryMatchStore, settings: Settings) -> None:
    await seed(store)
    before = {k: v.model_dump() for k, v in store.rows.items()}

    report = await cleanup_store(store, EventMapper(settings), window_s=240, bucket_s=120, dry_run=True)

    assert report.removed == 1
    assert report.logos_backfilled == 1
    assert {k: v.model_dump() for k, v in store.rows.items()} == before
