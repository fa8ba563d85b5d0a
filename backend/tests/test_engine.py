"""
ReconciliationEngine tests against the in-memory store and a scripted feed.

Run: pytest backend/tests/test_engine.py -v
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.config import Settings
from shared.models.domain import MatchRecord, TeamInfo
from shared.models.enums import MatchStatus
from ingest.mapping.mapper import EventMapper
from reconciler.engine import ReconciliationEngine, ended_days

from conftest import FakeFeed, InMemoryMatchStore, make_event, unavailable

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
TODAY = "20261019"
KICKOFF = int((NOW + timedelta(hours=1)).timestamp())


@pytest.fixture
def engine(feed: FakeFeed, store: InMemoryMatchStore, settings: Settings) -> ReconciliationEngine:
    return ReconciliationEngine(feed, store, settings=settings)


async def only_record(store: InMemoryMatchStore) -> MatchRecord:
    records = await store.list_all()
    assert len(records) == 1
    return records[0]


def stored_live(primary_id: str, started: datetime, score: tuple[int, int] = (1, 0), **extra) -> MatchRecord:
    return MatchRecord(
        primary_id=primary_id,
        league={"name": "Italy Serie A"},
        start_time=started,
        status=MatchStatus.LIVE,
        minute="80'",
        home_team=TeamInfo(name="Inter", score=score[0]),
        away_team=TeamInfo(name="Milan", score=score[1]),
        **extra,
    )


# ── ended_days ──────────────────────────────────────────────────────────

def test_ended_days_union_of_utc_and_local() -> None:
    late = datetime(2026, 10, 19, 23, 30, tzinfo=timezone.utc)
    assert ended_days(late, 1, "Europe/Rome") == ["20261019", "20261020"]
    assert ended_days(late, 2, "Europe/Rome") == ["20261019", "20261020", "20261018"]
    assert ended_days(NOW, 1, "Europe/Rome") == [TODAY]


# ── Lifecycle ───────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_scheduled_live_finished_lifecycle(
    engine: ReconciliationEngine, feed: FakeFeed, store: InMemoryMatchStore
) -> None:
    feed.upcoming = {1: [make_event("E1", start=KICKOFF, time_status="0")]}
    await engine.full_pass(now=NOW)
    assert (await only_record(store)).status == MatchStatus.SCHEDULED

    feed.live = [make_event("E1", start=KICKOFF, ss="0-0", timer={"tm": 5, "ts": 0})]
    await engine.live_pass()
    live = await only_record(store)
    assert live.status == MatchStatus.LIVE
    assert live.minute == "5'"

    feed.live = []
    feed.events["E1"] = make_event("E1", start=KICKOFF, ss="2-1")
    stats = await engine.live_pass()

    done = await only_record(store)
    assert stats.results_confirmed == 1
    assert done.status == MatchStatus.FINISHED
    assert (done.home_team.score, done.away_team.score) == (2, 1)
    assert done.minute == ""
    assert done.id == live.id


@pytest.mark.asyncio
async def test_absence_from_live_list_alone_does_not_finish(
    engine: ReconciliationEngine, feed: FakeFeed, store: InMemoryMatchStore
) -> None:
    feed.live = [make_event("E1", start=KICKOFF, ss="1-1", timer={"tm": 70})]
    await engine.live_pass()

    feed.live = []
    stats = await engine.live_pass()
    assert stats.results_inconclusive == 1
    assert (await only_record(store)).status == MatchStatus.LIVE

    # A lookup that still describes a fixture in the future is no result either
    feed.events["E1"] = make_event("E1", start=KICKOFF, time_status="0")
    stats = await engine.live_pass()
    assert stats.results_inconclusive == 1
    assert (await only_record(store)).status == MatchStatus.LIVE


@pytest.mark.asyncio
async def test_failed_live_list_aborts_pass(
    engine: ReconciliationEngine, feed: FakeFeed, store: InMemoryMatchStore
) -> None:
    await store.upsert(stored_live("E1", NOW - timedelta(minutes=30)))
    feed.live = unavailable()

    stats = await engine.live_pass()

    assert stats.aborted is True
    assert stats.failed_units == 1
    assert not [c for c in feed.calls if c[0] == "event"]
    assert (await only_record(store)).status == MatchStatus.LIVE


@pytest.mark.asyncio
async def test_malformed_live_event_does_not_abort_pass(
    engine: ReconciliationEngine, feed: FakeFeed, store: InMemoryMatchStore
) -> None:
    bad = {"id": "E7", "time": str(KICKOFF), "league": "Serie A", "timer": {"tm": 12}, "home": {"name": {"x": 1}}}
    feed.live = [bad, make_event("E8", start=KICKOFF, home="Roma", away="Lazio", ss="0-0", timer={"tm": 12})]
    stats = await engine.live_pass()

    assert stats.aborted is False
    records = await store.list_all()
    assert {r.primary_id for r in records} == {"E7", "E8"}
    malformed = next(r for r in records if r.primary_id == "E7")
    assert malformed.country == "UN"
    assert malformed.home_team.name == "Home"


@pytest.mark.asyncio
async def test_mapping_error_drops_only_that_event(
    feed: FakeFeed, store: InMemoryMatchStore, settings: Settings
) -> None:
    mapper = EventMapper(settings)
    real_map = mapper.map

    def flaky_map(event, source):
        if event.get("id") == "E7":
            raise ValueError("unexpected field shape")
        return real_map(event, source)

    mapper.map = flaky_map
    engine = ReconciliationEngine(feed, store, mapper=mapper, settings=settings)
    feed.live = [make_event("E7", start=KICKOFF, timer={"tm": 1}), make_event("E8", start=KICKOFF, home="Roma", away="Lazio", timer={"tm": 1})]

    stats = await engine.live_pass()

    assert stats.dropped == 1
    assert stats.created == 1
    assert (await only_record(store)).primary_id == "E8"


@pytest.mark.asyncio
async def test_live_pass_publishes_snapshot_notice(feed: FakeFeed, store: InMemoryMatchStore, settings: Settings) -> None:
    redis = MagicMock()
    redis.publish_snapshot_notice = AsyncMock(return_value=1)
    engine = ReconciliationEngine(feed, store, redis=redis, settings=settings)
    feed.live = [make_event("E1", start=KICKOFF, ss="0-0", timer={"tm": 1})]

    await engine.live_pass()

    redis.publish_snapshot_notice.assert_awaited_once()
    kind, payload = redis.publish_snapshot_notice.await_args.args
    assert kind == "live"
    assert payload["created"] == 1


# ── Full pass ───────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_failed_page_is_skipped_and_paging_continues(
    engine: ReconciliationEngine, feed: FakeFeed, store: InMemoryMatchStore
) -> None:
    feed.upcoming = {1: unavailable(), 2: [make_event("E2", start=KICKOFF, home="Roma", away="Lazio")]}
    feed.ended = {(TODAY, 1): [make_event("E3", start=KICKOFF - 7200, ss="1-0")]}

    stats = await engine.full_pass(now=NOW)

    assert stats.failed_units == 1
    assert [c for c in feed.calls if c[0] == "upcoming"] == [("upcoming", 1), ("upcoming", 2), ("upcoming", 3)]
    by_id = {r.primary_id: r for r in await store.list_all()}
    assert set(by_id) == {"E2", "E3"}
    assert by_id["E3"].status == MatchStatus.FINISHED


@pytest.mark.asyncio
async def test_pagination_stops_on_empty_page(
    engine: ReconciliationEngine, feed: FakeFeed, store: InMemoryMatchStore
) -> None:
    feed.upcoming = {
        1: [make_event("E1", start=KICKOFF)],
        2: [make_event("E2", start=KICKOFF, home="Roma", away="Lazio")],
    }
    feed.alternate_upcoming = {1: [make_event("FI1", start=KICKOFF, our_event_id="E1")]}

    await engine.full_pass(now=NOW)

    # A page shorter than a previous one does not end the list
    assert [c for c in feed.calls if c[0] == "upcoming"] == [("upcoming", 1), ("upcoming", 2), ("upcoming", 3)]
    assert [c for c in feed.calls if c[0] == "alternate_upcoming"] == [("alternate_upcoming", 1), ("alternate_upcoming", 2)]
    assert len(store.rows) == 2


@pytest.mark.asyncio
async def test_full_pass_is_idempotent(engine: ReconciliationEngine, feed: FakeFeed, store: InMemoryMatchStore) -> None:
    feed.upcoming = {
        1: [make_event("E1", start=KICKOFF), make_event("E2", start=KICKOFF, home="Roma", away="Lazio")],
    }
    first = await engine.full_pass(now=NOW)
    snapshot = {r.id: r.model_dump() for r in await store.list_all()}

    second = await engine.full_pass(now=NOW)

    assert first.created == 2
    assert (second.created, second.updated, second.unchanged) == (0, 0, 2)
    assert {r.id: r.model_dump() for r in await store.list_all()} == snapshot


@pytest.mark.asyncio
async def test_alternate_feed_merges_into_generic_record(
    engine: ReconciliationEngine, feed: FakeFeed, store: InMemoryMatchStore
) -> None:
    feed.upcoming = {1: [make_event("E1", start=KICKOFF)]}
    feed.alternate_upcoming = {1: [make_event("FI123", start=KICKOFF, our_event_id="E1")]}

    await engine.full_pass(now=NOW)

    record = await only_record(store)
    assert (record.primary_id, record.secondary_id) == ("E1", "FI123")


@pytest.mark.asyncio
async def test_logos_survive_later_sightings_without_images(
    engine: ReconciliationEngine, feed: FakeFeed, store: InMemoryMatchStore
) -> None:
    feed.upcoming = {1: [make_event("E1", start=KICKOFF, home_image="11", away_image="22")]}
    await engine.full_pass(now=NOW)
    logo = (await only_record(store)).home_team.logo_url
    assert logo

    feed.live = [make_event("E1", start=KICKOFF, ss="0-0", timer={"tm": 3})]
    await engine.live_pass()

    record = await only_record(store)
    assert record.status == MatchStatus.LIVE
    assert record.home_team.logo_url == logo
    assert record.logos_resolved is True


# ── Recovery scans ──────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_stale_live_without_result_is_finished_with_last_score(
    engine: ReconciliationEngine, store: InMemoryMatchStore
) -> None:
    await store.upsert(stored_live("E9", NOW - timedelta(hours=3), score=(1, 0)))

    stats = await engine.full_pass(now=NOW)

    record = await only_record(store)
    assert stats.forced_finished == 1
    assert record.status == MatchStatus.FINISHED
    assert (record.home_team.score, record.away_team.score) == (1, 0)
    assert record.finished_at == NOW


@pytest.mark.asyncio
async def test_stale_live_still_running_is_left_live(
    engine: ReconciliationEngine, feed: FakeFeed, store: InMemoryMatchStore
) -> None:
    await store.upsert(stored_live("E9", NOW - timedelta(hours=3)))
    feed.events["E9"] = make_event("E9", ss="2-0", timer={"tm": 95})

    stats = await engine.full_pass(now=NOW)

    record = await only_record(store)
    assert stats.forced_finished == 0
    assert record.status == MatchStatus.LIVE
    assert record.home_team.score == 2


@pytest.mark.asyncio
async def test_stale_live_with_result_uses_result_score(
    engine: ReconciliationEngine, feed: FakeFeed, store: InMemoryMatchStore
) -> None:
    await store.upsert(stored_live("E9", NOW - timedelta(hours=3)))
    feed.events["E9"] = make_event("E9", ss="3-1")

    stats = await engine.full_pass(now=NOW)

    record = await only_record(store)
    assert stats.forced_finished == 0
    assert stats.results_confirmed >= 1
    assert record.status == MatchStatus.FINISHED
    assert (record.home_team.score, record.away_team.score) == (3, 1)


@pytest.mark.asyncio
async def test_missed_result_backfill_prefers_alternate_provider(
    engine: ReconciliationEngine, feed: FakeFeed, store: InMemoryMatchStore
) -> None:
    await store.upsert(MatchRecord(
        primary_id="E5",
        secondary_id="FI5",
        league={"name": "Italy Serie A"},
        start_time=NOW - timedelta(hours=4),
        home_team=TeamInfo(name="Inter"),
        away_team=TeamInfo(name="Milan"),
    ))
    feed.alternate_results["FI5"] = make_event("FI5", ss="1-1", our_event_id="E5")

    await engine.full_pass(now=NOW)

    record = await only_record(store)
    assert record.status == MatchStatus.FINISHED
    assert (record.home_team.score, record.away_team.score) == (1, 1)
    assert ("event", "E5") not in feed.calls
