"""
Shared fixtures: an in-memory MatchStore with the same uniqueness contract
as the SQL store, and a scripted FeedProvider.
"""
from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Any, Optional

import pytest

from shared.config import Settings
from shared.errors import IdentityConflict, UpstreamUnavailable
from shared.identity import normalize_name
from shared.models.domain import MatchRecord
from shared.models.enums import MatchStatus
from shared.store.base import MatchStore

from ingest.feeds.base import FeedProvider


class InMemoryMatchStore(MatchStore):
    """Dict-backed store. Enforces unique primary_id like the SQL unique index."""

    def __init__(self) -> None:
        self.rows: dict[uuid.UUID, MatchRecord] = {}
        self.upserts = 0

    def _copy(self, record: Optional[MatchRecord]) -> Optional[MatchRecord]:
        return record.model_copy(deep=True) if record is not None else None

    def _by_start(self, records: list[MatchRecord]) -> list[MatchRecord]:
        epoch = datetime(1970, 1, 1, tzinfo=timezone.utc)
        return sorted((self._copy(r) for r in records), key=lambda r: r.start_time or epoch)

    async def find_by_primary_id(self, primary_id: str) -> Optional[MatchRecord]:
        for record in self.rows.values():
            if record.primary_id == primary_id:
                return self._copy(record)
        return None

    async def find_by_secondary_id(self, secondary_id: str) -> Optional[MatchRecord]:
        hits = [r for r in self.rows.values() if r.secondary_id == secondary_id]
        hits.sort(key=lambda r: r.updated_at, reverse=True)
        return self._copy(hits[0]) if hits else None

    async def find_by_fuzzy_key(
        self, league: str, home: str, away: str, start_time: datetime, window_s: int
    ) -> list[MatchRecord]:
        key = (normalize_name(league), normalize_name(home), normalize_name(away))
        hits = [
            r for r in self.rows.values()
            if (normalize_name(r.league.name), normalize_name(r.home_team.name), normalize_name(r.away_team.name)) == key
            and r.start_time is not None
            and abs((r.start_time - start_time).total_seconds()) <= window_s
        ]
        hits.sort(key=lambda r: r.created_at)
        return [self._copy(r) for r in hits]

    async def find_by_status(self, status: MatchStatus) -> list[MatchRecord]:
        return self._by_start([r for r in self.rows.values() if r.status == status])

    async def find_finished_since(self, since: datetime, limit: int) -> list[MatchRecord]:
        hits = [
            r for r in self.rows.values()
            if r.status == MatchStatus.FINISHED and r.finished_at is not None and r.finished_at >= since
        ]
        hits.sort(key=lambda r: r.finished_at, reverse=True)
        return [self._copy(r) for r in hits[:limit]]

    async def find_scheduled_between(self, start: datetime, end: datetime, limit: int) -> list[MatchRecord]:
        hits = [
            r for r in self.rows.values()
            if r.status == MatchStatus.SCHEDULED and r.start_time is not None and start <= r.start_time <= end
        ]
        hits.sort(key=lambda r: r.start_time, reverse=True)
        return [self._copy(r) for r in hits[:limit]]

    async def upsert(self, record: MatchRecord) -> MatchRecord:
        if record.primary_id:
            for other in self.rows.values():
                if other.id != record.id and other.primary_id == record.primary_id:
                    raise IdentityConflict(record.primary_id)
        self.upserts += 1
        self.rows[record.id] = record.model_copy(deep=True)
        return record

    async def update_fields(self, record_id: uuid.UUID, **fields: Any) -> Optional[MatchRecord]:
        current = self.rows.get(record_id)
        if current is None:
            return None
        return await self.upsert(current.model_copy(update=fields))

    async def delete(self, record_id: uuid.UUID) -> bool:
        return self.rows.pop(record_id, None) is not None

    async def list_matches(
        self,
        league: Optional[str] = None,
        country: Optional[str] = None,
        day: Optional[date] = None,
        status: Optional[MatchStatus] = None,
    ) -> list[MatchRecord]:
        hits = list(self.rows.values())
        if league:
            hits = [r for r in hits if normalize_name(r.league.name) == normalize_name(league)]
        if country:
            hits = [r for r in hits if r.country.upper() == country.upper()]
        if day:
            hits = [r for r in hits if r.start_time is not None and r.start_time.astimezone(timezone.utc).date() == day]
        if status:
            hits = [r for r in hits if r.status == status]
        return self._by_start(hits)

    async def list_all(self) -> list[MatchRecord]:
        return self._by_start(list(self.rows.values()))


class FakeFeed(FeedProvider):
    """
    Scripted feed. Lists are served from attributes; an attribute set to an
    exception instance is raised instead. Every call is recorded.
    """

    name = "fake"

    def __init__(self) -> None:
        self.live: Any = []
        self.upcoming: dict[int, Any] = {}
        self.ended: dict[tuple[str, int], Any] = {}
        self.alternate_upcoming: dict[int, Any] = {}
        self.events: dict[str, Any] = {}
        self.alternate_results: dict[str, Any] = {}
        self.prematch: dict[str, Any] = {}
        self.summaries: dict[str, Any] = {}
        self.event_odds: dict[str, Any] = {}
        self.tables: dict[str, Any] = {}
        self.calls: list[tuple[str, Any]] = []

    @staticmethod
    def _serve(value: Any) -> Any:
        if isinstance(value, Exception):
            raise value
        return value

    async def list_live(self, sport: str) -> list[dict[str, Any]]:
        self.calls.append(("live", sport))
        return self._serve(self.live)

    async def list_upcoming(self, sport: str, page: int) -> list[dict[str, Any]]:
        self.calls.append(("upcoming", page))
        return self._serve(self.upcoming.get(page, []))

    async def list_ended(self, sport: str, day: str, page: int = 1) -> list[dict[str, Any]]:
        self.calls.append(("ended", (day, page)))
        return self._serve(self.ended.get((day, page), []))

    async def get_alternate_upcoming(self, sport: str, page: int) -> list[dict[str, Any]]:
        self.calls.append(("alternate_upcoming", page))
        return self._serve(self.alternate_upcoming.get(page, []))

    async def get_event_by_id(self, event_id: str) -> Optional[dict[str, Any]]:
        self.calls.append(("event", event_id))
        return self._serve(self.events.get(event_id))

    async def get_alternate_result(self, fixture_id: str) -> Optional[dict[str, Any]]:
        self.calls.append(("alternate_result", fixture_id))
        return self._serve(self.alternate_results.get(fixture_id))

    async def get_prematch_odds(self, fixture_id: str) -> Any:
        self.calls.append(("prematch", fixture_id))
        return self._serve(self.prematch.get(fixture_id))

    async def get_odds_summary(self, event_id: str) -> Any:
        self.calls.append(("summary", event_id))
        return self._serve(self.summaries.get(event_id))

    async def get_event_odds(self, event_id: str) -> Any:
        self.calls.append(("event_odds", event_id))
        return self._serve(self.event_odds.get(event_id))

    async def get_league_table(self, league_id: str) -> Any:
        self.calls.append(("table", league_id))
        return self._serve(self.tables.get(league_id))


def unavailable(path: str = "/test") -> UpstreamUnavailable:
    return UpstreamUnavailable(path, "http_503", 503)


def make_event(
    event_id: str | None = "E1",
    *,
    home: str = "Inter",
    away: str = "Milan",
    league: str = "Italy Serie A",
    start: int = 1_760_000_000,
    ss: Any = None,
    timer: Any = None,
    time_status: str | None = None,
    home_image: str | None = None,
    away_image: str | None = None,
    cc: str | None = "it",
    **extra: Any,
) -> dict[str, Any]:
    """Generic-feed event in the upstream wire shape."""
    event: dict[str, Any] = {
        "time": str(start),
        "league": {"id": "94", "name": league, "cc": cc},
        "home": {"id": "h1", "name": home},
        "away": {"id": "a1", "name": away},
        "cc": cc,
    }
    if event_id is not None:
        event["id"] = event_id
    if home_image:
        event["home"]["image_id"] = home_image
    if away_image:
        event["away"]["image_id"] = away_image
    if ss is not None:
        event["ss"] = ss
    if timer is not None:
        event["timer"] = timer
    if time_status is not None:
        event["time_status"] = time_status
    event.update(extra)
    return event


@pytest.fixture
def settings() -> Settings:
    return Settings(
        feed_token="test",
        page_delay_s=0,
        upcoming_max_pages=3,
        alternate_upcoming_max_pages=2,
        ended_days_back=1,
        ended_max_pages_per_day=2,
        metrics_enabled=False,
    )


@pytest.fixture
def store() -> InMemoryMatchStore:
    return InMemoryMatchStore()


@pytest.fixture
def feed() -> FakeFeed:
    return FakeFeed()
