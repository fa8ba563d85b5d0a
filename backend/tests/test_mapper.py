"""
Unit tests for EventMapper and its parsing helpers.

Run: pytest backend/tests/test_mapper.py -v
"""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from shared.config import Settings
from shared.models.enums import FeedSource, MatchStatus, TimelineEventType
from ingest.mapping.mapper import EventMapper, parse_country, parse_minute, parse_score, parse_start_time

from conftest import make_event


@pytest.fixture
def mapper(settings: Settings) -> EventMapper:
    return EventMapper(settings)


# ── Helpers ─────────────────────────────────────────────────────────────

def test_parse_start_time_unix_seconds() -> None:
    assert parse_start_time({"time": "1760000000"}) == datetime.fromtimestamp(1_760_000_000, tz=timezone.utc)


@pytest.mark.parametrize("raw", [None, "", "0", "-5", "soon"])
def test_parse_start_time_rejects_unusable(raw) -> None:
    assert parse_start_time({"time": raw}) is None


def test_parse_score_string_forms() -> None:
    assert parse_score("2-1") == (2, 1)
    assert parse_score("0:3") == (0, 3)
    assert parse_score("") is None
    assert parse_score("2-x") is None


def test_parse_score_period_map_uses_highest_period() -> None:
    assert parse_score({"1": "1-0", "2": "2-1"}) == (2, 1)
    assert parse_score({"2": {"home": "3", "away": "3"}, "1": {"home": "1", "away": "0"}}) == (3, 3)


def test_parse_country_falls_back_to_league_then_unknown() -> None:
    assert parse_country({"cc": "it"}) == "IT"
    assert parse_country({"league": {"name": "England Premier League"}}) == "ENGLAND"
    assert parse_country({}) == "UN"


def test_parse_minute_with_added_time() -> None:
    assert parse_minute({"tm": 45, "ts": 10, "ta": 2}) == "45+2'"
    assert parse_minute({"tm": "67", "ta": "0"}) == "67'"
    assert parse_minute(None) == ""


# ── Status ──────────────────────────────────────────────────────────────

def test_timer_means_live(mapper: EventMapper) -> None:
    candidate = mapper.map(make_event(ss="1-0", timer={"tm": 33}), FeedSource.UPCOMING)
    assert candidate.status == MatchStatus.LIVE
    assert candidate.minute == "33'"


def test_parseable_score_without_timer_means_finished(mapper: EventMapper) -> None:
    candidate = mapper.map(make_event(ss="2-1"), FeedSource.ENDED)
    assert candidate.status == MatchStatus.FINISHED
    assert candidate.score_known is True
    assert (candidate.home_team.score, candidate.away_team.score) == (2, 1)
    assert candidate.minute == ""


def test_upcoming_with_zero_score_and_not_started_is_scheduled(mapper: EventMapper) -> None:
    candidate = mapper.map(make_event(ss="0-0", time_status="0"), FeedSource.UPCOMING)
    assert candidate.status == MatchStatus.SCHEDULED


def test_missing_score_is_scheduled_with_placeholder(mapper: EventMapper) -> None:
    candidate = mapper.map(make_event(), FeedSource.UPCOMING)
    assert candidate.status == MatchStatus.SCHEDULED
    assert candidate.score_known is False
    assert candidate.home_team.score == 0 and candidate.away_team.score == 0


def test_malformed_score_does_not_finish(mapper: EventMapper) -> None:
    candidate = mapper.map(make_event(ss="abc"), FeedSource.ENDED)
    assert candidate.status == MatchStatus.SCHEDULED
    assert candidate.score_known is False


def test_alternate_upcoming_is_always_scheduled(mapper: EventMapper) -> None:
    event = make_event(None, ss="1-1", FI="FI123", our_event_id="E1")
    candidate = mapper.map(event, FeedSource.ALTERNATE_UPCOMING)
    assert candidate.status == MatchStatus.SCHEDULED
    assert candidate.score_known is False


def test_live_source_without_timer_is_live(mapper: EventMapper) -> None:
    candidate = mapper.map(make_event(ss="0-0"), FeedSource.LIVE)
    assert candidate.status == MatchStatus.LIVE


# ── Identifiers ─────────────────────────────────────────────────────────

def test_generic_source_ids(mapper: EventMapper) -> None:
    candidate = mapper.map(make_event("E1", bet365_id="FI123"), FeedSource.UPCOMING)
    assert candidate.primary_id == "E1"
    assert candidate.secondary_id == "FI123"


def test_alternate_source_ids(mapper: EventMapper) -> None:
    event = make_event("123", FI="FI123", our_event_id="E1")
    candidate = mapper.map(event, FeedSource.ALTERNATE_UPCOMING)
    assert candidate.primary_id == "E1"
    assert candidate.secondary_id == "FI123"


def test_alternate_source_without_cross_reference(mapper: EventMapper) -> None:
    event = make_event("FI9")
    candidate = mapper.map(event, FeedSource.ALTERNATE_RESULT)
    assert candidate.primary_id is None
    assert candidate.secondary_id == "FI9"


# ── Drops and defaults ──────────────────────────────────────────────────

def test_event_without_start_time_is_dropped(mapper: EventMapper) -> None:
    event = make_event()
    event.pop("time")
    assert mapper.map(event, FeedSource.UPCOMING) is None


def test_non_dict_event_is_dropped(mapper: EventMapper) -> None:
    assert mapper.map(["not", "an", "event"], FeedSource.LIVE) is None


def test_missing_league_and_teams_get_placeholders(mapper: EventMapper) -> None:
    event = {"id": "E5", "time": "1760000000"}
    candidate = mapper.map(event, FeedSource.UPCOMING)
    assert candidate.league.name == "Unknown League"
    assert candidate.home_team.name == "Home"
    assert candidate.away_team.name == "Away"
    assert candidate.country == "UN"


def test_logo_url_built_from_image_id(mapper: EventMapper, settings: Settings) -> None:
    candidate = mapper.map(make_event(home_image="111", away_image="222"), FeedSource.UPCOMING)
    assert candidate.home_team.image_id == "111"
    assert candidate.home_team.logo_url == settings.logo_cdn_template.format(image_id="111")
    assert candidate.away_team.logo_url.endswith("222.png")


def test_embedded_timeline_is_parsed(mapper: EventMapper) -> None:
    event = make_event(
        ss="1-0",
        events=[{"id": "1", "text": "23' - 1st Goal - (Inter) - Lautaro 1-0"}, {"text": "Score After First Half - 1-0"}],
    )
    candidate = mapper.map(event, FeedSource.RESULT)
    assert len(candidate.timeline) == 1
    assert candidate.timeline[0].type == TimelineEventType.GOAL
    assert candidate.timeline[0].minute == "23'"


# ── Malformed fields ────────────────────────────────────────────────────

def test_string_league_without_country_code(mapper: EventMapper) -> None:
    event = make_event(cc=None)
    event["league"] = "Serie A"
    candidate = mapper.map(event, FeedSource.LIVE)
    assert candidate.league.name == "Unknown League"
    assert candidate.country == "UN"
    assert parse_country({"league": "Serie A"}) == "UN"


def test_numeric_team_name_is_coerced(mapper: EventMapper) -> None:
    event = make_event()
    event["home"] = {"id": "h1", "name": 1860}
    candidate = mapper.map(event, FeedSource.UPCOMING)
    assert candidate.home_team.name == "1860"


def test_unusable_team_and_league_names_get_placeholders(mapper: EventMapper) -> None:
    event = make_event()
    event["home"] = "Inter"
    event["away"] = {"name": {"en": "Milan"}}
    event["league"] = {"id": "94", "name": ["Serie A"]}
    candidate = mapper.map(event, FeedSource.UPCOMING)
    assert candidate.home_team.name == "Home"
    assert candidate.away_team.name == "Away"
    assert candidate.league.name == "Unknown League"
    assert candidate.league.id == "94"
