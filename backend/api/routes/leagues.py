"""
League REST endpoints.

GET /api/leagues                    Leagues grouped by country, with match counts.
GET /api/leagues/{league_id}/table  Standings, passed through from the feed.
"""
from __future__ import annotations

from typing import Any, Iterable

from fastapi import APIRouter, Depends

from shared.config import Settings, get_settings
from shared.errors import NotFound
from shared.models.domain import CountryLeagues, LeagueSummary, MatchRecord
from shared.store.base import MatchStore

from api.dependencies import get_feed, get_store
from ingest.feeds.base import FeedProvider
from reconciler.dedupe import dedupe

router = APIRouter(prefix="/api/leagues", tags=["leagues"])


def group_leagues(records: Iterable[MatchRecord]) -> list[CountryLeagues]:
    """Count matches per (country, league), sorted by country then league name."""
    counts: dict[str, dict[str, LeagueSummary]] = {}
    for record in records:
        country = record.country or "UN"
        leagues = counts.setdefault(country, {})
        summary = leagues.get(record.league.name)
        if summary is None:
            summary = leagues[record.league.name] = LeagueSummary(name=record.league.name, id=record.league.id)
        elif summary.id is None and record.league.id:
            summary.id = record.league.id
        summary.count += 1

    return [
        CountryLeagues(country=country, leagues=sorted(leagues.values(), key=lambda s: s.name))
        for country, leagues in sorted(counts.items())
    ]


@router.get("")
async def list_leagues(
    store: MatchStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> list[dict[str, Any]]:
    records = dedupe(await store.list_all(), settings.fuzzy_window_s)
    return [group.model_dump(mode="json") for group in group_leagues(records)]


@router.get("/{league_id}/table")
async def get_league_table(
    league_id: str,
    feed: FeedProvider = Depends(get_feed),
) -> Any:
    table = await feed.get_league_table(league_id)
    if table is None:
        raise NotFound("league table", league_id)
    return table
