"""
Match REST endpoints.

GET /api/matches             List, filterable by league, country and day.
GET /api/matches/live        Live matches only.
GET /api/match/{id}          One match by primary or secondary id.
GET /api/match/{id}/odds     Normalised odds for one match.

Every list is deduplicated before it is returned.
"""
from __future__ import annotations

from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query

from shared.config import Settings, get_settings
from shared.models.enums import MatchStatus
from shared.store.base import MatchStore
from shared.utils.logging import get_logger

from api.dependencies import get_read_service, get_store
from api.read_service import MatchReadService
from reconciler.dedupe import dedupe

logger = get_logger(__name__)
router = APIRouter(prefix="/api", tags=["matches"])


@router.get("/matches")
async def list_matches(
    league: Optional[str] = Query(None, description="League name, case-insensitive"),
    country: Optional[str] = Query(None, description="Country code, e.g. IT"),
    day: Optional[date] = Query(None, alias="date", description="UTC day, YYYY-MM-DD"),
    store: MatchStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> list[dict[str, Any]]:
    records = await store.list_matches(league=league, country=country, day=day)
    kept = dedupe(records, settings.fuzzy_window_s)
    if len(kept) != len(records):
        logger.debug("read_duplicates_dropped", dropped=len(records) - len(kept))
    return [r.model_dump(mode="json") for r in kept]


@router.get("/matches/live")
async def list_live_matches(
    store: MatchStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> list[dict[str, Any]]:
    records = await store.find_by_status(MatchStatus.LIVE)
    return [r.model_dump(mode="json") for r in dedupe(records, settings.fuzzy_window_s)]


@router.get("/match/{match_key}")
async def get_match(
    match_key: str,
    service: MatchReadService = Depends(get_read_service),
) -> dict[str, Any]:
    """
    Look a match up by either upstream id.

    LIVE matches, and FINISHED matches without a timeline, get their
    timeline refreshed from the feed before they are returned.
    """
    record = await service.get_match(match_key)
    return record.model_dump(mode="json")


@router.get("/match/{match_key}/odds")
async def get_match_odds(
    match_key: str,
    service: MatchReadService = Depends(get_read_service),
) -> dict[str, Any]:
    odds = await service.get_odds(match_key)
    return odds.model_dump(mode="json")
