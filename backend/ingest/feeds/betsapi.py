"""
BetsAPI-style feed connector.

Generic event lists come from /v1/events/*, the alternate provider
(pre-match fixture ids, FI) from /v1/bet365/*. Every response is an envelope
{"success": 1, "results": ..., "pager": {...}}.
"""
from __future__ import annotations

from typing import Any, Optional

from shared.config import Settings, get_settings
from shared.errors import UpstreamMalformed
from shared.utils.http_client import FeedHTTPClient
from shared.utils.logging import get_logger

from ingest.feeds.base import FeedProvider

logger = get_logger(__name__)

PATH_INPLAY = "/v1/events/inplay"
PATH_UPCOMING = "/v1/events/upcoming"
PATH_ENDED = "/v1/events/ended"
PATH_EVENT_VIEW = "/v1/event/view"
PATH_ALT_UPCOMING = "/v1/bet365/upcoming"
PATH_ALT_RESULT = "/v1/bet365/result"
PATH_PREMATCH = "/v3/bet365/prematch"
PATH_ODDS_SUMMARY = "/v2/event/odds/summary"
PATH_EVENT_ODDS = "/v2/event/odds"
PATH_LEAGUE_TABLE = "/v2/league/table"


class BetsAPIFeed(FeedProvider):
    """FeedProvider over the BetsAPI REST endpoints."""

    name = "betsapi"

    def __init__(self, settings: Settings | None = None, http_client: FeedHTTPClient | None = None) -> None:
        self._settings = settings or get_settings()
        self._http = http_client or FeedHTTPClient(
            base_url=self._settings.feed_base_url,
            token=self._settings.feed_token,
            timeout_s=self._settings.feed_request_timeout_s,
            max_retries=self._settings.feed_max_retries,
        )

    async def start(self) -> None:
        await self._http.start()

    async def close(self) -> None:
        await self._http.close()

    async def _results(self, path: str, params: dict[str, Any]) -> Any:
        body = await self._http.get_json(path, params=params)
        if not isinstance(body, dict):
            raise UpstreamMalformed(path, "envelope_not_object")
        if str(body.get("success")) != "1":
            raise UpstreamMalformed(path, f"success={body.get('success')!r} error={body.get('error')!r}")
        if "results" not in body:
            raise UpstreamMalformed(path, "missing_results")
        return body["results"]

    async def _list(self, path: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        results = await self._results(path, params)
        if results is None:
            return []
        if not isinstance(results, list):
            raise UpstreamMalformed(path, "results_not_list")
        return [r for r in results if isinstance(r, dict)]

    async def _first(self, path: str, params: dict[str, Any]) -> Optional[dict[str, Any]]:
        results = await self._list(path, params)
        return results[0] if results else None

    async def list_live(self, sport: str) -> list[dict[str, Any]]:
        return await self._list(PATH_INPLAY, {"sport_id": sport})

    async def list_upcoming(self, sport: str, page: int) -> list[dict[str, Any]]:
        return await self._list(PATH_UPCOMING, {"sport_id": sport, "page": page})

    async def list_ended(self, sport: str, day: str, page: int = 1) -> list[dict[str, Any]]:
        return await self._list(PATH_ENDED, {"sport_id": sport, "day": day, "page": page})

    async def get_alternate_upcoming(self, sport: str, page: int) -> list[dict[str, Any]]:
        return await self._list(PATH_ALT_UPCOMING, {"sport_id": sport, "page": page})

    async def get_event_by_id(self, event_id: str) -> Optional[dict[str, Any]]:
        return await self._first(PATH_EVENT_VIEW, {"event_id": event_id})

    async def get_alternate_result(self, fixture_id: str) -> Optional[dict[str, Any]]:
        result = await self._first(PATH_ALT_RESULT, {"event_id": fixture_id})
        if result is not None and not result.get("FI"):
            # The result endpoint echoes the fixture id as "id" only
            result = {**result, "FI": fixture_id}
        return result

    async def get_prematch_odds(self, fixture_id: str) -> Any:
        return await self._results(PATH_PREMATCH, {"FI": fixture_id})

    async def get_odds_summary(self, event_id: str) -> Any:
        return await self._results(PATH_ODDS_SUMMARY, {"event_id": event_id})

    async def get_event_odds(self, event_id: str) -> Any:
        return await self._results(PATH_EVENT_ODDS, {"event_id": event_id})

    async def get_league_table(self, league_id: str) -> Any:
        return await self._results(PATH_LEAGUE_TABLE, {"league_id": league_id})
