"""
Read-side operations that may touch the upstream feed: on-demand timeline
enrichment and the per-match odds cache.

Everything else in the API reads the store directly.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional

from shared.config import Settings, get_settings
from shared.errors import NotFound, UpstreamMalformed, UpstreamUnavailable
from shared.models.domain import MatchRecord, NormalizedOdds, utcnow
from shared.models.enums import MatchStatus
from shared.store.base import MatchStore
from shared.utils.logging import get_logger
from shared.utils.metrics import ODDS_CACHE
from shared.utils.redis_manager import RedisManager

from ingest.feeds.base import FeedProvider
from ingest.mapping.timeline import TimelineClassifier, parse_timeline
from ingest.odds.normalizer import OddsNormalizer

logger = get_logger(__name__)


class MatchReadService:
    """Lookup, timeline enrichment and odds for a single match."""

    def __init__(
        self,
        store: MatchStore,
        feed: FeedProvider,
        redis: RedisManager,
        settings: Settings | None = None,
        normalizer: OddsNormalizer | None = None,
        classifier: TimelineClassifier | None = None,
    ) -> None:
        self._store = store
        self._feed = feed
        self._redis = redis
        self._settings = settings or get_settings()
        self._normalizer = normalizer or OddsNormalizer()
        self._classifier = classifier or TimelineClassifier()

    async def find(self, key: str) -> MatchRecord:
        record = await self._store.find_by_primary_or_secondary_id(key)
        if record is None:
            raise NotFound("match", key)
        return record

    async def get_match(self, key: str) -> MatchRecord:
        """
        Stored record, with one timeline refresh from the event view when the
        match is LIVE or FINISHED without a timeline. Upstream failures fall
        back to the stored record.
        """
        record = await self.find(key)
        needs_timeline = record.status == MatchStatus.LIVE or (
            record.status == MatchStatus.FINISHED and not record.timeline
        )
        if not needs_timeline or not record.primary_id:
            return record

        try:
            event = await self._feed.get_event_by_id(record.primary_id)
        except (UpstreamUnavailable, UpstreamMalformed) as exc:
            logger.warning("timeline_enrichment_failed", match_id=str(record.id), error=str(exc))
            return record

        raw = (event or {}).get("events")
        if not isinstance(raw, list):
            return record
        timeline = parse_timeline(raw, record.home_team.name, record.away_team.name, self._classifier)
        if not timeline or timeline == record.timeline:
            return record

        updated = await self._store.update_fields(record.id, timeline=timeline, updated_at=utcnow())
        return updated or record

    def _odds_attempts(self, record: MatchRecord) -> list[tuple[str, Callable[[str], Awaitable[Any]], str]]:
        attempts: list[tuple[str, Callable[[str], Awaitable[Any]], str]] = []
        if record.secondary_id:
            attempts.append(("prematch", self._feed.get_prematch_odds, record.secondary_id))
        if record.primary_id:
            attempts.append(("summary", self._feed.get_odds_summary, record.primary_id))
            attempts.append(("event_odds", self._feed.get_event_odds, record.primary_id))
        return attempts[: self._settings.odds_fetch_max_attempts]

    async def get_odds(self, key: str) -> NormalizedOdds:
        """
        Cache first; on a miss, a bounded sequence of upstream attempts where
        the first non-empty normalised result wins. Found odds are written to
        the record and cached. Partial markets are returned as they are.
        """
        record = await self.find(key)
        cache_key = str(record.id)

        cached = await self._redis.get_cached_odds(cache_key)
        if cached is not None:
            ODDS_CACHE.labels(result="hit").inc()
            return NormalizedOdds.model_validate(cached)
        ODDS_CACHE.labels(result="miss").inc()

        odds: Optional[NormalizedOdds] = None
        for name, fetch, ident in self._odds_attempts(record):
            try:
                payload = await fetch(ident)
            except (UpstreamUnavailable, UpstreamMalformed) as exc:
                logger.warning("odds_attempt_failed", match_id=cache_key, attempt=name, error=str(exc))
                continue
            normalized = self._normalizer.normalize(payload)
            if not normalized.is_empty:
                odds = normalized
                logger.debug("odds_attempt_succeeded", match_id=cache_key, attempt=name)
                break

        if odds is None:
            return record.normalized_odds()

        await self._store.update_fields(
            record.id,
            odds=odds.main or record.odds,
            over_under_25=odds.over_under_25 or record.over_under_25,
            both_teams_score=odds.both_teams_score or record.both_teams_score,
            updated_at=utcnow(),
        )
        await self._redis.set_cached_odds(cache_key, odds.model_dump(mode="json"))
        return odds
