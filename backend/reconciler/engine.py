"""
ReconciliationEngine: scheduled feed pulls, state transitions and recovery
scans.

Two loops run side by side on one event loop:

- the live pass (default every 20s) ingests in-play events and tries to
  confirm a result for LIVE records that dropped out of the in-play list;
- the full pass (default every 150s) pages through upcoming, ended and
  alternate-provider lists, then runs the recovery scans.

Upstream calls inside a pass are sequential with a fixed delay between them.
Each upstream unit (a page, a day, a lookup) fails on its own: the error is
logged, counted, and the pass moves on. The next scheduled pass is the retry.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional
from zoneinfo import ZoneInfo

from shared.config import Settings, get_settings
from shared.errors import UpstreamMalformed, UpstreamUnavailable
from shared.models.domain import MatchCandidate, MatchRecord, utcnow
from shared.models.enums import FeedSource, MatchStatus
from shared.store.base import MatchStore
from shared.utils.logging import get_logger
from shared.utils.metrics import LIVE_MATCHES, PASS_DURATION, PASS_RUNS, UNIT_FAILURES, atrack_latency
from shared.utils.redis_manager import RedisManager

from ingest.feeds.base import FeedProvider
from ingest.mapping.mapper import EventMapper
from reconciler.merge import mark_finished
from reconciler.resolver import IngestResult, MatchKeyResolver

logger = get_logger(__name__)

UPSTREAM_ERRORS = (UpstreamUnavailable, UpstreamMalformed)

PageFetcher = Callable[[int], Awaitable[list[dict[str, Any]]]]


@dataclass
class PassStats:
    """Counters for one pass; published with the snapshot notice."""

    kind: str
    events: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    dropped: int = 0
    failed_units: int = 0
    results_confirmed: int = 0
    results_inconclusive: int = 0
    forced_finished: int = 0
    aborted: bool = False
    started_at: float = field(default_factory=time.monotonic)

    def count(self, result: IngestResult) -> None:
        if result == IngestResult.CREATED:
            self.created += 1
        elif result == IngestResult.UPDATED:
            self.updated += 1
        else:
            self.unchanged += 1

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("started_at")
        data["duration_s"] = round(time.monotonic() - self.started_at, 3)
        return data


def ended_days(now: datetime, days_back: int, local_tz: str) -> list[str]:
    """
    YYYYMMDD day keys for the trailing window, in both UTC and the local
    timezone, without duplicates. Late kick-offs fall on different calendar
    days depending on the zone, so either list alone can miss fixtures.
    """
    zone = ZoneInfo(local_tz)
    days: list[str] = []
    for offset in range(days_back):
        moment = now - timedelta(days=offset)
        for tz in (timezone.utc, zone):
            key = moment.astimezone(tz).strftime("%Y%m%d")
            if key not in days:
                days.append(key)
    return days


class ReconciliationEngine:
    """Drives the live and full passes against one store."""

    def __init__(
        self,
        feed: FeedProvider,
        store: MatchStore,
        resolver: MatchKeyResolver | None = None,
        mapper: EventMapper | None = None,
        redis: RedisManager | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._feed = feed
        self._store = store
        self._resolver = resolver or MatchKeyResolver(store, self._settings)
        self._mapper = mapper or EventMapper(self._settings)
        self._redis = redis
        self._sport = self._settings.feed_sport_id
        self._shutdown = asyncio.Event()

    # ── Helpers ─────────────────────────────────────────────────────────

    async def _pause(self) -> None:
        if self._settings.page_delay_s > 0:
            await asyncio.sleep(self._settings.page_delay_s)

    def _unit_failed(self, unit: str, exc: Exception, stats: PassStats) -> None:
        stats.failed_units += 1
        UNIT_FAILURES.labels(unit=unit.split(":")[0], error=type(exc).__name__).inc()
        logger.warning("upstream_unit_failed", unit=unit, pass_kind=stats.kind, error=str(exc))

    async def _ingest_candidate(self, candidate: MatchCandidate, stats: PassStats) -> Optional[MatchRecord]:
        try:
            record, result = await self._resolver.ingest(candidate)
        except Exception as exc:
            logger.error(
                "candidate_ingest_error",
                primary_id=candidate.primary_id,
                secondary_id=candidate.secondary_id,
                source=candidate.source.value,
                error=str(exc),
                exc_info=True,
            )
            return None
        stats.count(result)
        return record

    def _map(self, event: Any, source: FeedSource, stats: PassStats) -> Optional[MatchCandidate]:
        """Map one event; a malformed event is dropped without failing its page."""
        try:
            candidate = self._mapper.map(event, source)
        except (TypeError, AttributeError, ValueError) as exc:
            event_id = event.get("id") if isinstance(event, dict) else None
            logger.warning("event_malformed", source=source.value, event_id=event_id, error=str(exc))
            candidate = None
        if candidate is None:
            stats.dropped += 1
        return candidate

    async def _ingest_event(self, event: dict[str, Any], source: FeedSource, stats: PassStats) -> Optional[MatchRecord]:
        stats.events += 1
        candidate = self._map(event, source, stats)
        if candidate is None:
            return None
        return await self._ingest_candidate(candidate, stats)

    async def _paginate(
        self,
        unit: str,
        fetch: PageFetcher,
        max_pages: int,
        source: FeedSource,
        stats: PassStats,
    ) -> int:
        """
        Page through one upstream list until an empty page or max_pages. A
        failed page is skipped and paging continues with the next one.
        """
        ingested = 0
        for page in range(1, max_pages + 1):
            await self._pause()
            try:
                events = await fetch(page)
            except UPSTREAM_ERRORS as exc:
                self._unit_failed(f"{unit}:page={page}", exc, stats)
                continue
            if not events:
                break
            for event in events:
                if await self._ingest_event(event, source, stats) is not None:
                    ingested += 1
        return ingested

    async def _fetch_result(
        self, record: MatchRecord, stats: PassStats, prefer_alternate: bool = False
    ) -> Optional[MatchCandidate]:
        """
        Authoritative lookup for one record: the generic event view by
        primary id and the alternate provider's result by secondary id.
        Returns the first candidate that is LIVE or FINISHED.
        """
        lookups: list[tuple[FeedSource, Callable[[str], Awaitable[Optional[dict[str, Any]]]], str]] = []
        if record.primary_id:
            lookups.append((FeedSource.RESULT, self._feed.get_event_by_id, record.primary_id))
        if record.secondary_id:
            lookups.append((FeedSource.ALTERNATE_RESULT, self._feed.get_alternate_result, record.secondary_id))
        if prefer_alternate:
            lookups.reverse()

        for source, lookup, key in lookups:
            await self._pause()
            try:
                event = await lookup(key)
            except UPSTREAM_ERRORS as exc:
                self._unit_failed(f"{source.value}:{key}", exc, stats)
                continue
            if not event:
                continue
            candidate = self._map(event, source, stats)
            if candidate is not None and candidate.status != MatchStatus.SCHEDULED:
                return candidate
        return None

    async def _confirm_result(
        self, record: MatchRecord, stats: PassStats, prefer_alternate: bool = False
    ) -> Optional[MatchRecord]:
        candidate = await self._fetch_result(record, stats, prefer_alternate)
        if candidate is None:
            stats.results_inconclusive += 1
            return None
        updated = await self._ingest_candidate(candidate, stats)
        if updated is not None:
            stats.results_confirmed += 1
        return updated

    async def _publish(self, stats: PassStats) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.publish_snapshot_notice(stats.kind, stats.as_dict())
        except Exception as exc:
            logger.warning("snapshot_notice_failed", pass_kind=stats.kind, error=str(exc))

    # ── Live pass ───────────────────────────────────────────────────────

    async def live_pass(self) -> PassStats:
        """
        Ingest every in-play event, then try to confirm a result for LIVE
        records that are no longer in the in-play list. Without a conclusive
        result they stay LIVE.
        """
        stats = PassStats(kind="live")
        try:
            events = await self._feed.list_live(self._sport)
        except UPSTREAM_ERRORS as exc:
            # Without the live list, absence proves nothing
            self._unit_failed("live_list", exc, stats)
            stats.aborted = True
            return stats

        seen: set[Any] = set()
        for event in events:
            record = await self._ingest_event(event, FeedSource.LIVE, stats)
            if record is not None:
                seen.add(record.id)
        LIVE_MATCHES.set(len(seen))

        for record in await self._store.find_by_status(MatchStatus.LIVE):
            if record.id in seen:
                continue
            await self._confirm_result(record, stats)

        logger.info("live_pass_completed", **stats.as_dict())
        await self._publish(stats)
        return stats

    # ── Full pass ───────────────────────────────────────────────────────

    async def full_pass(self, days_back: int | None = None, now: datetime | None = None) -> PassStats:
        stats = PassStats(kind="full")
        now = now or utcnow()

        await self._paginate(
            "upcoming",
            lambda page: self._feed.list_upcoming(self._sport, page),
            self._settings.upcoming_max_pages,
            FeedSource.UPCOMING,
            stats,
        )

        for day in ended_days(now, days_back or self._settings.ended_days_back, self._settings.local_timezone):
            await self._paginate(
                f"ended:{day}",
                lambda page, day=day: self._feed.list_ended(self._sport, day, page),
                self._settings.ended_max_pages_per_day,
                FeedSource.ENDED,
                stats,
            )

        await self._paginate(
            "alternate_upcoming",
            lambda page: self._feed.get_alternate_upcoming(self._sport, page),
            self._settings.alternate_upcoming_max_pages,
            FeedSource.ALTERNATE_UPCOMING,
            stats,
        )

        await self.scan_stale_live(stats, now)
        await self.refresh_recent_finished(stats, now)
        await self.backfill_missed_results(stats, now)

        logger.info("full_pass_completed", **stats.as_dict())
        await self._publish(stats)
        return stats

    # ── Recovery scans ──────────────────────────────────────────────────

    async def scan_stale_live(self, stats: PassStats, now: datetime) -> None:
        """
        LIVE records older than the staleness threshold get a forced result
        fetch. Unless the feed still reports them running they are finished
        with their last known score.
        """
        cutoff = now - timedelta(seconds=self._settings.stale_live_threshold_s)
        stale = [
            r for r in await self._store.find_by_status(MatchStatus.LIVE)
            if r.start_time is not None and r.start_time < cutoff
        ][: self._settings.recovery_max_per_scan]

        for record in stale:
            current = record
            candidate = await self._fetch_result(record, stats)
            if candidate is None:
                stats.results_inconclusive += 1
            else:
                current = await self._ingest_candidate(candidate, stats) or record
                if current.status == MatchStatus.FINISHED:
                    stats.results_confirmed += 1
                    continue
                if candidate.status == MatchStatus.LIVE and candidate.minute:
                    # Feed still runs the clock; leave it for the next scan
                    logger.info("stale_live_still_running", match_id=str(record.id), minute=candidate.minute)
                    continue
            finished = mark_finished(current, now)
            await self._resolver.save(finished)
            stats.forced_finished += 1
            logger.info(
                "stale_live_finished",
                match_id=str(record.id),
                primary_id=record.primary_id,
                score=f"{finished.home_team.score}-{finished.away_team.score}",
            )

    async def refresh_recent_finished(self, stats: PassStats, now: datetime) -> None:
        """Re-fetch recently finished fixtures to catch late score corrections."""
        since = now - timedelta(seconds=self._settings.finished_refresh_window_s)
        for record in await self._store.find_finished_since(since, self._settings.recovery_max_per_scan):
            await self._confirm_result(record, stats)

    async def backfill_missed_results(self, stats: PassStats, now: datetime) -> None:
        """SCHEDULED fixtures whose kick-off is well past are checked via the alternate provider first."""
        start = now - timedelta(seconds=self._settings.missed_result_lookback_s)
        end = now - timedelta(seconds=self._settings.missed_result_grace_s)
        for record in await self._store.find_scheduled_between(start, end, self._settings.recovery_max_per_scan):
            await self._confirm_result(record, stats, prefer_alternate=True)

    # ── Scheduling ──────────────────────────────────────────────────────

    async def _loop(self, kind: str, run_pass: Callable[[], Awaitable[PassStats]], interval_s: float) -> None:
        while not self._shutdown.is_set():
            started = time.monotonic()
            try:
                async with atrack_latency(PASS_DURATION, kind=kind):
                    stats = await run_pass()
                PASS_RUNS.labels(kind=kind, outcome="aborted" if stats.aborted else "ok").inc()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                PASS_RUNS.labels(kind=kind, outcome="error").inc()
                logger.error(f"{kind}_pass_error", error=str(exc), exc_info=True)

            wait_s = max(0.0, interval_s - (time.monotonic() - started))
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=wait_s)
            except asyncio.TimeoutError:
                pass

    async def run(self) -> None:
        """Run both loops until shutdown is requested. A running pass finishes first."""
        await asyncio.gather(
            self._loop("live", self.live_pass, self._settings.live_pass_interval_s),
            self._loop("full", self.full_pass, self._settings.full_pass_interval_s),
        )

    def request_shutdown(self) -> None:
        self._shutdown.set()
