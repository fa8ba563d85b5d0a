"""
MatchKeyResolver: finds the stored record a candidate belongs to and writes
the merged result.

Resolution order is primary id, then secondary id, then the fuzzy key
(league, home, away, start time within a window). There is no in-process
locking; concurrent passes converge through the store's unique primary_id
constraint and the conflict recovery in ``ingest``.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from shared.config import Settings, get_settings
from shared.errors import IdentityConflict
from shared.models.domain import MatchCandidate, MatchRecord, utcnow
from shared.store.base import MatchStore
from shared.utils.logging import get_logger
from shared.utils.metrics import IDENTITY_CONFLICTS, STATUS_TRANSITIONS, UPSERTS

from reconciler.dedupe import pick_better
from reconciler.merge import merge, merge_records, record_from_candidate

logger = get_logger(__name__)

MAX_CONFLICT_RETRIES = 3


class IngestResult(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


class MatchKeyResolver:
    """Resolves candidates against the store and applies merge rules."""

    def __init__(self, store: MatchStore, settings: Settings | None = None) -> None:
        self._store = store
        self._settings = settings or get_settings()
        self._retraction_window = timedelta(seconds=self._settings.finished_retraction_window_s)

    async def resolve(self, candidate: MatchCandidate) -> Optional[MatchRecord]:
        """Return the stored record for this fixture, or None on first sighting."""
        by_primary = None
        by_secondary = None
        if candidate.primary_id:
            by_primary = await self._store.find_by_primary_id(candidate.primary_id)
        if candidate.secondary_id:
            by_secondary = await self._store.find_by_secondary_id(candidate.secondary_id)

        if by_primary and by_secondary and by_primary.id != by_secondary.id:
            # The candidate links two records created from different feeds
            return await self._fold_duplicates([by_primary, by_secondary])
        if by_primary or by_secondary:
            return by_primary or by_secondary
        return await self._resolve_fuzzy(candidate)

    async def _resolve_fuzzy(self, candidate: MatchCandidate) -> Optional[MatchRecord]:
        hits = await self._store.find_by_fuzzy_key(
            candidate.league.name,
            candidate.home_team.name,
            candidate.away_team.name,
            candidate.start_time,
            self._settings.fuzzy_window_s,
        )
        if not hits:
            return None
        if len(hits) == 1:
            return hits[0]
        return await self._fold_duplicates(hits)

    async def _fold_duplicates(self, hits: list[MatchRecord]) -> MatchRecord:
        """Collapse transient duplicates into the best-ranked record."""
        winner = hits[0]
        for other in hits[1:]:
            winner = pick_better(winner, other)
        survivor = winner
        for other in hits:
            if other.id == winner.id:
                continue
            survivor = merge_records(survivor, other)
            await self._store.delete(other.id)
            logger.info(
                "duplicate_folded",
                kept=str(winner.id),
                removed=str(other.id),
                primary_id=other.primary_id,
                secondary_id=other.secondary_id,
            )
        if survivor is not winner:
            await self._upsert_with_recovery(survivor, None)
        return survivor

    async def ingest(self, candidate: MatchCandidate, now: datetime | None = None) -> tuple[MatchRecord, IngestResult]:
        """Resolve, merge and persist one candidate."""
        now = now or utcnow()
        existing = await self.resolve(candidate)
        if existing is None:
            record = record_from_candidate(candidate, now)
            result = IngestResult.CREATED
        else:
            record = merge(existing, candidate, now, self._retraction_window)
            if record is existing:
                UPSERTS.labels(source=candidate.source.value, result=IngestResult.UNCHANGED.value).inc()
                return existing, IngestResult.UNCHANGED
            result = IngestResult.UPDATED
            if record.status != existing.status:
                STATUS_TRANSITIONS.labels(from_status=existing.status.value, to_status=record.status.value).inc()
                logger.info(
                    "match_status_changed",
                    match_id=str(record.id),
                    primary_id=record.primary_id,
                    from_status=existing.status.value,
                    to_status=record.status.value,
                    source=candidate.source.value,
                )

        stored = await self._upsert_with_recovery(record, candidate, now)
        UPSERTS.labels(source=candidate.source.value, result=result.value).inc()
        return stored, result

    async def save(self, record: MatchRecord) -> MatchRecord:
        """Persist a record produced outside ``ingest`` (recovery scans, cleanup)."""
        return await self._upsert_with_recovery(record, None)

    async def _upsert_with_recovery(
        self,
        record: MatchRecord,
        candidate: Optional[MatchCandidate],
        now: datetime | None = None,
    ) -> MatchRecord:
        """
        Upsert; on a primary_id uniqueness violation, merge into the row that
        owns the id and delete the orphan being written.
        """
        current = record
        for attempt in range(1, MAX_CONFLICT_RETRIES + 1):
            try:
                return await self._store.upsert(current)
            except IdentityConflict as exc:
                IDENTITY_CONFLICTS.inc()
                owner = await self._store.find_by_primary_id(exc.primary_id)
                if owner is None or owner.id == current.id:
                    # The owner vanished between write and re-fetch; retry as is
                    logger.warning("identity_conflict_retry", primary_id=exc.primary_id, attempt=attempt)
                    continue
                winner = pick_better(owner, current)
                loser = current if winner is owner else owner
                # Keep the owner's row id so the unique id stays where it is
                survivor = merge_records(winner, loser, now).model_copy(update={"id": owner.id})
                if candidate is not None:
                    survivor = merge(survivor, candidate, now, self._retraction_window)
                await self._store.delete(current.id)
                logger.info(
                    "identity_conflict_resolved",
                    primary_id=exc.primary_id,
                    kept=str(owner.id),
                    orphan=str(current.id),
                    attempt=attempt,
                )
                current = survivor
        try:
            return await self._store.upsert(current)
        except IdentityConflict as exc:
            IDENTITY_CONFLICTS.inc()
            logger.error(
                "identity_conflict_unresolved",
                primary_id=exc.primary_id,
                record_id=str(current.id),
                attempts=MAX_CONFLICT_RETRIES,
            )
            return current
