"""
Merge rules for canonical match records.

Merging is commutative in effect and idempotent: re-applying the same
candidate changes nothing, and ``updated_at`` only moves when a field did.
Populated identifiers, logos and image ids are never cleared by a later,
emptier sighting.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from shared.models.domain import MatchCandidate, MatchRecord, TeamInfo, utcnow
from shared.models.enums import FeedSource, MatchStatus

DEFAULT_RETRACTION_WINDOW = timedelta(minutes=10)


def _fill(existing: Optional[str], incoming: Optional[str]) -> Optional[str]:
    return existing if existing else incoming


def next_status(
    current: MatchStatus,
    incoming: MatchStatus,
    source: FeedSource,
    finished_at: Optional[datetime],
    now: datetime,
    retraction_window: timedelta = DEFAULT_RETRACTION_WINDOW,
) -> MatchStatus:
    """
    Status after observing ``incoming``.

    Forward moves are always taken. Nothing returns to SCHEDULED. FINISHED
    goes back to LIVE only when the live feed reports the fixture again
    shortly after it was marked finished.
    """
    if incoming == current:
        return current
    if incoming == MatchStatus.SCHEDULED:
        return current
    if current == MatchStatus.FINISHED and incoming == MatchStatus.LIVE:
        if source == FeedSource.LIVE and finished_at is not None and now - finished_at <= retraction_window:
            return MatchStatus.LIVE
        return current
    return incoming


def _merge_team(existing: TeamInfo, incoming: TeamInfo, take_score: bool) -> TeamInfo:
    return TeamInfo(
        name=existing.name or incoming.name,
        image_id=_fill(existing.image_id, incoming.image_id),
        logo_url=existing.logo_url or incoming.logo_url,
        score=incoming.score if take_score else existing.score,
    )


def _finalize(original: MatchRecord, merged: MatchRecord, now: datetime) -> MatchRecord:
    merged.logos_resolved = merged.has_logos
    before = original.model_dump(exclude={"updated_at"})
    after = merged.model_dump(exclude={"updated_at"})
    if before == after:
        return original
    merged.updated_at = now
    return merged


def record_from_candidate(candidate: MatchCandidate, now: datetime | None = None) -> MatchRecord:
    """First sighting of a fixture."""
    now = now or utcnow()
    record = MatchRecord(
        primary_id=candidate.primary_id,
        secondary_id=candidate.secondary_id,
        sport=candidate.sport,
        league=candidate.league,
        country=candidate.country,
        start_time=candidate.start_time,
        status=candidate.status,
        minute=candidate.minute if candidate.status == MatchStatus.LIVE else "",
        home_team=candidate.home_team,
        away_team=candidate.away_team,
        odds=candidate.odds,
        over_under_25=candidate.over_under_25,
        both_teams_score=candidate.both_teams_score,
        timeline=list(candidate.timeline),
        finished_at=now if candidate.status == MatchStatus.FINISHED else None,
        created_at=now,
        updated_at=now,
    )
    record.logos_resolved = record.has_logos
    return record


def merge(
    existing: MatchRecord,
    candidate: MatchCandidate,
    now: datetime | None = None,
    retraction_window: timedelta = DEFAULT_RETRACTION_WINDOW,
) -> MatchRecord:
    """Apply one upstream sighting to a stored record."""
    now = now or utcnow()
    status = next_status(
        existing.status, candidate.status, candidate.source, existing.finished_at, now, retraction_window
    )
    # A score is only trusted from a sighting whose status was adopted,
    # so a late "upcoming" 0-0 cannot overwrite a live score.
    take_score = candidate.score_known and candidate.status == status

    finished_at = existing.finished_at
    if status == MatchStatus.FINISHED and existing.status != MatchStatus.FINISHED:
        finished_at = now
    elif status != MatchStatus.FINISHED:
        finished_at = None

    if status == MatchStatus.LIVE:
        minute = candidate.minute if candidate.status == MatchStatus.LIVE and candidate.minute else existing.minute
    else:
        minute = ""

    league = existing.league.model_copy(
        update={
            "name": existing.league.name or candidate.league.name,
            "id": _fill(existing.league.id, candidate.league.id),
        }
    )

    merged = existing.model_copy(
        update={
            "primary_id": _fill(existing.primary_id, candidate.primary_id),
            "secondary_id": _fill(existing.secondary_id, candidate.secondary_id),
            "sport": existing.sport or candidate.sport,
            "league": league,
            "country": candidate.country if existing.country in ("", "UN") else existing.country,
            "start_time": existing.start_time or candidate.start_time,
            "status": status,
            "minute": minute,
            "home_team": _merge_team(existing.home_team, candidate.home_team, take_score),
            "away_team": _merge_team(existing.away_team, candidate.away_team, take_score),
            "odds": candidate.odds or existing.odds,
            "over_under_25": candidate.over_under_25 or existing.over_under_25,
            "both_teams_score": candidate.both_teams_score or existing.both_teams_score,
            "timeline": list(candidate.timeline) if candidate.timeline else existing.timeline,
            "finished_at": finished_at,
        }
    )
    return _finalize(existing, merged, now)


def merge_records(winner: MatchRecord, loser: MatchRecord, now: datetime | None = None) -> MatchRecord:
    """
    Fold a duplicate stored record into the one being kept.

    The winner's status, scores and names stand; gaps in identifiers,
    logos, odds and timeline are filled from the loser.
    """
    now = now or utcnow()
    merged = winner.model_copy(
        update={
            "primary_id": _fill(winner.primary_id, loser.primary_id),
            "secondary_id": _fill(winner.secondary_id, loser.secondary_id),
            "league": winner.league.model_copy(update={"id": _fill(winner.league.id, loser.league.id)}),
            "country": loser.country if winner.country in ("", "UN") else winner.country,
            "start_time": winner.start_time or loser.start_time,
            "home_team": _merge_team(winner.home_team, loser.home_team, take_score=False),
            "away_team": _merge_team(winner.away_team, loser.away_team, take_score=False),
            "odds": winner.odds or loser.odds,
            "over_under_25": winner.over_under_25 or loser.over_under_25,
            "both_teams_score": winner.both_teams_score or loser.both_teams_score,
            "timeline": winner.timeline if len(winner.timeline) >= len(loser.timeline) else loser.timeline,
            "finished_at": winner.finished_at or (loser.finished_at if winner.status == MatchStatus.FINISHED else None),
            "created_at": min(winner.created_at, loser.created_at),
        }
    )
    return _finalize(winner, merged, now)


def mark_finished(record: MatchRecord, now: datetime | None = None) -> MatchRecord:
    """Force a LIVE record to FINISHED keeping its last known score."""
    now = now or utcnow()
    if record.status == MatchStatus.FINISHED:
        return record
    merged = record.model_copy(update={"status": MatchStatus.FINISHED, "minute": "", "finished_at": now})
    return _finalize(record, merged, now)
