"""
Pydantic v2 domain models shared across matchsync services.
These are the canonical wire/internal representations, NOT ORM models.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.models.enums import FeedSource, MatchStatus, TeamSide, TimelineEventType, WSServerMsgType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


# ── Reference entities ──────────────────────────────────────────────────
class LeagueRef(DomainModel):
    name: str = "Unknown League"
    id: Optional[str] = None


class TeamInfo(DomainModel):
    name: str
    image_id: Optional[str] = None
    logo_url: str = ""
    score: int = 0


# ── Odds ────────────────────────────────────────────────────────────────
class MainOdds(DomainModel):
    """1X2 decimal prices."""
    home: Optional[float] = None
    draw: Optional[float] = None
    away: Optional[float] = None

    @property
    def is_empty(self) -> bool:
        return self.home is None and self.draw is None and self.away is None


class OverUnderOdds(DomainModel):
    over: Optional[float] = None
    under: Optional[float] = None

    @property
    def is_empty(self) -> bool:
        return self.over is None and self.under is None


class BothTeamsScoreOdds(DomainModel):
    yes: Optional[float] = None
    no: Optional[float] = None

    @property
    def is_empty(self) -> bool:
        return self.yes is None and self.no is None


class NormalizedOdds(DomainModel):
    main: Optional[MainOdds] = None
    over_under_25: Optional[OverUnderOdds] = None
    both_teams_score: Optional[BothTeamsScoreOdds] = None

    @property
    def is_empty(self) -> bool:
        return self.main is None and self.over_under_25 is None and self.both_teams_score is None


# ── Timeline ────────────────────────────────────────────────────────────
class TimelineEntry(DomainModel):
    minute: str = ""
    type: TimelineEventType = TimelineEventType.UNKNOWN
    text: str
    side: TeamSide = TeamSide.HOME
    score: Optional[str] = None


# ── Match ───────────────────────────────────────────────────────────────
class MatchCandidate(DomainModel):
    """
    One upstream event converted to canonical fields, before resolution.

    ``score_known`` is False when the event carried no parseable score, so
    the 0-0 placeholder must not overwrite a stored score.
    """
    source: FeedSource
    primary_id: Optional[str] = None
    secondary_id: Optional[str] = None
    sport: str = "Football"
    league: LeagueRef = Field(default_factory=LeagueRef)
    country: str = "UN"
    start_time: datetime
    status: MatchStatus = MatchStatus.SCHEDULED
    minute: str = ""
    home_team: TeamInfo
    away_team: TeamInfo
    score_known: bool = False
    odds: Optional[MainOdds] = None
    over_under_25: Optional[OverUnderOdds] = None
    both_teams_score: Optional[BothTeamsScoreOdds] = None
    timeline: list[TimelineEntry] = Field(default_factory=list)


class MatchRecord(DomainModel):
    """Canonical record: one per real-world fixture."""
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    primary_id: Optional[str] = None
    secondary_id: Optional[str] = None
    sport: str = "Football"
    league: LeagueRef = Field(default_factory=LeagueRef)
    country: str = "UN"
    start_time: Optional[datetime] = None
    status: MatchStatus = MatchStatus.SCHEDULED
    minute: str = ""
    home_team: TeamInfo
    away_team: TeamInfo
    odds: Optional[MainOdds] = None
    over_under_25: Optional[OverUnderOdds] = None
    both_teams_score: Optional[BothTeamsScoreOdds] = None
    timeline: list[TimelineEntry] = Field(default_factory=list)
    logos_resolved: bool = False
    finished_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def has_logos(self) -> bool:
        return bool(self.home_team.logo_url and self.away_team.logo_url)

    @property
    def identifiers(self) -> list[str]:
        return [i for i in (self.primary_id, self.secondary_id) if i]

    def normalized_odds(self) -> NormalizedOdds:
        return NormalizedOdds(
            main=self.odds,
            over_under_25=self.over_under_25,
            both_teams_score=self.both_teams_score,
        )


# ── Read API ────────────────────────────────────────────────────────────
class LeagueSummary(DomainModel):
    name: str
    id: Optional[str] = None
    count: int = 0


class CountryLeagues(DomainModel):
    country: str
    leagues: list[LeagueSummary] = Field(default_factory=list)


class WSEnvelope(DomainModel):
    """Server → client WebSocket message."""
    type: WSServerMsgType
    data: Any = None
    ts: datetime = Field(default_factory=utcnow)
