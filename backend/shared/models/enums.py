"""Domain enumerations for matchsync."""
from __future__ import annotations

from enum import Enum


class MatchStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    LIVE = "LIVE"
    FINISHED = "FINISHED"

    @property
    def rank(self) -> int:
        """Preference when choosing between duplicate records."""
        return _STATUS_RANK[self]


_STATUS_RANK: dict[MatchStatus, int] = {
    MatchStatus.SCHEDULED: 1,
    MatchStatus.FINISHED: 2,
    MatchStatus.LIVE: 3,
}


class FeedSource(str, Enum):
    """Which upstream list an event was read from."""
    LIVE = "live"
    UPCOMING = "upcoming"
    ENDED = "ended"
    RESULT = "result"
    ALTERNATE_UPCOMING = "alternate_upcoming"
    ALTERNATE_RESULT = "alternate_result"

    @property
    def is_alternate(self) -> bool:
        return self in (FeedSource.ALTERNATE_UPCOMING, FeedSource.ALTERNATE_RESULT)


class TimelineEventType(str, Enum):
    GOAL = "goal"
    CARD = "card"
    SUBSTITUTION = "substitution"
    VAR = "var"
    UNKNOWN = "unknown"


class TeamSide(str, Enum):
    HOME = "home"
    AWAY = "away"


class WSServerMsgType(str, Enum):
    SNAPSHOT = "snapshot"
    PONG = "pong"
    ERROR = "error"
