"""
Fuzzy fixture identity.

Feeds assign inconsistent ids to the same fixture, so identity falls back to
(league, home team, away team, start time bucket).
"""
from __future__ import annotations

import math
import re
import unicodedata
from datetime import datetime
from typing import Optional

from shared.models.domain import MatchCandidate, MatchRecord

_WS_RE = re.compile(r"\s+")

FuzzyKey = tuple[str, str, str, int]


def normalize_name(value: Optional[str]) -> str:
    """Trim, case-fold and collapse whitespace. Accents are kept apart from NFC composition."""
    if not value:
        return ""
    text = unicodedata.normalize("NFC", value)
    return _WS_RE.sub(" ", text).strip().casefold()


def time_bucket(start_time: datetime, bucket_s: int) -> int:
    """Round the start time to the nearest bucket (half-up)."""
    return int(math.floor(start_time.timestamp() / bucket_s + 0.5))


def identity_triple(match: MatchRecord | MatchCandidate) -> Optional[tuple[str, str, str]]:
    league = normalize_name(match.league.name)
    home = normalize_name(match.home_team.name)
    away = normalize_name(match.away_team.name)
    if not (league and home and away):
        return None
    return league, home, away


def fuzzy_key(match: MatchRecord | MatchCandidate, bucket_s: int) -> Optional[FuzzyKey]:
    """Return the fuzzy identity key, or None when any component is missing."""
    triple = identity_triple(match)
    if triple is None or match.start_time is None:
        return None
    return (*triple, time_bucket(match.start_time, bucket_s))
