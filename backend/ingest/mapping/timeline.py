"""
Timeline parsing for upstream event views.

Upstream timelines are free-text lines such as
"23' - 1st Goal - (Inter) - Lautaro 1-0". Classification is driven by an
ordered keyword rule list; the first matching rule wins.

Side detection looks for the away team's name inside the text and defaults
to home. It is a heuristic and can misattribute when one team name contains
the other.
"""
from __future__ import annotations

import re
from typing import Any, Iterable, Optional, Sequence

from shared.models.domain import TimelineEntry
from shared.models.enums import TeamSide, TimelineEventType

_MINUTE_RE = re.compile(r"^\s*([0-9][0-9'+]*)")
_SCORE_RE = re.compile(r"\b([0-9]+)-([0-9]+)\b")

# VAR reviews often mention the goal under review, so VAR is checked first
DEFAULT_RULES: tuple[tuple[str, TimelineEventType], ...] = (
    (r"\bvar\b", TimelineEventType.VAR),
    (r"goal", TimelineEventType.GOAL),
    (r"card", TimelineEventType.CARD),
    (r"substitut", TimelineEventType.SUBSTITUTION),
)


class TimelineClassifier:
    """Maps timeline text to a TimelineEventType using ordered keyword rules."""

    def __init__(self, rules: Sequence[tuple[str, TimelineEventType]] = DEFAULT_RULES) -> None:
        self._rules = tuple((re.compile(pattern, re.IGNORECASE), tag) for pattern, tag in rules)

    def classify(self, text: str) -> TimelineEventType:
        for pattern, tag in self._rules:
            if pattern.search(text):
                return tag
        return TimelineEventType.UNKNOWN


def extract_minute(text: str) -> str:
    """Leading minute token, normalised to end with a quote ("23'", "45+2'")."""
    match = _MINUTE_RE.match(text)
    if not match:
        return ""
    token = match.group(1).rstrip("'")
    return f"{token}'" if token else ""


def extract_score(text: str) -> Optional[str]:
    match = _SCORE_RE.search(text)
    return f"{match.group(1)}-{match.group(2)}" if match else None


def detect_side(text: str, home_name: str, away_name: str) -> TeamSide:
    """Away when the away name appears in the text, otherwise home."""
    if away_name and away_name.lower() in text.lower():
        return TeamSide.AWAY
    return TeamSide.HOME


def parse_timeline(
    entries: Iterable[Any],
    home_name: str,
    away_name: str,
    classifier: TimelineClassifier | None = None,
) -> list[TimelineEntry]:
    """
    Parse raw upstream timeline items ({"text": ...} dicts or plain strings).

    Entries with neither a minute nor a goal mention are dropped; they are
    kick-off/period markers and stat lines.
    """
    classifier = classifier or TimelineClassifier()
    parsed: list[TimelineEntry] = []
    for item in entries:
        text = item.get("text") if isinstance(item, dict) else item
        if not isinstance(text, str) or not text.strip():
            continue
        text = text.strip()
        minute = extract_minute(text)
        if not minute and "goal" not in text.lower():
            continue
        parsed.append(
            TimelineEntry(
                minute=minute,
                type=classifier.classify(text),
                text=text,
                side=detect_side(text, home_name, away_name),
                score=extract_score(text),
            )
        )
    return parsed
