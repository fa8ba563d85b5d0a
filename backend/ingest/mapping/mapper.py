"""
Upstream event → MatchCandidate conversion.

Pure and deterministic: no I/O, no clock reads. Events without a usable
start time are dropped (None), not treated as errors.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from shared.config import Settings, get_settings
from shared.models.domain import LeagueRef, MatchCandidate, TeamInfo
from shared.models.enums import FeedSource, MatchStatus
from shared.utils.logging import get_logger

from ingest.mapping.timeline import TimelineClassifier, parse_timeline

logger = get_logger(__name__)

UNKNOWN_COUNTRY = "UN"

# time_status values that override the timer/score heuristics
_NOT_STARTED = "0"


def _clean_id(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _text(value: Any, fallback: str = "") -> str:
    if isinstance(value, (str, int)) and not isinstance(value, bool):
        text = str(value).strip()
        if text:
            return text
    return fallback


def parse_start_time(event: dict[str, Any]) -> Optional[datetime]:
    """Unix seconds from ``time`` (or ``start_time``) as an aware UTC datetime."""
    raw = event.get("time")
    if raw in (None, ""):
        raw = event.get("start_time")
    try:
        seconds = int(str(raw).strip())
    except (TypeError, ValueError):
        return None
    if seconds <= 0:
        return None
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _split_score(text: str) -> Optional[tuple[int, int]]:
    for sep in ("-", ":"):
        if sep in text:
            home, _, away = text.partition(sep)
            try:
                return int(home.strip()), int(away.strip())
            except ValueError:
                return None
    return None


def parse_score(ss: Any) -> Optional[tuple[int, int]]:
    """
    Parse "H-A" / "H:A" strings or a period map such as {"1": "1-0", "2": "2-1"}.

    For maps the numerically highest period key is full time. Returns None
    when nothing parseable is present; callers fall back to 0-0.
    """
    if isinstance(ss, str):
        return _split_score(ss.strip()) if ss.strip() else None
    if isinstance(ss, dict):
        periods = sorted((int(k) for k in ss if str(k).isdigit()), reverse=True)
        if not periods:
            return None
        value = ss.get(str(periods[0]), ss.get(periods[0]))
        if isinstance(value, dict):
            # {"home": "2", "away": "1"} style period entries
            value = f"{value.get('home', '')}-{value.get('away', '')}"
        return _split_score(str(value)) if value is not None else None
    return None


def parse_country(event: dict[str, Any]) -> str:
    cc = _clean_id(event.get("cc"))
    if cc:
        return cc.upper()
    league_raw = event.get("league") if isinstance(event.get("league"), dict) else {}
    league_name = _text(league_raw.get("name"))
    if league_name:
        return league_name.split()[0].upper()
    return UNKNOWN_COUNTRY


def parse_minute(timer: Any) -> str:
    if not isinstance(timer, dict):
        return ""
    tm = _clean_id(timer.get("tm"))
    if not tm:
        return ""
    added = _clean_id(timer.get("ta"))
    if added and added != "0":
        return f"{tm}+{added}'"
    return f"{tm}'"


class EventMapper:
    """Maps raw upstream events to canonical match candidates."""

    def __init__(self, settings: Settings | None = None, classifier: TimelineClassifier | None = None) -> None:
        self._settings = settings or get_settings()
        self._classifier = classifier or TimelineClassifier()

    def logo_url(self, image_id: Optional[str]) -> str:
        if not image_id:
            return ""
        return self._settings.logo_cdn_template.format(image_id=image_id)

    def _team(self, raw: Any, fallback_name: str, score: int) -> TeamInfo:
        raw = raw if isinstance(raw, dict) else {}
        image_id = _clean_id(raw.get("image_id")) or _clean_id(raw.get("IG")) or _clean_id(raw.get("id"))
        return TeamInfo(
            name=_text(raw.get("name"), fallback_name),
            image_id=image_id,
            logo_url=self.logo_url(image_id),
            score=score,
        )

    def _status(self, event: dict[str, Any], source: FeedSource, score: Optional[tuple[int, int]]) -> MatchStatus:
        if source == FeedSource.ALTERNATE_UPCOMING:
            return MatchStatus.SCHEDULED
        if event.get("timer"):
            return MatchStatus.LIVE
        if source == FeedSource.LIVE:
            return MatchStatus.LIVE
        if str(event.get("time_status", "")).strip() == _NOT_STARTED:
            return MatchStatus.SCHEDULED
        if score is not None:
            return MatchStatus.FINISHED
        return MatchStatus.SCHEDULED

    def map(self, event: dict[str, Any], source: FeedSource) -> Optional[MatchCandidate]:
        if not isinstance(event, dict):
            return None
        start_time = parse_start_time(event)
        if start_time is None:
            logger.debug("event_dropped_no_start_time", source=source.value, event_id=event.get("id"))
            return None

        if source.is_alternate:
            primary_id = _clean_id(event.get("our_event_id"))
            secondary_id = _clean_id(event.get("FI")) or _clean_id(event.get("id"))
        else:
            primary_id = _clean_id(event.get("id"))
            secondary_id = _clean_id(event.get("bet365_id"))

        score = None if source == FeedSource.ALTERNATE_UPCOMING else parse_score(event.get("ss"))
        status = self._status(event, source, score)
        home_score, away_score = score or (0, 0)

        league_raw = event.get("league") if isinstance(event.get("league"), dict) else {}
        league = LeagueRef(
            name=_text(league_raw.get("name"), "Unknown League"),
            id=_clean_id(league_raw.get("id")) or _clean_id(event.get("league_id")),
        )

        home = self._team(event.get("home"), "Home", home_score)
        away = self._team(event.get("away"), "Away", away_score)

        timeline = []
        if isinstance(event.get("events"), list):
            timeline = parse_timeline(event["events"], home.name, away.name, self._classifier)

        return MatchCandidate(
            source=source,
            primary_id=primary_id,
            secondary_id=secondary_id,
            sport=self._settings.feed_sport_name,
            league=league,
            country=parse_country(event),
            start_time=start_time,
            status=status,
            minute=parse_minute(event.get("timer")) if status == MatchStatus.LIVE else "",
            home_team=home,
            away_team=away,
            score_known=score is not None,
            timeline=timeline,
        )
