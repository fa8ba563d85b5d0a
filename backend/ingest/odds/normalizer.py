"""
Odds normalization.

Upstream odds arrive in several payload shapes depending on the endpoint and
the bookmaker schema version. Each shape has its own matcher; matchers are
tried in a fixed order and the first one that yields any market wins.
Markets from different shapes are never combined, so a stale price from one
endpoint cannot be mixed with a fresh one from another.
"""
from __future__ import annotations

import math
from typing import Any, Callable, Iterable, Optional, Sequence

from shared.models.domain import BothTeamsScoreOdds, MainOdds, NormalizedOdds, OverUnderOdds
from shared.utils.logging import get_logger

logger = get_logger(__name__)

ShapeMatcher = Callable[[Any], Optional[NormalizedOdds]]

GOAL_LINE = 2.5

# Market codes used by the summary and flat shapes
MARKET_FULL_TIME_RESULT = "1_1"
MARKET_GOAL_LINE = "1_3"

PREFERRED_BOOKMAKERS = ("Bet365", "bet365")
# Latest phase first
SUMMARY_PHASES = ("end", "kickoff", "start")

PREMATCH_MAIN_PATHS: tuple[tuple[str, ...], ...] = (
    ("main", "sp", "full_time_result"),
    ("main", "sp", "fulltime_result"),
    ("main", "sp", "match_result"),
)
PREMATCH_GOALS_PATHS: tuple[tuple[str, ...], ...] = (
    ("main", "sp", "goals_over_under"),
    ("goals", "sp", "goals_over_under"),
    ("goals", "sp", "match_goals"),
)
PREMATCH_BTTS_PATHS: tuple[tuple[str, ...], ...] = (
    ("main", "sp", "both_teams_to_score"),
    ("goals", "sp", "both_teams_to_score"),
    ("others", "sp", "both_teams_to_score"),
)

_HOME_NAMES = {"1", "home", "w1"}
_DRAW_NAMES = {"x", "draw", "tie"}
_AWAY_NAMES = {"2", "away", "w2"}


def parse_price(value: Any) -> Optional[float]:
    """
    Convert an upstream price to decimal odds.

    Fractional "a/b" becomes a/b + 1; decimal strings and numbers pass
    through. Anything unparseable, non-positive or non-finite is None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        price = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if "/" in text:
            num, _, den = text.partition("/")
            try:
                numerator, denominator = float(num), float(den)
            except ValueError:
                return None
            if denominator <= 0:
                return None
            price = round(numerator / denominator + 1, 3)
        else:
            try:
                price = float(text)
            except ValueError:
                return None
    else:
        return None
    if not math.isfinite(price) or price <= 0:
        return None
    return price


def _parse_line(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(str(value).strip())
    except ValueError:
        return None


def _main(home: Any, draw: Any, away: Any) -> Optional[MainOdds]:
    market = MainOdds(home=parse_price(home), draw=parse_price(draw), away=parse_price(away))
    return None if market.is_empty else market


def _over_under(over: Any, under: Any) -> Optional[OverUnderOdds]:
    market = OverUnderOdds(over=parse_price(over), under=parse_price(under))
    return None if market.is_empty else market


def _btts(yes: Any, no: Any) -> Optional[BothTeamsScoreOdds]:
    market = BothTeamsScoreOdds(yes=parse_price(yes), no=parse_price(no))
    return None if market.is_empty else market


def _result(
    main: Optional[MainOdds],
    over_under: Optional[OverUnderOdds] = None,
    btts: Optional[BothTeamsScoreOdds] = None,
) -> Optional[NormalizedOdds]:
    odds = NormalizedOdds(main=main, over_under_25=over_under, both_teams_score=btts)
    return None if odds.is_empty else odds


def _dig(obj: Any, path: Sequence[str]) -> Any:
    for part in path:
        if not isinstance(obj, dict):
            return None
        obj = obj.get(part)
    return obj


def _first_at(obj: Any, paths: Iterable[Sequence[str]]) -> Any:
    for path in paths:
        found = _dig(obj, path)
        if found:
            return found
    return None


def _is_goal_line(entry: dict[str, Any]) -> bool:
    line = _parse_line(entry.get("handicap"))
    return line is None or line == GOAL_LINE


def _is_market_code(key: Any) -> bool:
    head, sep, tail = str(key).partition("_")
    return bool(sep) and head.isdigit() and tail.isdigit()


# ── Shape 1: per-bookmaker summary ──────────────────────────────────────
def match_bookmaker_summary(payload: Any) -> Optional[NormalizedOdds]:
    """
    {"Bet365": {"odds": {"end": {"1_1": {home_od, draw_od, away_od}, "1_3": {...}}, ...}}}
    """
    if not isinstance(payload, dict):
        return None
    books = [b for b, v in payload.items() if isinstance(v, dict) and isinstance(v.get("odds"), dict)]
    if not books:
        return None
    ordered = [b for b in PREFERRED_BOOKMAKERS if b in books] + [b for b in books if b not in PREFERRED_BOOKMAKERS]

    for book in ordered:
        phases = payload[book]["odds"]
        for phase in SUMMARY_PHASES:
            markets = phases.get(phase)
            if not isinstance(markets, dict):
                continue
            result = _from_market_codes(markets)
            if result is not None:
                return result
    return None


# ── Shape 2: flat market-code map ───────────────────────────────────────
def match_market_codes(payload: Any) -> Optional[NormalizedOdds]:
    """
    {"odds": {"1_1": [{home_od, draw_od, away_od, add_time}, ...], "1_3": [...]}}
    Lists are newest first.
    """
    if not isinstance(payload, dict):
        return None
    markets = payload.get("odds") if isinstance(payload.get("odds"), dict) else payload
    if not any(_is_market_code(k) and isinstance(v, list) for k, v in markets.items()):
        return None
    return _from_market_codes(markets)


def _from_market_codes(markets: dict[str, Any]) -> Optional[NormalizedOdds]:
    main_entries = markets.get(MARKET_FULL_TIME_RESULT)
    if isinstance(main_entries, dict):
        main_entries = [main_entries]
    main = None
    for entry in main_entries or []:
        if isinstance(entry, dict):
            main = _main(entry.get("home_od"), entry.get("draw_od"), entry.get("away_od"))
            if main is not None:
                break

    line_entries = markets.get(MARKET_GOAL_LINE)
    if isinstance(line_entries, dict):
        line_entries = [line_entries]
    over_under = None
    for entry in line_entries or []:
        if isinstance(entry, dict) and _is_goal_line(entry):
            over_under = _over_under(entry.get("over_od"), entry.get("under_od"))
            if over_under is not None:
                break

    return _result(main, over_under)


# ── Shape 3: structured pre-match payload ───────────────────────────────
def match_prematch(payload: Any) -> Optional[NormalizedOdds]:
    """
    [{"FI": ..., "main": {"sp": {"full_time_result": {"odds": [...]}}}, "goals": {"sp": {...}}}]
    Sub-markets are looked up along several book-specific paths.
    """
    doc = payload[0] if isinstance(payload, list) and payload else payload
    if not isinstance(doc, dict) or not any(k in doc for k in ("main", "goals", "others")):
        return None

    main = None
    market = _first_at(doc, PREMATCH_MAIN_PATHS)
    if isinstance(market, dict):
        main = _main_from_outcomes(market.get("odds") or [])

    over_under = None
    market = _first_at(doc, PREMATCH_GOALS_PATHS)
    if isinstance(market, dict):
        over, under = None, None
        for entry in market.get("odds") or []:
            if not isinstance(entry, dict):
                continue
            line = _parse_line(entry.get("name") or entry.get("handicap"))
            if line != GOAL_LINE:
                continue
            header = str(entry.get("header", "")).strip().lower()
            if header == "over":
                over = entry.get("odds")
            elif header == "under":
                under = entry.get("odds")
        over_under = _over_under(over, under)

    btts = None
    market = _first_at(doc, PREMATCH_BTTS_PATHS)
    if isinstance(market, dict):
        yes, no = None, None
        for entry in market.get("odds") or []:
            if not isinstance(entry, dict):
                continue
            name = str(entry.get("name") or entry.get("header") or "").strip().lower()
            if name == "yes":
                yes = entry.get("odds")
            elif name == "no":
                no = entry.get("odds")
        btts = _btts(yes, no)

    return _result(main, over_under, btts)


def _main_from_outcomes(outcomes: list[Any]) -> Optional[MainOdds]:
    prices: dict[str, Any] = {}
    for entry in outcomes:
        if not isinstance(entry, dict):
            continue
        name = str(entry.get("name", "")).strip().lower()
        if name in _HOME_NAMES:
            prices["home"] = entry.get("odds")
        elif name in _DRAW_NAMES:
            prices["draw"] = entry.get("odds")
        elif name in _AWAY_NAMES:
            prices["away"] = entry.get("odds")
    if not prices and len(outcomes) == 3 and all(isinstance(e, dict) for e in outcomes):
        # Unlabelled 1X2 lists are ordered home, draw, away
        prices = dict(zip(("home", "draw", "away"), (e.get("odds") for e in outcomes)))
    return _main(prices.get("home"), prices.get("draw"), prices.get("away"))


# ── Shape 4: simple named outcomes ──────────────────────────────────────
def match_named_outcomes(payload: Any) -> Optional[NormalizedOdds]:
    """[{"name": "1", "odds": "2.10"}, {"name": "X", ...}, {"name": "Over 2.5", ...}]"""
    if not isinstance(payload, list) or not payload:
        return None
    if not all(isinstance(e, dict) and "name" in e and "odds" in e for e in payload):
        return None

    prices: dict[str, Any] = {}
    for entry in payload:
        name = str(entry["name"]).strip().lower()
        if name in _HOME_NAMES:
            prices["home"] = entry["odds"]
        elif name in _DRAW_NAMES:
            prices["draw"] = entry["odds"]
        elif name in _AWAY_NAMES:
            prices["away"] = entry["odds"]
        elif name in ("over", "over 2.5"):
            prices["over"] = entry["odds"]
        elif name in ("under", "under 2.5"):
            prices["under"] = entry["odds"]
        elif name in ("yes", "btts yes"):
            prices["yes"] = entry["odds"]
        elif name in ("no", "btts no"):
            prices["no"] = entry["odds"]

    return _result(
        _main(prices.get("home"), prices.get("draw"), prices.get("away")),
        _over_under(prices.get("over"), prices.get("under")),
        _btts(prices.get("yes"), prices.get("no")),
    )


DEFAULT_MATCHERS: tuple[ShapeMatcher, ...] = (
    match_bookmaker_summary,
    match_market_codes,
    match_prematch,
    match_named_outcomes,
)


class OddsNormalizer:
    """Dispatches a payload to the first shape matcher that yields a market."""

    def __init__(self, matchers: Sequence[ShapeMatcher] = DEFAULT_MATCHERS) -> None:
        self._matchers = tuple(matchers)

    def normalize(self, payload: Any) -> NormalizedOdds:
        for matcher in self._matchers:
            result = matcher(payload)
            if result is not None:
                logger.debug("odds_shape_matched", matcher=matcher.__name__)
                return result
        return NormalizedOdds()
