"""
Abstract base class for upstream feed providers.
Defines the contract the reconciler and the read API consume.

All methods return raw upstream documents; mapping into canonical models is
done by ingest.mapping. Failures are raised as UpstreamUnavailable or
UpstreamMalformed and are handled by the caller per unit of work.
"""
from __future__ import annotations

import abc
from typing import Any, Optional


class FeedProvider(abc.ABC):
    """Vendor-neutral upstream feed capability."""

    name: str = "feed"

    async def start(self) -> None:
        """Acquire network resources."""

    async def close(self) -> None:
        """Release network resources."""

    # ── Event lists ─────────────────────────────────────────────────────
    @abc.abstractmethod
    async def list_live(self, sport: str) -> list[dict[str, Any]]:
        ...

    @abc.abstractmethod
    async def list_upcoming(self, sport: str, page: int) -> list[dict[str, Any]]:
        """One page of upcoming events; an empty page ends pagination."""

    @abc.abstractmethod
    async def list_ended(self, sport: str, day: str, page: int = 1) -> list[dict[str, Any]]:
        """One page of ended events for ``day`` (YYYYMMDD)."""

    @abc.abstractmethod
    async def get_alternate_upcoming(self, sport: str, page: int) -> list[dict[str, Any]]:
        ...

    # ── Single event lookups ────────────────────────────────────────────
    @abc.abstractmethod
    async def get_event_by_id(self, event_id: str) -> Optional[dict[str, Any]]:
        """Authoritative event view, including the timeline when available."""

    @abc.abstractmethod
    async def get_alternate_result(self, fixture_id: str) -> Optional[dict[str, Any]]:
        ...

    # ── Odds and tables ─────────────────────────────────────────────────
    @abc.abstractmethod
    async def get_prematch_odds(self, fixture_id: str) -> Any:
        ...

    @abc.abstractmethod
    async def get_odds_summary(self, event_id: str) -> Any:
        ...

    @abc.abstractmethod
    async def get_event_odds(self, event_id: str) -> Any:
        ...

    @abc.abstractmethod
    async def get_league_table(self, league_id: str) -> Any:
        ...
