"""
Abstract store contract for canonical match records.
"""
from __future__ import annotations

import abc
import uuid
from datetime import date, datetime
from typing import Any, Optional

from shared.models.domain import MatchRecord
from shared.models.enums import MatchStatus


class MatchStore(abc.ABC):
    """
    Persistence capability used by the reconciler and the read API.

    Implementations must enforce uniqueness of ``primary_id`` and raise
    ``IdentityConflict`` from ``upsert`` when it is violated.
    """

    @abc.abstractmethod
    async def find_by_primary_id(self, primary_id: str) -> Optional[MatchRecord]:
        ...

    @abc.abstractmethod
    async def find_by_secondary_id(self, secondary_id: str) -> Optional[MatchRecord]:
        ...

    async def find_by_primary_or_secondary_id(self, key: str) -> Optional[MatchRecord]:
        """Lookup used by consumers that only hold one opaque id."""
        record = await self.find_by_primary_id(key)
        if record is None:
            record = await self.find_by_secondary_id(key)
        return record

    @abc.abstractmethod
    async def find_by_fuzzy_key(
        self, league: str, home: str, away: str, start_time: datetime, window_s: int
    ) -> list[MatchRecord]:
        """Records with the same normalised league/home/away starting within ``window_s``."""

    @abc.abstractmethod
    async def find_by_status(self, status: MatchStatus) -> list[MatchRecord]:
        ...

    @abc.abstractmethod
    async def find_finished_since(self, since: datetime, limit: int) -> list[MatchRecord]:
        ...

    @abc.abstractmethod
    async def find_scheduled_between(self, start: datetime, end: datetime, limit: int) -> list[MatchRecord]:
        ...

    @abc.abstractmethod
    async def upsert(self, record: MatchRecord) -> MatchRecord:
        """Insert or replace by row id."""

    @abc.abstractmethod
    async def update_fields(self, record_id: uuid.UUID, **fields: Any) -> Optional[MatchRecord]:
        ...

    @abc.abstractmethod
    async def delete(self, record_id: uuid.UUID) -> bool:
        ...

    @abc.abstractmethod
    async def list_matches(
        self,
        league: Optional[str] = None,
        country: Optional[str] = None,
        day: Optional[date] = None,
        status: Optional[MatchStatus] = None,
    ) -> list[MatchRecord]:
        """Filtered listing sorted by start time."""

    @abc.abstractmethod
    async def list_all(self) -> list[MatchRecord]:
        ...
