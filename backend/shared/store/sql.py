"""
PostgreSQL-backed MatchStore using SQLAlchemy 2.0 async sessions.
"""
from __future__ import annotations

import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError

from shared.errors import IdentityConflict
from shared.identity import normalize_name
from shared.models.domain import (
    BothTeamsScoreOdds,
    LeagueRef,
    MainOdds,
    MatchRecord,
    OverUnderOdds,
    TeamInfo,
    TimelineEntry,
)
from shared.models.enums import MatchStatus
from shared.models.orm import MatchORM
from shared.store.base import MatchStore
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger

logger = get_logger(__name__)


def _dump(model: Any) -> Optional[dict[str, Any]]:
    return model.model_dump(mode="json") if model is not None else None


def record_to_row_values(record: MatchRecord) -> dict[str, Any]:
    return {
        "primary_id": record.primary_id,
        "secondary_id": record.secondary_id,
        "sport": record.sport,
        "league_name": record.league.name,
        "league_ext_id": record.league.id,
        "country": record.country,
        "start_time": record.start_time,
        "status": record.status.value,
        "minute": record.minute,
        "league_key": normalize_name(record.league.name),
        "home_key": normalize_name(record.home_team.name),
        "away_key": normalize_name(record.away_team.name),
        "home_team": record.home_team.model_dump(mode="json"),
        "away_team": record.away_team.model_dump(mode="json"),
        "odds": _dump(record.odds),
        "over_under_25": _dump(record.over_under_25),
        "both_teams_score": _dump(record.both_teams_score),
        "timeline": [e.model_dump(mode="json") for e in record.timeline],
        "logos_resolved": record.logos_resolved,
        "finished_at": record.finished_at,
        "created_at": record.created_at,
        "updated_at": record.updated_at,
    }


def row_to_record(row: MatchORM) -> MatchRecord:
    return MatchRecord(
        id=row.id,
        primary_id=row.primary_id,
        secondary_id=row.secondary_id,
        sport=row.sport,
        league=LeagueRef(name=row.league_name, id=row.league_ext_id),
        country=row.country,
        start_time=row.start_time,
        status=MatchStatus(row.status),
        minute=row.minute or "",
        home_team=TeamInfo.model_validate(row.home_team),
        away_team=TeamInfo.model_validate(row.away_team),
        odds=MainOdds.model_validate(row.odds) if row.odds else None,
        over_under_25=OverUnderOdds.model_validate(row.over_under_25) if row.over_under_25 else None,
        both_teams_score=BothTeamsScoreOdds.model_validate(row.both_teams_score) if row.both_teams_score else None,
        timeline=[TimelineEntry.model_validate(e) for e in row.timeline or []],
        logos_resolved=row.logos_resolved,
        finished_at=row.finished_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SQLMatchStore(MatchStore):
    """MatchStore over the ``matches`` table."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def _fetch_one(self, stmt: Any) -> Optional[MatchRecord]:
        async with self._db.read_session() as session:
            row = (await session.execute(stmt)).scalars().first()
            return row_to_record(row) if row else None

    async def _fetch_all(self, stmt: Any) -> list[MatchRecord]:
        async with self._db.read_session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [row_to_record(r) for r in rows]

    async def find_by_primary_id(self, primary_id: str) -> Optional[MatchRecord]:
        return await self._fetch_one(select(MatchORM).where(MatchORM.primary_id == primary_id))

    async def find_by_secondary_id(self, secondary_id: str) -> Optional[MatchRecord]:
        stmt = (
            select(MatchORM)
            .where(MatchORM.secondary_id == secondary_id)
            .order_by(MatchORM.updated_at.desc())
        )
        return await self._fetch_one(stmt)

    async def find_by_fuzzy_key(
        self, league: str, home: str, away: str, start_time: datetime, window_s: int
    ) -> list[MatchRecord]:
        window = timedelta(seconds=window_s)
        stmt = (
            select(MatchORM)
            .where(
                MatchORM.league_key == normalize_name(league),
                MatchORM.home_key == normalize_name(home),
                MatchORM.away_key == normalize_name(away),
                MatchORM.start_time.between(start_time - window, start_time + window),
            )
            .order_by(MatchORM.created_at)
        )
        return await self._fetch_all(stmt)

    async def find_by_status(self, status: MatchStatus) -> list[MatchRecord]:
        stmt = select(MatchORM).where(MatchORM.status == status.value).order_by(MatchORM.start_time)
        return await self._fetch_all(stmt)

    async def find_finished_since(self, since: datetime, limit: int) -> list[MatchRecord]:
        stmt = (
            select(MatchORM)
            .where(MatchORM.status == MatchStatus.FINISHED.value, MatchORM.finished_at >= since)
            .order_by(MatchORM.finished_at.desc())
            .limit(limit)
        )
        return await self._fetch_all(stmt)

    async def find_scheduled_between(self, start: datetime, end: datetime, limit: int) -> list[MatchRecord]:
        stmt = (
            select(MatchORM)
            .where(
                MatchORM.status == MatchStatus.SCHEDULED.value,
                MatchORM.start_time.between(start, end),
            )
            .order_by(MatchORM.start_time.desc())
            .limit(limit)
        )
        return await self._fetch_all(stmt)

    async def upsert(self, record: MatchRecord) -> MatchRecord:
        values = record_to_row_values(record)
        try:
            async with self._db.write_session() as session:
                row = await session.get(MatchORM, record.id)
                if row is None:
                    session.add(MatchORM(id=record.id, **values))
                else:
                    for column, value in values.items():
                        setattr(row, column, value)
        except IntegrityError as exc:
            logger.debug("store_unique_violation", primary_id=record.primary_id, error=str(exc.orig))
            raise IdentityConflict(record.primary_id or "") from exc
        return record

    async def update_fields(self, record_id: uuid.UUID, **fields: Any) -> Optional[MatchRecord]:
        async with self._db.read_session() as session:
            row = await session.get(MatchORM, record_id)
            if row is None:
                return None
            current = row_to_record(row)
        return await self.upsert(current.model_copy(update=fields))

    async def delete(self, record_id: uuid.UUID) -> bool:
        async with self._db.write_session() as session:
            result = await session.execute(delete(MatchORM).where(MatchORM.id == record_id))
            return (result.rowcount or 0) > 0

    async def list_matches(
        self,
        league: Optional[str] = None,
        country: Optional[str] = None,
        day: Optional[date] = None,
        status: Optional[MatchStatus] = None,
    ) -> list[MatchRecord]:
        stmt = select(MatchORM)
        if league:
            stmt = stmt.where(MatchORM.league_key == normalize_name(league))
        if country:
            stmt = stmt.where(func.upper(MatchORM.country) == country.upper())
        if day:
            day_start = datetime.combine(day, time.min, tzinfo=timezone.utc)
            stmt = stmt.where(
                MatchORM.start_time >= day_start,
                MatchORM.start_time < day_start + timedelta(days=1),
            )
        if status:
            stmt = stmt.where(MatchORM.status == status.value)
        return await self._fetch_all(stmt.order_by(MatchORM.start_time))

    async def list_all(self) -> list[MatchRecord]:
        return await self._fetch_all(select(MatchORM).order_by(MatchORM.start_time))
