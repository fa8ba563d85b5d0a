"""
SQLAlchemy 2.0 ORM models for matchsync.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class MatchORM(Base):
    __tablename__ = "matches"
    __table_args__ = (
        UniqueConstraint("primary_id", name="uq_match_primary_id"),
        Index("ix_match_fuzzy_identity", "league_key", "home_key", "away_key", "start_time"),
        Index("ix_match_status_start", "status", "start_time"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    primary_id: Mapped[Optional[str]] = mapped_column(String(64))
    secondary_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    sport: Mapped[str] = mapped_column(String(50), nullable=False, default="Football")
    league_name: Mapped[str] = mapped_column(String(200), nullable=False)
    league_ext_id: Mapped[Optional[str]] = mapped_column(String(64))
    country: Mapped[str] = mapped_column(String(16), nullable=False, default="UN")
    start_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="SCHEDULED")
    minute: Mapped[str] = mapped_column(String(16), nullable=False, default="")

    # Normalised identity columns backing the fuzzy lookup
    league_key: Mapped[str] = mapped_column(String(200), nullable=False)
    home_key: Mapped[str] = mapped_column(String(200), nullable=False)
    away_key: Mapped[str] = mapped_column(String(200), nullable=False)

    home_team: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    away_team: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    odds: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    over_under_25: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    both_teams_score: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    timeline: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    logos_resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
