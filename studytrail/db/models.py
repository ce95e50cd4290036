"""
SQLAlchemy models for trail storage.

- weekly_trails: one row per week, the seven day lists as a JSON payload
- trail_completions: one row per (week, day, topic) completion flag
- revisions: spaced-repetition reminders
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Index, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class WeeklyTrailRow(Base):
    __tablename__ = "weekly_trails"

    week_key: Mapped[str] = mapped_column(String(10), primary_key=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<WeeklyTrailRow week={self.week_key}>"


class TrailCompletionRow(Base):
    __tablename__ = "trail_completions"

    week_key: Mapped[str] = mapped_column(String(10), primary_key=True)
    day_id: Mapped[str] = mapped_column(String(3), primary_key=True)
    topic_key: Mapped[str] = mapped_column(Text, primary_key=True)
    done: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<TrailCompletionRow {self.week_key}/{self.day_id}/{self.topic_key} done={self.done}>"


class RevisionRow(Base):
    __tablename__ = "revisions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    topic_id: Mapped[str] = mapped_column(Text, nullable=False)
    discipline_id: Mapped[str] = mapped_column(Text, nullable=False)
    label: Mapped[str] = mapped_column(Text, nullable=False, default="")
    scheduled_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    origin: Mapped[str] = mapped_column(String(16), nullable=False, default="theory")
    difficulty: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    __table_args__ = (
        Index("idx_revisions_topic_origin_status", "topic_id", "origin", "status"),
        Index("idx_revisions_scheduled", "scheduled_date"),
    )

    def __repr__(self) -> str:
        return f"<RevisionRow {self.id} topic={self.topic_id} {self.status} {self.scheduled_date:%Y-%m-%d}>"
