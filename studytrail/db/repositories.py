"""
SQLAlchemy implementations of the trail persistence contracts.

Queries run in a synchronous session on a worker thread
(``asyncio.to_thread``) so the event loop driving the outbox never blocks.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from uuid import uuid4

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from studytrail.db.database import build_session_factory, session_scope
from studytrail.db.models import RevisionRow, TrailCompletionRow, WeeklyTrailRow
from studytrail.trail.models import (
    CompletionMap,
    DayId,
    Difficulty,
    RevisionOrigin,
    RevisionRecord,
    RevisionStatus,
    WeekTrail,
    empty_week,
    week_from_payload,
    week_to_payload,
)


def _naive_local(value: datetime) -> datetime:
    # SQLite DateTime columns drop tzinfo; store local wall time instead
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def _row_to_record(row: RevisionRow) -> RevisionRecord:
    return RevisionRecord(
        id=row.id,
        topic_id=row.topic_id,
        discipline_id=row.discipline_id,
        label=row.label,
        scheduled_date=row.scheduled_date,
        status=RevisionStatus(row.status),
        origin=RevisionOrigin(row.origin),
        difficulty=Difficulty(row.difficulty),
    )


class SqlTrailPersistence:
    """TrailPersistence backed by the weekly_trails / trail_completions tables."""

    def __init__(self, session_factory: sessionmaker[Session] | None = None):
        self._factory = session_factory or build_session_factory()

    async def load_trail(self, week_key: str) -> WeekTrail:
        return await asyncio.to_thread(self._load_trail, week_key)

    async def save_trail(self, week_key: str, trail: WeekTrail) -> None:
        await asyncio.to_thread(self._save_trail, week_key, week_to_payload(trail))

    async def load_completion_map(self, week_key: str) -> CompletionMap:
        return await asyncio.to_thread(self._load_completion, week_key)

    async def save_completion_map(self, week_key: str, completion: CompletionMap) -> None:
        await asyncio.to_thread(self._save_completion, week_key, dict(completion))

    async def list_week_keys(self) -> list[str]:
        return await asyncio.to_thread(self._list_week_keys)

    # =========================================================================
    # SYNC HELPERS
    # =========================================================================

    def _load_trail(self, week_key: str) -> WeekTrail:
        with session_scope(self._factory) as session:
            row = session.get(WeeklyTrailRow, week_key)
            if row is None:
                return empty_week()
            return week_from_payload(row.payload)

    def _save_trail(self, week_key: str, payload: dict) -> None:
        with session_scope(self._factory) as session:
            row = session.get(WeeklyTrailRow, week_key)
            if row is None:
                session.add(WeeklyTrailRow(week_key=week_key, payload=payload))
            else:
                row.payload = payload
        logger.debug(f"Saved trail for week {week_key}")

    def _load_completion(self, week_key: str) -> CompletionMap:
        with session_scope(self._factory) as session:
            rows = session.scalars(
                select(TrailCompletionRow).where(TrailCompletionRow.week_key == week_key)
            ).all()
            completion: CompletionMap = {}
            for row in rows:
                day = DayId.parse(row.day_id)
                if day is not None:
                    completion[(day, row.topic_key)] = row.done
            return completion

    def _save_completion(self, week_key: str, completion: CompletionMap) -> None:
        with session_scope(self._factory) as session:
            session.execute(delete(TrailCompletionRow).where(TrailCompletionRow.week_key == week_key))
            session.add_all(
                TrailCompletionRow(week_key=week_key, day_id=day.value, topic_key=topic_key, done=done)
                for (day, topic_key), done in completion.items()
            )
        logger.debug(f"Saved {len(completion)} completion flag(s) for week {week_key}")

    def _list_week_keys(self) -> list[str]:
        with session_scope(self._factory) as session:
            trail_weeks = set(session.scalars(select(WeeklyTrailRow.week_key)).all())
            completion_weeks = set(session.scalars(select(TrailCompletionRow.week_key).distinct()).all())
            return sorted(trail_weeks | completion_weeks)


class SqlRevisionRepository:
    """RevisionRepository backed by the revisions table."""

    def __init__(self, session_factory: sessionmaker[Session] | None = None):
        self._factory = session_factory or build_session_factory()

    async def create_revision(self, record: RevisionRecord) -> RevisionRecord:
        return await asyncio.to_thread(self._create, record)

    async def list_pending(self, topic_id: str, origin: RevisionOrigin) -> list[RevisionRecord]:
        return await asyncio.to_thread(self._list_pending, topic_id, RevisionOrigin(origin))

    async def get_revision(self, revision_id: str) -> RevisionRecord | None:
        return await asyncio.to_thread(self._get, revision_id)

    async def update_revision(self, record: RevisionRecord) -> RevisionRecord:
        return await asyncio.to_thread(self._update, record)

    async def list_revisions(self, status: RevisionStatus | None = None) -> list[RevisionRecord]:
        return await asyncio.to_thread(self._list, status)

    # =========================================================================
    # SYNC HELPERS
    # =========================================================================

    def _create(self, record: RevisionRecord) -> RevisionRecord:
        revision_id = uuid4().hex
        with session_scope(self._factory) as session:
            row = RevisionRow(
                id=revision_id,
                topic_id=record.topic_id,
                discipline_id=record.discipline_id,
                label=record.label,
                scheduled_date=_naive_local(record.scheduled_date),
                status=record.status.value,
                origin=record.origin.value,
                difficulty=record.difficulty.value,
            )
            session.add(row)
            session.flush()
            return _row_to_record(row)

    def _list_pending(self, topic_id: str, origin: RevisionOrigin) -> list[RevisionRecord]:
        with session_scope(self._factory) as session:
            rows = session.scalars(
                select(RevisionRow).where(
                    RevisionRow.topic_id == topic_id,
                    RevisionRow.origin == origin.value,
                    RevisionRow.status == RevisionStatus.PENDING.value,
                )
            ).all()
            return [_row_to_record(row) for row in rows]

    def _get(self, revision_id: str) -> RevisionRecord | None:
        with session_scope(self._factory) as session:
            row = session.get(RevisionRow, revision_id)
            return _row_to_record(row) if row is not None else None

    def _update(self, record: RevisionRecord) -> RevisionRecord:
        with session_scope(self._factory) as session:
            row = session.get(RevisionRow, record.id) if record.id else None
            if row is None:
                raise KeyError(record.id)
            row.label = record.label
            row.scheduled_date = _naive_local(record.scheduled_date)
            row.status = record.status.value
            row.origin = record.origin.value
            row.difficulty = record.difficulty.value
            session.flush()
            return _row_to_record(row)

    def _list(self, status: RevisionStatus | None) -> list[RevisionRecord]:
        with session_scope(self._factory) as session:
            query = select(RevisionRow).order_by(RevisionRow.scheduled_date)
            if status is not None:
                query = query.where(RevisionRow.status == RevisionStatus(status).value)
            return [_row_to_record(row) for row in session.scalars(query).all()]
