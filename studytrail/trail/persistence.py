"""
Persistence contracts consumed by the trail engine.

The engine only depends on these protocols. Two implementations exist:

- InMemoryTrailPersistence / InMemoryRevisionRepository (this module), used by
  tests and ephemeral sessions
- SqlTrailPersistence / SqlRevisionRepository (``studytrail.db.repositories``)
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable
from uuid import uuid4

from studytrail.trail.models import (
    CompletionMap,
    RevisionOrigin,
    RevisionRecord,
    RevisionStatus,
    WeekTrail,
    copy_week,
    empty_week,
)


@runtime_checkable
class TrailPersistence(Protocol):
    """Storage for weekly trails and their completion maps."""

    async def load_trail(self, week_key: str) -> WeekTrail: ...

    async def save_trail(self, week_key: str, trail: WeekTrail) -> None: ...

    async def load_completion_map(self, week_key: str) -> CompletionMap: ...

    async def save_completion_map(self, week_key: str, completion: CompletionMap) -> None: ...

    async def list_week_keys(self) -> list[str]: ...


@runtime_checkable
class RevisionRepository(Protocol):
    """Storage for revision records."""

    async def create_revision(self, record: RevisionRecord) -> RevisionRecord: ...

    async def list_pending(self, topic_id: str, origin: RevisionOrigin) -> list[RevisionRecord]: ...

    async def get_revision(self, revision_id: str) -> RevisionRecord | None: ...

    async def update_revision(self, record: RevisionRecord) -> RevisionRecord: ...

    async def list_revisions(self, status: RevisionStatus | None = None) -> list[RevisionRecord]: ...


class InMemoryTrailPersistence:
    """Dictionary-backed TrailPersistence."""

    def __init__(self) -> None:
        self.trails: dict[str, WeekTrail] = {}
        self.completions: dict[str, CompletionMap] = {}
        self.save_calls = 0

    async def load_trail(self, week_key: str) -> WeekTrail:
        trail = self.trails.get(week_key)
        return copy_week(trail) if trail is not None else empty_week()

    async def save_trail(self, week_key: str, trail: WeekTrail) -> None:
        self.save_calls += 1
        self.trails[week_key] = copy_week(trail)

    async def load_completion_map(self, week_key: str) -> CompletionMap:
        return dict(self.completions.get(week_key, {}))

    async def save_completion_map(self, week_key: str, completion: CompletionMap) -> None:
        self.save_calls += 1
        self.completions[week_key] = dict(completion)

    async def list_week_keys(self) -> list[str]:
        return sorted(set(self.trails) | set(self.completions))


class InMemoryRevisionRepository:
    """Dictionary-backed RevisionRepository; ids are assigned on create."""

    def __init__(self) -> None:
        self.records: dict[str, RevisionRecord] = {}

    async def create_revision(self, record: RevisionRecord) -> RevisionRecord:
        created = record.model_copy(update={"id": uuid4().hex})
        self.records[created.id] = created
        return created

    async def list_pending(self, topic_id: str, origin: RevisionOrigin) -> list[RevisionRecord]:
        return [
            record
            for record in self.records.values()
            if record.topic_id == topic_id
            and record.origin == origin
            and record.status == RevisionStatus.PENDING
        ]

    async def get_revision(self, revision_id: str) -> RevisionRecord | None:
        return self.records.get(revision_id)

    async def update_revision(self, record: RevisionRecord) -> RevisionRecord:
        if record.id is None or record.id not in self.records:
            raise KeyError(record.id)
        self.records[record.id] = record
        return record

    async def list_revisions(self, status: RevisionStatus | None = None) -> list[RevisionRecord]:
        records = [r for r in self.records.values() if status is None or r.status == status]
        return sorted(records, key=lambda r: r.scheduled_date)
