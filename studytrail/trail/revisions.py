"""
Revision Interval Scheduler - spaced-repetition reminders for studied topics.

After a study session, reminders are created at day offsets from the session
date (D+1, D+7, D+15, D+30 by default). Scheduling is idempotent: an offset
whose target date already has a pending reminder of the same origin within
the proximity window (12 hours by default) is treated as covered. Calling
the scheduler twice with the same arguments creates nothing the second time.

Creation calls for different offsets are independent: they run concurrently
and one failing offset never prevents the others from being created. The
result reports what was created, what was already covered and what failed.

The proximity window is a heuristic kept from the original product (it is
neither a calendar-day snap nor a documented tolerance) and is configurable.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone

from loguru import logger

from studytrail.config import get_settings
from studytrail.trail.models import (
    Difficulty,
    RevisionOrigin,
    RevisionOutcome,
    RevisionRecord,
    RevisionStatus,
)
from studytrail.trail.persistence import RevisionRepository


class RevisionNotFoundError(LookupError):
    """Raised when a revision id is unknown to the repository."""


@dataclass
class OffsetFailure:
    """A single offset whose creation failed."""

    offset: int
    target_date: datetime
    error: str


@dataclass
class ScheduleResult:
    """Outcome of one scheduling call."""

    created: list[RevisionRecord] = field(default_factory=list)
    skipped_offsets: list[int] = field(default_factory=list)  # already covered
    failures: list[OffsetFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def partial(self) -> bool:
        return bool(self.created) and bool(self.failures)


@dataclass
class RevisionCompletion:
    """A completed revision and the follow-up it triggered, if any."""

    revision: RevisionRecord
    follow_up: RevisionRecord | None = None


def _to_datetime(value: date | datetime | None) -> datetime:
    if value is None:
        return datetime.now()
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min)


def _utc(value: datetime) -> datetime:
    # Naive values are taken as local time
    return value.astimezone(timezone.utc)


def normalize_offsets(offsets: list[int]) -> list[int]:
    """Positive integer offsets, deduplicated, ascending."""
    valid = {o for o in offsets if isinstance(o, int) and not isinstance(o, bool) and o > 0}
    dropped = [o for o in offsets if o not in valid]
    if dropped:
        logger.warning(f"Ignoring invalid revision offsets: {dropped}")
    return sorted(valid)


class RevisionIntervalScheduler:
    """
    Creates and maintains revision records.

    Args:
        repository: Revision storage
        default_offsets: Offsets used when a call gives none
        proximity_hours: Window within which a pending record covers a target
        origin: Origin tag of records created by ``schedule_revisions``
    """

    def __init__(
        self,
        repository: RevisionRepository,
        default_offsets: list[int] | None = None,
        proximity_hours: float | None = None,
        origin: RevisionOrigin | str | None = None,
    ):
        settings = get_settings()
        self.repository = repository
        self.default_offsets = list(default_offsets or settings.revision_default_offsets)
        self.proximity = timedelta(
            hours=settings.revision_proximity_hours if proximity_hours is None else proximity_hours
        )
        self.origin = RevisionOrigin(origin or settings.revision_default_origin)

    # =========================================================================
    # SCHEDULING
    # =========================================================================

    def target_dates(
        self,
        base_date: date | datetime | None = None,
        offsets: list[int] | None = None,
    ) -> list[tuple[int, datetime]]:
        """(offset, base + offset days) for every valid offset."""
        base = _to_datetime(base_date)
        return [(offset, base + timedelta(days=offset)) for offset in self._offsets(offsets)]

    async def schedule_revisions(
        self,
        topic_id: str,
        discipline_id: str,
        label: str,
        base_date: date | datetime | None = None,
        offsets: list[int] | None = None,
        difficulty: Difficulty = Difficulty.MEDIUM,
    ) -> ScheduleResult:
        """
        Create the reminders not already covered by pending ones.

        Args:
            topic_id: Studied topic
            discipline_id: Discipline of the topic
            label: Display text of the reminders
            base_date: Study date (now when omitted)
            offsets: Day offsets (configured defaults when omitted or empty)
            difficulty: Difficulty stored on created records

        Returns:
            ScheduleResult with created records, covered offsets and failures
        """
        result = ScheduleResult()
        targets = self.target_dates(base_date, offsets)

        existing = await self.repository.list_pending(topic_id, self.origin)

        to_create: list[tuple[int, RevisionRecord]] = []
        for offset, target in targets:
            if self._find_covering(existing, target) is not None:
                result.skipped_offsets.append(offset)
                continue

            to_create.append(
                (
                    offset,
                    RevisionRecord(
                        topic_id=topic_id,
                        discipline_id=discipline_id,
                        label=label,
                        scheduled_date=target,
                        status=RevisionStatus.PENDING,
                        origin=self.origin,
                        difficulty=difficulty,
                    ),
                )
            )

        if not to_create:
            logger.debug(f"All revision offsets already covered for topic {topic_id}")
            return result

        outcomes = await asyncio.gather(
            *(self.repository.create_revision(record) for _, record in to_create),
            return_exceptions=True,
        )

        for (offset, record), outcome in zip(to_create, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Failed to create D+{offset} revision for topic {topic_id}: {outcome}")
                result.failures.append(
                    OffsetFailure(offset=offset, target_date=record.scheduled_date, error=str(outcome))
                )
            else:
                result.created.append(outcome)

        logger.info(
            f"Scheduled {len(result.created)} revision(s) for topic {topic_id} "
            f"({len(result.skipped_offsets)} covered, {len(result.failures)} failed)"
        )
        return result

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def complete_revision(
        self,
        revision_id: str,
        outcome: RevisionOutcome | str,
        new_difficulty: Difficulty | str | None = None,
        now: datetime | None = None,
    ) -> RevisionCompletion:
        """
        Close a revision.

        - correct: marked done
        - wrong: marked done and a new pending revision is queued for tomorrow
          (difficulty ``hard`` unless ``new_difficulty`` is given)
        - postponed: stays pending, moved to tomorrow

        When tomorrow is already covered by another pending revision of the
        topic, no second one is left pending: ``wrong`` reuses the covering
        revision as its follow-up, and ``postponed`` marks this revision done
        and returns the covering one as ``follow_up``.
        """
        outcome = RevisionOutcome(outcome)
        difficulty = Difficulty(new_difficulty) if new_difficulty is not None else None
        original = await self._get(revision_id)
        tomorrow = _to_datetime(now) + timedelta(days=1)

        if outcome == RevisionOutcome.POSTPONED:
            covering = await self._covering(original, tomorrow)
            if covering is None:
                moved = await self.repository.update_revision(
                    original.model_copy(
                        update={
                            "scheduled_date": tomorrow,
                            "status": RevisionStatus.PENDING,
                            "difficulty": difficulty or original.difficulty,
                        }
                    )
                )
                return RevisionCompletion(revision=moved)

            merged = await self._merge_into(original, covering, difficulty)
            return RevisionCompletion(revision=merged, follow_up=covering)

        done = await self.repository.update_revision(
            original.model_copy(
                update={"status": RevisionStatus.DONE, "difficulty": difficulty or original.difficulty}
            )
        )

        follow_up = None
        if outcome == RevisionOutcome.WRONG:
            follow_up = await self._covering(original, tomorrow)
            if follow_up is not None:
                logger.info(f"Revision {revision_id} missed; already covered by {follow_up.id}")
            else:
                follow_up = await self.repository.create_revision(
                    original.model_copy(
                        update={
                            "id": None,
                            "scheduled_date": tomorrow,
                            "status": RevisionStatus.PENDING,
                            "difficulty": difficulty or Difficulty.HARD,
                        }
                    )
                )
                logger.info(f"Revision {revision_id} missed; follow-up queued for {tomorrow:%Y-%m-%d}")

        return RevisionCompletion(revision=done, follow_up=follow_up)

    async def reschedule_revision(
        self,
        revision_id: str,
        days: int,
        now: datetime | None = None,
    ) -> RevisionRecord:
        """
        Move a revision to ``days`` from now and make it pending again.

        Returns:
            The pending revision for the new date. If another pending revision
            of the topic already covers it, that one is returned and the moved
            revision is marked done.
        """
        record = await self._get(revision_id)
        target = _to_datetime(now) + timedelta(days=days)

        covering = await self._covering(record, target)
        if covering is not None:
            await self._merge_into(record, covering)
            return covering

        return await self.repository.update_revision(
            record.model_copy(update={"scheduled_date": target, "status": RevisionStatus.PENDING})
        )

    async def mark_overdue(self, today: date | None = None) -> list[RevisionRecord]:
        """Pending revisions dated before ``today`` become late."""
        today = today or date.today()
        updated = []
        for record in await self.repository.list_revisions(RevisionStatus.PENDING):
            if record.scheduled_date.date() < today:
                updated.append(
                    await self.repository.update_revision(
                        record.model_copy(update={"status": RevisionStatus.LATE})
                    )
                )
        if updated:
            logger.info(f"{len(updated)} revision(s) marked late")
        return updated

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _offsets(self, offsets: list[int] | None) -> list[int]:
        return normalize_offsets(list(offsets) if offsets else self.default_offsets)

    def _find_covering(
        self,
        records: list[RevisionRecord],
        target: datetime,
        exclude_id: str | None = None,
    ) -> RevisionRecord | None:
        target_utc = _utc(target)
        for record in records:
            if record.id is not None and record.id == exclude_id:
                continue
            if abs(_utc(record.scheduled_date) - target_utc) < self.proximity:
                return record
        return None

    async def _covering(self, record: RevisionRecord, target: datetime) -> RevisionRecord | None:
        """Another pending revision of the same topic and origin within the window of ``target``."""
        pending = await self.repository.list_pending(record.topic_id, record.origin)
        return self._find_covering(pending, target, exclude_id=record.id)

    async def _merge_into(
        self,
        record: RevisionRecord,
        covering: RevisionRecord,
        difficulty: Difficulty | None = None,
    ) -> RevisionRecord:
        merged = await self.repository.update_revision(
            record.model_copy(
                update={"status": RevisionStatus.DONE, "difficulty": difficulty or record.difficulty}
            )
        )
        logger.info(f"Revision {record.id} merged into pending revision {covering.id}")
        return merged

    async def _get(self, revision_id: str) -> RevisionRecord:
        record = await self.repository.get_revision(revision_id)
        if record is None:
            raise RevisionNotFoundError(f"Revision not found: {revision_id}")
        return record
