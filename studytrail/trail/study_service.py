"""
Study Service - the "save session" action.

When a study session is saved the service:
1. Marks the topic done on the trail, wherever it is scheduled
   (given day, other days of the week, then other weeks)
2. Optionally schedules spaced-repetition revisions for it
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from loguru import logger

from studytrail.trail.completion import CompletionTracker
from studytrail.trail.models import CompletionKey, DayId
from studytrail.trail.revisions import RevisionIntervalScheduler, ScheduleResult
from studytrail.trail.week_keys import canonical_week_key, day_id_for


@dataclass
class StudySession:
    """A finished study session as submitted by the user."""

    topic_id: str
    discipline_id: str
    label: str
    studied_at: datetime | None = None
    count_towards_plan: bool = True
    schedule_revisions: bool = False
    revision_offsets: list[int] | None = None
    week_key: str | None = None  # week the user was looking at
    day: DayId | None = None
    alternate_topic_ids: list[str] = field(default_factory=list)


@dataclass
class SessionRecordResult:
    completion: CompletionKey | None = None
    revisions: ScheduleResult | None = None


class StudyService:
    """Applies a saved session to the trail and the revision schedule."""

    def __init__(
        self,
        tracker: CompletionTracker,
        scheduler: RevisionIntervalScheduler | None = None,
    ):
        self.tracker = tracker
        self.scheduler = scheduler

    async def record_session(self, session: StudySession) -> SessionRecordResult:
        """
        Record a finished session.

        Raises:
            ValueError: If revisions are requested with an explicitly empty offset list
        """
        if session.schedule_revisions and session.revision_offsets is not None and not session.revision_offsets:
            raise ValueError("Select at least one revision interval or disable revision scheduling")

        studied_at = session.studied_at or datetime.now()
        if session.week_key:
            week_key = session.week_key
        elif session.studied_at is not None:
            week_key = canonical_week_key(studied_at)
        else:
            week_key = self.tracker.store.active_week_key
        day = session.day or day_id_for(studied_at)
        result = SessionRecordResult()

        if session.count_towards_plan:
            result.completion = self.tracker.mark_done(
                week_key, day, session.topic_id, *session.alternate_topic_ids
            )

        if session.schedule_revisions:
            if self.scheduler is None:
                logger.warning("Revision scheduling requested but no scheduler is configured")
            else:
                result.revisions = await self.scheduler.schedule_revisions(
                    topic_id=session.topic_id,
                    discipline_id=session.discipline_id,
                    label=session.label,
                    base_date=studied_at,
                    offsets=session.revision_offsets,
                )

        return result
