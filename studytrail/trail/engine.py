"""
Wiring for the trail engine.

TrailEngine holds one instance of every component sharing a single outbox,
so the CLI (or any host application) builds the engine once and tests can
build a fresh one per case.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from studytrail.config import get_settings
from studytrail.trail.completion import CompletionTracker
from studytrail.trail.outbox import PersistenceOutbox
from studytrail.trail.persistence import (
    InMemoryRevisionRepository,
    InMemoryTrailPersistence,
    RevisionRepository,
    TrailPersistence,
)
from studytrail.trail.reconciler import SyncReconciler
from studytrail.trail.revisions import RevisionIntervalScheduler
from studytrail.trail.store import WeeklyTrailStore
from studytrail.trail.study_service import StudyService


@dataclass
class TrailEngine:
    outbox: PersistenceOutbox
    store: WeeklyTrailStore
    tracker: CompletionTracker
    reconciler: SyncReconciler
    scheduler: RevisionIntervalScheduler
    study: StudyService

    async def flush(self) -> None:
        """Write everything queued in the outbox."""
        await self.outbox.flush()

    def reset(self) -> None:
        self.store.reset()
        self.tracker.reset()


def build_engine(
    persistence: TrailPersistence | None = None,
    revisions: RevisionRepository | None = None,
    active_week_key: str | date | None = None,
    save_delay_ms: int | None = None,
) -> TrailEngine:
    """
    Build a TrailEngine.

    Args:
        persistence: Trail storage (in-memory when omitted)
        revisions: Revision storage (in-memory when omitted)
        active_week_key: Week shown by default (current week when omitted)
        save_delay_ms: Debounce override for both trail and completion writes
    """
    settings = get_settings()
    persistence = persistence if persistence is not None else InMemoryTrailPersistence()
    revisions = revisions if revisions is not None else InMemoryRevisionRepository()

    outbox = PersistenceOutbox(
        settings.trail_save_debounce_ms if save_delay_ms is None else save_delay_ms
    )
    store = WeeklyTrailStore(
        persistence=persistence,
        outbox=outbox,
        save_delay_ms=save_delay_ms,
        active_week_key=active_week_key,
    )
    tracker = CompletionTracker(store, outbox=outbox, save_delay_ms=save_delay_ms)
    scheduler = RevisionIntervalScheduler(revisions)

    return TrailEngine(
        outbox=outbox,
        store=store,
        tracker=tracker,
        reconciler=SyncReconciler(store, tracker),
        scheduler=scheduler,
        study=StudyService(tracker, scheduler),
    )
