"""
Weekly study-trail scheduling engine.

Components:
- week_keys: Monday-anchored week keys
- addressing: render-scoped (day, position) instance ids
- store: WeeklyTrailStore, the day-bucketed ordering structure
- completion: CompletionTracker, per-(week, day, topic) flags
- revisions: RevisionIntervalScheduler, idempotent SRS reminders
- reconciler: SyncReconciler, merging stored weeks into local state
- outbox: debounced asynchronous persistence
- planner: weekly plan generation
"""

from studytrail.trail.addressing import (
    day_drop_zone_id,
    decode_instance_id,
    encode_instance_id,
    resolve_drop_target,
)
from studytrail.trail.completion import CompletionTracker
from studytrail.trail.engine import TrailEngine, build_engine
from studytrail.trail.models import (
    DayId,
    EphemeralTopicRef,
    PersistentTopicRef,
    RevisionRecord,
    RevisionStatus,
)
from studytrail.trail.reconciler import ReconcileDecision, SyncReconciler, reconcile
from studytrail.trail.revisions import RevisionIntervalScheduler, ScheduleResult
from studytrail.trail.store import WeeklyTrailStore
from studytrail.trail.week_keys import canonical_week_key

__all__ = [
    "CompletionTracker",
    "DayId",
    "EphemeralTopicRef",
    "PersistentTopicRef",
    "ReconcileDecision",
    "RevisionIntervalScheduler",
    "RevisionRecord",
    "RevisionStatus",
    "ScheduleResult",
    "SyncReconciler",
    "TrailEngine",
    "WeeklyTrailStore",
    "build_engine",
    "canonical_week_key",
    "day_drop_zone_id",
    "decode_instance_id",
    "encode_instance_id",
    "reconcile",
    "resolve_drop_target",
]
