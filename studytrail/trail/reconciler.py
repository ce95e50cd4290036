"""
Sync Reconciler - merges persisted weekly state into local state.

Rules for a week's trail loaded from storage:

1. Content-equal to local state: do nothing (no render thrash, no save)
2. Different and the loaded trail has a non-empty day: adopt it wholesale
3. Loaded trail entirely empty while local state is not: keep local state
   (a save may still be in flight; an empty load must not clobber it)

This is a last-write-wins heuristic, not an element-wise merge: concurrent
edits from two sessions are not reconciled entry by entry.

Reconciliation never raises. Comparison or parsing failures count as
"different", and an unparseable load counts as empty, so rule 3 protects
local state.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any

from loguru import logger

from studytrail.trail.completion import CompletionTracker
from studytrail.trail.models import (
    WeekTrail,
    is_week_empty,
    normalize_week,
    week_signature,
)
from studytrail.trail.persistence import TrailPersistence
from studytrail.trail.store import WeeklyTrailStore
from studytrail.trail.week_keys import canonical_week_key


class ReconcileDecision(str, Enum):
    UNCHANGED = "unchanged"
    ADOPTED = "adopted"
    KEPT_LOCAL = "kept_local"


@dataclass
class WeekLoadResult:
    week_key: str
    trail: ReconcileDecision
    completion: ReconcileDecision
    error: str | None = None


def _safe_week(value: Any) -> WeekTrail | None:
    try:
        return normalize_week(value)
    except Exception as exc:  # Any malformed payload counts as an empty load
        logger.warning(f"Unparseable trail payload treated as empty: {exc}")
        return None


def _same_content(local: WeekTrail, loaded: WeekTrail) -> bool:
    try:
        return week_signature(local) == week_signature(loaded)
    except Exception as exc:  # Comparison failure counts as "different"
        logger.debug(f"Trail comparison failed, treating as different: {exc}")
        return False


def reconcile(local: WeekTrail, loaded: Any) -> ReconcileDecision:
    """
    Decide how a loaded week relates to the local one.

    Args:
        local: Current in-memory trail of the week
        loaded: Trail read from storage (any mapping; validated here)

    Returns:
        ReconcileDecision
    """
    loaded_week = _safe_week(loaded)
    if loaded_week is None:
        return ReconcileDecision.KEPT_LOCAL

    if _same_content(local, loaded_week):
        return ReconcileDecision.UNCHANGED

    if not is_week_empty(loaded_week):
        return ReconcileDecision.ADOPTED

    # Loaded is empty; local differs, so it is non-empty
    return ReconcileDecision.KEPT_LOCAL


def reconcile_completion(local: dict, loaded: Any) -> ReconcileDecision:
    """Same non-empty-wins rule applied to a week's completion map."""
    if not isinstance(loaded, dict):
        return ReconcileDecision.KEPT_LOCAL
    if loaded == local:
        return ReconcileDecision.UNCHANGED
    if loaded:
        return ReconcileDecision.ADOPTED
    return ReconcileDecision.KEPT_LOCAL


class SyncReconciler:
    """Loads weeks from storage and applies reconciliation to the store."""

    def __init__(
        self,
        store: WeeklyTrailStore,
        tracker: CompletionTracker | None = None,
        persistence: TrailPersistence | None = None,
    ):
        self.store = store
        self.tracker = tracker
        self.persistence = persistence if persistence is not None else store.persistence

    def apply(self, week_key: str | date, loaded: Any) -> ReconcileDecision:
        """Reconcile ``loaded`` against the store and adopt it if it wins."""
        key = canonical_week_key(week_key)
        decision = reconcile(self.store.get_trail(key), loaded)
        if decision == ReconcileDecision.ADOPTED:
            self.store.adopt(key, normalize_week(loaded))
        logger.debug(f"Week {key} trail reconcile: {decision.value}")
        return decision

    def apply_completion(self, week_key: str | date, loaded: Any) -> ReconcileDecision:
        if self.tracker is None:
            return ReconcileDecision.UNCHANGED

        key = canonical_week_key(week_key)
        decision = reconcile_completion(self.tracker.completion_map(key), loaded)
        if decision == ReconcileDecision.ADOPTED:
            self.tracker.adopt(key, loaded)
        return decision

    async def load_week(self, week_key: str | date) -> WeekLoadResult:
        """
        Load one week (trail and completion) from storage and reconcile it.

        Load errors are logged; local state is kept.
        """
        key = canonical_week_key(week_key)
        if self.persistence is None:
            return WeekLoadResult(key, ReconcileDecision.UNCHANGED, ReconcileDecision.UNCHANGED)

        try:
            loaded_trail = await self.persistence.load_trail(key)
            loaded_completion = await self.persistence.load_completion_map(key)
        except Exception as exc:  # Storage failure: keep whatever is local
            logger.error(f"Failed to load week {key}: {exc}")
            return WeekLoadResult(
                key, ReconcileDecision.KEPT_LOCAL, ReconcileDecision.KEPT_LOCAL, error=str(exc)
            )

        return WeekLoadResult(
            week_key=key,
            trail=self.apply(key, loaded_trail),
            completion=self.apply_completion(key, loaded_completion),
        )

    async def load_all(self) -> list[WeekLoadResult]:
        """Load every week storage knows about."""
        if self.persistence is None:
            return []

        try:
            week_keys = await self.persistence.list_week_keys()
        except Exception as exc:  # Storage failure: keep whatever is local
            logger.error(f"Failed to list stored weeks: {exc}")
            return []

        return [await self.load_week(key) for key in week_keys]
