"""
Weekly Trail Store - positional, day-bucketed study plan.

Owns the per-week ordered lists of topic references (seven buckets per week)
and exposes the only operations allowed to change them:

- set_trail: replace a whole week
- move_entry: drag-and-drop reassignment across days
- insert_entry: drop a topic from the backlog onto a target
- add_entries: append topics to a day
- remove_entry: remove one positioned entry

Every mutation works on a copy of the week and commits it as one state
transition, then queues an asynchronous save through the PersistenceOutbox.
Entries are addressed by (day, position) InstanceIds, which every mutation
invalidates for the affected days; callers re-derive them after each change.

A single logical writer per week is assumed (one user, one drag in flight).
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date

from loguru import logger

from studytrail.config import get_settings
from studytrail.trail.addressing import decode_instance_id, resolve_drop_target
from studytrail.trail.models import (
    DayId,
    TopicRef,
    WeekTrail,
    copy_week,
    count_entries,
    empty_week,
    normalize_week,
    week_signature,
)
from studytrail.trail.outbox import PersistenceOutbox
from studytrail.trail.persistence import TrailPersistence
from studytrail.trail.week_keys import canonical_week_key, current_week_key


class WeeklyTrailStore:
    """
    In-memory owner of every known week's trail.

    Lifetime is process-wide in the application; tests construct their own
    instance or call ``reset()``.
    """

    def __init__(
        self,
        persistence: TrailPersistence | None = None,
        outbox: PersistenceOutbox | None = None,
        save_delay_ms: int | None = None,
        active_week_key: str | date | None = None,
    ):
        """
        Initialize the store.

        Args:
            persistence: Storage for trails (None keeps the store memory-only)
            outbox: Shared outbox (created if not provided)
            save_delay_ms: Debounce before a week is written (settings default)
            active_week_key: Week used when an operation names none (current week)
        """
        settings = get_settings()
        self.persistence = persistence
        self.outbox = outbox or PersistenceOutbox(settings.trail_save_debounce_ms)
        self.save_delay_ms = (
            settings.trail_save_debounce_ms if save_delay_ms is None else save_delay_ms
        )
        self._weeks: dict[str, WeekTrail] = {}
        self.active_week_key = (
            canonical_week_key(active_week_key) if active_week_key else current_week_key()
        )

    # =========================================================================
    # READS
    # =========================================================================

    def get_trail(self, week_key: str | date | None = None) -> WeekTrail:
        """Copy of a week's trail; uninitialized weeks have seven empty days."""
        trail = self._weeks.get(self._key(week_key))
        return copy_week(trail) if trail is not None else empty_week()

    def week_keys(self) -> list[str]:
        """Weeks holding state, oldest first."""
        return sorted(self._weeks)

    def total_entries(self, week_key: str | date | None = None) -> int:
        return count_entries(self.get_trail(week_key))

    def entry_at(self, instance_id: str, week_key: str | date | None = None) -> TopicRef | None:
        address = decode_instance_id(instance_id)
        if address is None:
            return None
        entries = self._weeks.get(self._key(week_key), {}).get(address.day, [])
        if address.index >= len(entries):
            return None
        return entries[address.index]

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def set_active_week(self, week_key: str | date) -> str:
        self.active_week_key = canonical_week_key(week_key)
        return self.active_week_key

    def set_trail(self, week_key: str | date, trail: WeekTrail | dict) -> bool:
        """
        Replace a whole week atomically and queue its save.

        Returns:
            False when the new content equals the stored content (nothing queued)
        """
        key = self._key(week_key)
        new_week = normalize_week(trail)
        if week_signature(new_week) == week_signature(self.get_trail(key)) and key in self._weeks:
            return False

        self._commit(key, new_week)
        return True

    def adopt(self, week_key: str | date, trail: WeekTrail) -> None:
        """
        Install loaded state without queueing a save (it came from storage).

        A queued save of the week carries the replaced local state, so it is dropped.
        """
        key = self._key(week_key)
        self._weeks[key] = normalize_week(trail)
        self.outbox.discard(f"trail:{key}")

    def move_entry(
        self,
        from_instance_id: str,
        target: str | DayId,
        week_key: str | date | None = None,
    ) -> bool:
        """
        Move one entry to a drop target.

        Args:
            from_instance_id: InstanceId of the dragged entry
            target: Day drop zone (DayId or "droppable-<day>", appends) or a
                card InstanceId (inserts before that card)
            week_key: Owning week (active week when omitted)

        Returns:
            True if the trail changed shape, False for a no-op
        """
        key = self._key(week_key)

        # 1. Decode source
        source = decode_instance_id(from_instance_id)
        if source is None:
            return False

        week = self.get_trail(key)
        source_list = week[source.day]
        if source.index >= len(source_list):
            logger.debug(f"No entry at {from_instance_id} in week {key}")
            return False

        destination = resolve_drop_target(target)
        if destination is None:
            return False

        # 2. Remove from source (later entries shift down)
        entry = source_list.pop(source.index)

        # 3. Resolve insertion point
        destination_list = week[destination.day]
        if destination.index is None:
            index = len(destination_list)
        else:
            index = destination.index
            # 4. Compensate for the shift caused by the removal
            if destination.day == source.day and index > source.index:
                index -= 1

        # 5. Clamp
        index = max(0, min(index, len(destination_list)))

        # 6. Insert and commit both days at once
        destination_list.insert(index, entry)
        self._commit(key, week)
        logger.debug(
            f"Moved {entry.topic_key} {source.day.value}[{source.index}] -> "
            f"{destination.day.value}[{index}] in week {key}"
        )
        return True

    def insert_entry(
        self,
        target: str | DayId,
        ref: TopicRef,
        week_key: str | date | None = None,
    ) -> bool:
        """Insert a new entry (e.g. dragged from the backlog) at a drop target."""
        destination = resolve_drop_target(target)
        if destination is None:
            return False

        key = self._key(week_key)
        week = self.get_trail(key)
        entries = week[destination.day]
        index = len(entries) if destination.index is None else min(destination.index, len(entries))
        entries.insert(index, ref)
        self._commit(key, week)
        return True

    def add_entries(
        self,
        week_key: str | date | None,
        day: DayId | str,
        refs: Iterable[TopicRef],
    ) -> int:
        """
        Append topics to the end of a day.

        Duplicates are allowed: revisiting a topic is intentional.

        Returns:
            Number of entries appended
        """
        day_id = DayId.parse(day)
        if day_id is None:
            raise ValueError(f"Unknown day: {day!r}")

        new_refs = list(refs)
        if not new_refs:
            return 0

        key = self._key(week_key)
        week = self.get_trail(key)
        week[day_id].extend(new_refs)
        self._commit(key, week)
        return len(new_refs)

    def remove_entry(self, instance_id: str, week_key: str | date | None = None) -> TopicRef | None:
        """
        Remove the entry at ``instance_id``.

        Every remaining instance id of that day is invalidated.

        Returns:
            The removed topic reference, or None for a no-op
        """
        address = decode_instance_id(instance_id)
        if address is None:
            return None

        key = self._key(week_key)
        week = self.get_trail(key)
        entries = week[address.day]
        if address.index >= len(entries):
            logger.debug(f"No entry at {instance_id} in week {key}")
            return None

        removed = entries.pop(address.index)
        self._commit(key, week)
        return removed

    def reset(self) -> None:
        """Forget every week and drop queued trail writes."""
        self._weeks.clear()
        self.outbox.discard(prefix="trail:")

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _key(self, week_key: str | date | None) -> str:
        if week_key is None:
            return self.active_week_key
        return canonical_week_key(week_key)

    def _commit(self, key: str, week: WeekTrail) -> None:
        self._weeks[key] = week
        self._schedule_save(key)

    def _schedule_save(self, key: str) -> None:
        if self.persistence is None:
            return

        snapshot = copy_week(self._weeks[key])
        persistence = self.persistence

        async def write() -> None:
            await persistence.save_trail(key, snapshot)

        self.outbox.schedule(f"trail:{key}", write, self.save_delay_ms)
