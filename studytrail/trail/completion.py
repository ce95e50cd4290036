"""
Completion tracking for trail entries.

Completion is stored per (week, day, topic) and is deliberately independent
of trail positions: reordering never touches it, and removing an entry
leaves its flag behind, harmlessly orphaned. A topic scheduled twice on the
same day therefore shares one flag.

Writes go through the same PersistenceOutbox as the trail, keyed per week,
so rapid toggles coalesce into one write of the final map.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date
from typing import NamedTuple

from loguru import logger

from studytrail.config import get_settings
from studytrail.trail.addressing import encode_instance_id
from studytrail.trail.models import DAYS, CompletionKey, CompletionMap, DayId, TopicRef, WeekTrail
from studytrail.trail.outbox import PersistenceOutbox
from studytrail.trail.persistence import TrailPersistence
from studytrail.trail.store import WeeklyTrailStore
from studytrail.trail.week_keys import canonical_week_key


class TrailCard(NamedTuple):
    """One rendered entry; ``instance_id`` addresses its stored position."""

    instance_id: str
    day: DayId
    index: int
    ref: TopicRef
    done: bool


@dataclass
class DayStats:
    total: int
    completed: int
    progress: int  # percent, 0-100


@dataclass
class WeekStats:
    total: int
    completed: int
    pending: int
    progress: int  # percent, 0-100


def _percent(completed: int, total: int) -> int:
    if total == 0:
        return 0
    return math.floor(completed * 100 / total + 0.5)


class CompletionTracker:
    """Per-(week, day, topic) completion flags with debounced persistence."""

    def __init__(
        self,
        store: WeeklyTrailStore,
        persistence: TrailPersistence | None = None,
        outbox: PersistenceOutbox | None = None,
        save_delay_ms: int | None = None,
    ):
        settings = get_settings()
        self.store = store
        self.persistence = persistence if persistence is not None else store.persistence
        self.outbox = outbox or store.outbox
        self.save_delay_ms = (
            settings.completion_save_debounce_ms if save_delay_ms is None else save_delay_ms
        )
        self._weeks: dict[str, CompletionMap] = {}

    # =========================================================================
    # READS
    # =========================================================================

    def is_done(self, week_key: str | date, day: DayId | str, topic_key: str) -> bool:
        day_id = DayId.parse(day)
        if day_id is None:
            return False
        return self._weeks.get(canonical_week_key(week_key), {}).get((day_id, topic_key), False)

    def completion_map(self, week_key: str | date) -> CompletionMap:
        return dict(self._weeks.get(canonical_week_key(week_key), {}))

    def week_keys(self) -> list[str]:
        return sorted(self._weeks)

    def ordered_day(self, week_key: str | date, day: DayId | str) -> list[TrailCard]:
        """
        Presentation order for a day: incomplete entries first, then
        completed ones, each group in its planned order.

        Instance ids still address the stored positions, not the display order.
        """
        day_id = DayId.parse(day)
        if day_id is None:
            return []

        key = canonical_week_key(week_key)
        cards = [
            TrailCard(
                instance_id=encode_instance_id(day_id, index),
                day=day_id,
                index=index,
                ref=ref,
                done=self.is_done(key, day_id, ref.topic_key),
            )
            for index, ref in enumerate(self.store.get_trail(key)[day_id])
        ]
        # sorted() is stable
        return sorted(cards, key=lambda card: card.done)

    def day_stats(self, week_key: str | date, day: DayId | str) -> DayStats:
        cards = self.ordered_day(week_key, day)
        completed = sum(1 for card in cards if card.done)
        return DayStats(total=len(cards), completed=completed, progress=_percent(completed, len(cards)))

    def week_stats(self, week_key: str | date) -> WeekStats:
        total = 0
        completed = 0
        for day in DAYS:
            stats = self.day_stats(week_key, day)
            total += stats.total
            completed += stats.completed
        return WeekStats(
            total=total,
            completed=completed,
            pending=total - completed,
            progress=_percent(completed, total),
        )

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def toggle(self, week_key: str | date, day: DayId | str, topic_key: str) -> bool:
        """
        Flip a completion flag.

        Returns:
            The new state
        """
        day_id = DayId.parse(day)
        if day_id is None:
            raise ValueError(f"Unknown day: {day!r}")

        key = canonical_week_key(week_key)
        completion = self._weeks.setdefault(key, {})
        new_state = not completion.get((day_id, topic_key), False)
        completion[(day_id, topic_key)] = new_state
        self._schedule_save(key)
        return new_state

    def mark_done(
        self,
        week_key: str | date,
        day: DayId | str,
        topic_key: str,
        *alternate_keys: str,
    ) -> CompletionKey | None:
        """
        Mark a topic done where it is actually scheduled.

        Search order:
        1. The given (week, day)
        2. The other days of the given week
        3. Every other known week, oldest first

        The first match is marked (only if not already done) and the search
        stops. ``alternate_keys`` are extra topic keys that count as the same
        study (e.g. the topic a timer was started on).

        Returns:
            Where the completion landed, or None if the topic is not on any trail
        """
        key = canonical_week_key(week_key)
        candidates = (topic_key, *alternate_keys)

        # 1. Exact day
        day_id = DayId.parse(day)
        if day_id is not None:
            entries = {ref.topic_key for ref in self.store.get_trail(key)[day_id]}
            for candidate in candidates:
                if candidate in entries:
                    return self._mark(CompletionKey(key, day_id, candidate))

        # 2. Same week, 3. other weeks
        other_weeks = [k for k in self.store.week_keys() if k != key]
        for searched_week in (key, *other_weeks):
            found = self._find(self.store.get_trail(searched_week), candidates)
            if found is not None:
                found_day, found_key = found
                return self._mark(CompletionKey(searched_week, found_day, found_key))

        logger.info(f"Topic {topic_key} is not scheduled in any loaded week; nothing marked")
        return None

    def adopt(self, week_key: str | date, completion: CompletionMap) -> None:
        """Install a loaded completion map, dropping any queued save of the old map."""
        key = canonical_week_key(week_key)
        self._weeks[key] = dict(completion)
        self.outbox.discard(f"completion:{key}")

    def reset(self) -> None:
        self._weeks.clear()
        self.outbox.discard(prefix="completion:")

    # =========================================================================
    # INTERNALS
    # =========================================================================

    @staticmethod
    def _find(trail: WeekTrail, candidates: tuple[str, ...]) -> tuple[DayId, str] | None:
        for day in DAYS:
            entries = {ref.topic_key for ref in trail[day]}
            for candidate in candidates:
                if candidate in entries:
                    return day, candidate
        return None

    def _mark(self, completion_key: CompletionKey) -> CompletionKey:
        completion = self._weeks.setdefault(completion_key.week_key, {})
        flag = (completion_key.day, completion_key.topic_key)
        if not completion.get(flag, False):
            completion[flag] = True
            self._schedule_save(completion_key.week_key)
            logger.debug(f"Marked {completion_key} done")
        return completion_key

    def _schedule_save(self, key: str) -> None:
        if self.persistence is None:
            return

        snapshot = dict(self._weeks.get(key, {}))
        persistence = self.persistence

        async def write() -> None:
            await persistence.save_completion_map(key, snapshot)

        self.outbox.schedule(f"completion:{key}", write, self.save_delay_ms)
