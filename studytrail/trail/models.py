"""
Data model for the weekly study trail.

A trail is a mapping of week keys to seven ordered day lists of topic
references. Topic references are a tagged variant:

- PersistentTopicRef: a stored topic belonging to a discipline
- EphemeralTopicRef: an AI-generated topic carried inline, not backed by storage

The discriminant is explicit (``kind``), so persisted payloads never need
format guessing on load.
"""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, NamedTuple, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class DayId(str, Enum):
    """Fixed day buckets of a study week, Monday first."""

    MON = "mon"
    TUE = "tue"
    WED = "wed"
    THU = "thu"
    FRI = "fri"
    SAT = "sat"
    SUN = "sun"

    @classmethod
    def parse(cls, value: str | DayId) -> DayId | None:
        """Return the DayId for ``value`` or None when it is not a day symbol."""
        if isinstance(value, DayId):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


DAYS: tuple[DayId, ...] = tuple(DayId)


# =============================================================================
# TOPIC REFERENCES
# =============================================================================


class PersistentTopicRef(BaseModel):
    """Reference to a stored topic."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["persistent"] = "persistent"
    topic_id: str
    discipline_id: str

    @property
    def topic_key(self) -> str:
        return self.topic_id


class EphemeralTopicRef(BaseModel):
    """AI-generated topic carried inline in the trail."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["ephemeral"] = "ephemeral"
    ref_id: str = Field(default_factory=lambda: uuid4().hex)
    title: str
    discipline_name: str = ""
    payload: dict[str, Any] = Field(default_factory=dict)

    @property
    def topic_key(self) -> str:
        return self.ref_id


TopicRef = Annotated[
    Union[PersistentTopicRef, EphemeralTopicRef],
    Field(discriminator="kind"),
]

WeekTrail = dict[DayId, list[TopicRef]]

_TOPIC_ADAPTER: TypeAdapter[TopicRef] = TypeAdapter(TopicRef)
_TOPIC_LIST_ADAPTER: TypeAdapter[list[TopicRef]] = TypeAdapter(list[TopicRef])


def empty_week() -> WeekTrail:
    """Seven empty day lists."""
    return {day: [] for day in DAYS}


def copy_week(trail: WeekTrail) -> WeekTrail:
    """Shallow-copy every day list (topic refs are immutable)."""
    return {day: list(trail.get(day, [])) for day in DAYS}


def normalize_week(trail: dict[Any, Any] | None) -> WeekTrail:
    """
    Coerce an arbitrary mapping into a full seven-day trail.

    Unknown day keys are dropped, missing days become empty lists and
    non-list values are ignored.
    """
    normalized = empty_week()
    if not trail:
        return normalized

    for raw_day, entries in trail.items():
        day = DayId.parse(raw_day)
        if day is None or not isinstance(entries, (list, tuple)):
            continue
        normalized[day] = [
            entry if isinstance(entry, (PersistentTopicRef, EphemeralTopicRef)) else parse_topic_ref(entry)
            for entry in entries
        ]
    return normalized


def is_week_empty(trail: WeekTrail) -> bool:
    return all(len(trail.get(day, [])) == 0 for day in DAYS)


def count_entries(trail: WeekTrail) -> int:
    return sum(len(trail.get(day, [])) for day in DAYS)


def parse_topic_ref(data: Any) -> TopicRef:
    """Validate a serialized topic reference."""
    return _TOPIC_ADAPTER.validate_python(data)


def week_to_payload(trail: WeekTrail) -> dict[str, list[dict[str, Any]]]:
    """Serialize a week into plain JSON-compatible data."""
    return {
        day.value: _TOPIC_LIST_ADAPTER.dump_python(list(trail.get(day, [])), mode="json")
        for day in DAYS
    }


def week_from_payload(payload: dict[str, Any] | None) -> WeekTrail:
    """Deserialize a week payload produced by ``week_to_payload``."""
    trail = empty_week()
    if not payload:
        return trail

    for raw_day, entries in payload.items():
        day = DayId.parse(raw_day)
        if day is None:
            continue
        trail[day] = _TOPIC_LIST_ADAPTER.validate_python(entries or [])
    return trail


def week_signature(trail: WeekTrail) -> str:
    """Canonical serialized form used for content-equality checks."""
    return json.dumps(week_to_payload(trail), sort_keys=True, separators=(",", ":"))


# =============================================================================
# COMPLETION
# =============================================================================


class CompletionKey(NamedTuple):
    """Address of a completion flag, independent of trail positions."""

    week_key: str
    day: DayId
    topic_key: str


# Completion flags for a single week keyed by (day, topic_key)
CompletionMap = dict[tuple[DayId, str], bool]


# =============================================================================
# REVISIONS
# =============================================================================


class RevisionStatus(str, Enum):
    PENDING = "pending"
    DONE = "done"
    LATE = "late"


class RevisionOrigin(str, Enum):
    FLASHCARD = "flashcard"
    ERROR = "error"
    MANUAL = "manual"
    THEORY = "theory"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    UNKNOWN = "unknown"


class RevisionOutcome(str, Enum):
    """Result reported when a revision is worked through."""

    CORRECT = "correct"
    WRONG = "wrong"
    POSTPONED = "postponed"


class RevisionRecord(BaseModel):
    """A spaced-repetition reminder for a topic."""

    id: str | None = None
    topic_id: str
    discipline_id: str
    label: str
    scheduled_date: datetime
    status: RevisionStatus = RevisionStatus.PENDING
    origin: RevisionOrigin = RevisionOrigin.THEORY
    difficulty: Difficulty = Difficulty.MEDIUM
