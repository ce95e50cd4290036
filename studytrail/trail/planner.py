"""
Weekly plan generation.

A planner turns a PlanConfig (topics to study, days available, weekly load)
into a full WeekTrail. Two planners implement the TrailGenerator protocol:

- RoundRobinPlanner: shuffles the selected topics and deals them over the
  selected days, at most ``max_topics_per_day`` per day
- AIPlannerClient: asks a remote planning service over HTTP; its topics come
  back as ephemeral references carried inline in the trail

PlanningService applies a generated plan to the store. Generation may be slow
or fail; a failure only produces a user-facing notice and never commits a
partial trail.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from datetime import date
from typing import Any, Protocol, runtime_checkable

import httpx
from loguru import logger
from pydantic import BaseModel, Field

from studytrail.config import get_settings
from studytrail.trail.models import (
    DayId,
    Difficulty,
    EphemeralTopicRef,
    PersistentTopicRef,
    TopicRef,
    WeekTrail,
    count_entries,
    empty_week,
    normalize_week,
)
from studytrail.trail.store import WeeklyTrailStore
from studytrail.trail.week_keys import canonical_week_key


class PlanConfigError(ValueError):
    """Raised when a plan request cannot be generated as configured."""


class PlanGenerationError(RuntimeError):
    """Raised by a planner when it could not produce a trail."""


class PlanConfig(BaseModel):
    """What to plan for a week."""

    topics: list[TopicRef] = Field(default_factory=list)
    days: list[DayId] = Field(default_factory=list)
    weekly_hours: int = 20
    difficulties: dict[str, Difficulty] = Field(default_factory=dict)  # discipline -> difficulty
    max_topics_per_day: int | None = None
    shuffle: bool = True

    def resolved_days(self) -> list[DayId]:
        if self.days:
            return list(dict.fromkeys(self.days))
        return [DayId(day) for day in get_settings().plan_default_days]

    def validate_request(self) -> None:
        if not self.topics:
            raise PlanConfigError("Select at least one topic to generate a plan")
        if not self.resolved_days():
            raise PlanConfigError("Select at least one day of the week")
        if self.max_topics_per_day is not None and self.max_topics_per_day < 1:
            raise PlanConfigError("max_topics_per_day must be at least 1")


@runtime_checkable
class TrailGenerator(Protocol):
    async def generate_trail(self, config: PlanConfig) -> WeekTrail: ...


# =============================================================================
# ROUND-ROBIN PLANNER
# =============================================================================


class RoundRobinPlanner:
    """
    Deals topics over the selected days.

    Topics beyond ``days * max_topics_per_day`` are left out; the user can
    add them by hand.
    """

    def __init__(self, seed: int | None = None):
        self._random = random.Random(seed)

    async def generate_trail(self, config: PlanConfig) -> WeekTrail:
        config.validate_request()
        days = config.resolved_days()
        per_day = config.max_topics_per_day or get_settings().plan_max_topics_per_day

        topics = list(config.topics)
        if config.shuffle:
            self._random.shuffle(topics)

        trail = empty_week()
        capacity = per_day * len(days)
        for position, topic in enumerate(topics[:capacity]):
            trail[days[position % len(days)]].append(topic)

        if len(topics) > capacity:
            logger.info(f"Plan is full: {len(topics) - capacity} topic(s) left out")
        return trail


# =============================================================================
# REMOTE AI PLANNER
# =============================================================================


def _topic_from_response(item: dict[str, Any]) -> TopicRef:
    if item.get("topic_id") and item.get("discipline_id"):
        return PersistentTopicRef(topic_id=str(item["topic_id"]), discipline_id=str(item["discipline_id"]))
    title = item.get("title")
    if not title:
        raise PlanGenerationError(f"Planner returned a topic without title: {item!r}")
    return EphemeralTopicRef(
        title=str(title),
        discipline_name=str(item.get("discipline", "")),
        payload={k: v for k, v in item.items() if k not in {"title", "discipline"}},
    )


class AIPlannerClient:
    """HTTP client for the remote AI planning service."""

    def __init__(
        self,
        api_url: str,
        timeout_ms: int = 30000,
        retry_attempts: int = 3,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize planner client.

        Args:
            api_url: Base URL of the planning service
            timeout_ms: Request timeout in milliseconds
            retry_attempts: Attempts on timeouts and 5xx responses
            client: Pre-built httpx client (tests inject a mock transport)
        """
        self.api_url = api_url.rstrip("/")
        self.timeout_seconds = timeout_ms / 1000.0
        self.retry_attempts = max(1, retry_attempts)
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout_seconds),
            follow_redirects=True,
        )

    @classmethod
    def from_settings(cls) -> AIPlannerClient:
        settings = get_settings()
        if not settings.ai_planner_url:
            raise PlanConfigError("AI planner URL is not configured (AI_PLANNER_URL)")
        return cls(
            api_url=settings.ai_planner_url,
            timeout_ms=settings.ai_planner_timeout_ms,
            retry_attempts=settings.ai_planner_retry_attempts,
        )

    async def close(self) -> None:
        await self.client.aclose()

    async def generate_trail(self, config: PlanConfig) -> WeekTrail:
        """
        Request a weekly plan.

        Raises:
            PlanGenerationError: After retries are exhausted or on a bad response
        """
        config.validate_request()
        data = await self._post("/plans/weekly", config.model_dump(mode="json"))

        days = data.get("days") if isinstance(data, dict) else None
        if not isinstance(days, dict):
            raise PlanGenerationError("Planner response has no 'days' mapping")

        trail = empty_week()
        for raw_day, items in days.items():
            day = DayId.parse(raw_day)
            if day is None or not isinstance(items, list):
                logger.warning(f"Skipping unknown planner day: {raw_day!r}")
                continue
            trail[day] = [_topic_from_response(item) for item in items if isinstance(item, dict)]
        return trail

    async def _post(self, path: str, payload: dict[str, Any]) -> Any:
        last_error: Exception | None = None

        for attempt in range(self.retry_attempts):
            try:
                response = await self.client.post(f"{self.api_url}{path}", json=payload)
                response.raise_for_status()
                return response.json()

            except httpx.TimeoutException as e:
                last_error = e
                wait_time = 2 ** attempt  # Exponential backoff: 1s, 2s, 4s
                logger.warning(
                    f"AI planner timeout on attempt {attempt + 1}/{self.retry_attempts}. "
                    f"Retrying in {wait_time}s..."
                )
                if attempt < self.retry_attempts - 1:
                    await asyncio.sleep(wait_time)

            except httpx.HTTPStatusError as e:
                last_error = e
                if e.response.status_code >= 500 and attempt < self.retry_attempts - 1:
                    await asyncio.sleep(2 ** attempt)
                    continue
                break

            except (httpx.HTTPError, ValueError) as e:
                last_error = e
                break

        raise PlanGenerationError(f"AI planner request failed: {last_error}") from last_error


# =============================================================================
# APPLYING PLANS
# =============================================================================


@dataclass
class PlanOutcome:
    applied: bool
    week_key: str
    notice: str
    entries: int = 0


class PlanningService:
    """Generates a plan and commits it to the store as a whole week."""

    def __init__(self, store: WeeklyTrailStore, generator: TrailGenerator):
        self.store = store
        self.generator = generator

    async def apply_plan(
        self,
        config: PlanConfig,
        week_key: str | date | None = None,
        flush: bool = True,
    ) -> PlanOutcome:
        """
        Generate and apply a weekly plan.

        Args:
            config: Plan request
            week_key: Target week (current week when omitted)
            flush: Write the new week to storage before returning

        Returns:
            PlanOutcome; ``applied`` is False when generation failed, in which
            case the store is unchanged and ``notice`` explains why

        Raises:
            PlanConfigError: If the request itself is invalid
        """
        config.validate_request()
        key = canonical_week_key(week_key or date.today())

        try:
            trail = normalize_week(await self.generator.generate_trail(config))
        except PlanConfigError:
            raise
        except Exception as exc:  # Collaborator failure becomes a notice
            logger.error(f"Plan generation failed: {exc}")
            return PlanOutcome(
                applied=False,
                week_key=key,
                notice="Could not generate the study plan. Your current trail was kept.",
            )

        self.store.set_active_week(key)
        self.store.set_trail(key, trail)
        if flush:
            await self.store.outbox.flush()

        entries = count_entries(trail)
        return PlanOutcome(
            applied=True,
            week_key=key,
            notice=f"Study plan generated with {entries} topic(s).",
            entries=entries,
        )
