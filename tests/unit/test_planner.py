"""
Unit tests for weekly plan generation.

Tests:
- RoundRobinPlanner distribution and capacity
- AIPlannerClient response parsing and retry logic
- PlanningService commit / keep-current-trail behaviour
"""

import pytest
import pytest_asyncio
from httpx import HTTPStatusError, Request, Response, TimeoutException

from studytrail.trail.models import DayId, EphemeralTopicRef, PersistentTopicRef, empty_week
from studytrail.trail.planner import (
    AIPlannerClient,
    PlanConfig,
    PlanConfigError,
    PlanGenerationError,
    PlanningService,
    RoundRobinPlanner,
)

WEEK = "2024-01-01"


def topics(*topic_ids):
    return [PersistentTopicRef(topic_id=t, discipline_id="law") for t in topic_ids]


def keys(trail, day):
    return [ref.topic_key for ref in trail[day]]


@pytest_asyncio.fixture
async def client():
    """AI planner client instance."""
    client = AIPlannerClient(api_url="http://localhost:8095/", timeout_ms=5000, retry_attempts=3)
    yield client
    await client.close()


class TestPlanConfig:
    def test_requires_topics(self):
        with pytest.raises(PlanConfigError):
            PlanConfig(topics=[], days=[DayId.MON]).validate_request()

    def test_default_days_are_weekdays(self):
        assert PlanConfig(topics=topics("a")).resolved_days() == [
            DayId.MON,
            DayId.TUE,
            DayId.WED,
            DayId.THU,
            DayId.FRI,
        ]

    def test_duplicate_days_collapse(self):
        assert PlanConfig(topics=topics("a"), days=["tue", "tue", "mon"]).resolved_days() == [DayId.TUE, DayId.MON]

    def test_per_day_must_be_positive(self):
        with pytest.raises(PlanConfigError):
            PlanConfig(topics=topics("a"), max_topics_per_day=0).validate_request()


class TestRoundRobinPlanner:
    @pytest.mark.asyncio
    async def test_deals_topics_over_days(self):
        config = PlanConfig(topics=topics("a", "b", "c"), days=[DayId.MON, DayId.WED], shuffle=False)

        trail = await RoundRobinPlanner().generate_trail(config)

        assert keys(trail, DayId.MON) == ["a", "c"]
        assert keys(trail, DayId.WED) == ["b"]
        assert keys(trail, DayId.TUE) == []

    @pytest.mark.asyncio
    async def test_capacity_limits_output(self):
        config = PlanConfig(
            topics=topics("a", "b", "c", "d", "e"),
            days=[DayId.MON, DayId.TUE],
            max_topics_per_day=2,
            shuffle=False,
        )

        trail = await RoundRobinPlanner().generate_trail(config)

        assert keys(trail, DayId.MON) == ["a", "c"]
        assert keys(trail, DayId.TUE) == ["b", "d"]

    @pytest.mark.asyncio
    async def test_seeded_shuffle_is_reproducible(self):
        config = PlanConfig(topics=topics(*"abcdefgh"), days=[DayId.MON, DayId.TUE])

        first = await RoundRobinPlanner(seed=7).generate_trail(config)
        second = await RoundRobinPlanner(seed=7).generate_trail(config)

        assert first == second
        assert sum(len(v) for v in first.values()) == 8


class TestAIPlannerClient:
    @pytest.mark.asyncio
    async def test_parses_both_topic_kinds(self, client, monkeypatch):
        calls = []

        async def mock_post(url, **kwargs):
            calls.append((url, kwargs["json"]))
            body = {
                "days": {
                    "mon": [{"topic_id": "t1", "discipline_id": "law"}],
                    "tue": [{"title": "Generated review", "discipline": "Law", "minutes": 30}],
                    "someday": [{"title": "ignored"}],
                }
            }
            return Response(200, json=body, request=Request("POST", url))

        monkeypatch.setattr(client.client, "post", mock_post)

        trail = await client.generate_trail(PlanConfig(topics=topics("t1")))

        assert calls[0][0] == "http://localhost:8095/plans/weekly"
        assert calls[0][1]["topics"][0]["topic_id"] == "t1"
        assert trail[DayId.MON] == [PersistentTopicRef(topic_id="t1", discipline_id="law")]
        generated = trail[DayId.TUE][0]
        assert isinstance(generated, EphemeralTopicRef)
        assert generated.title == "Generated review"
        assert generated.payload == {"minutes": 30}

    @pytest.mark.asyncio
    async def test_timeout_retry(self, client, monkeypatch):
        """Test retry logic on timeout."""
        call_count = 0

        async def mock_post(url, **kwargs):
            nonlocal call_count
            call_count += 1
            if call_count < 2:
                raise TimeoutException("Timeout")
            return Response(200, json={"days": {}}, request=Request("POST", url))

        monkeypatch.setattr(client.client, "post", mock_post)

        trail = await client.generate_trail(PlanConfig(topics=topics("t1")))

        assert call_count == 2
        assert trail == empty_week()

    @pytest.mark.asyncio
    async def test_client_error_no_retry(self, client, monkeypatch):
        call_count = 0

        async def mock_post(url, **kwargs):
            nonlocal call_count
            call_count += 1
            req = Request("POST", url)
            raise HTTPStatusError("Bad request", request=req, response=Response(400, request=req))

        monkeypatch.setattr(client.client, "post", mock_post)

        with pytest.raises(PlanGenerationError):
            await client.generate_trail(PlanConfig(topics=topics("t1")))
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_malformed_response(self, client, monkeypatch):
        async def mock_post(url, **kwargs):
            return Response(200, json={"plan": []}, request=Request("POST", url))

        monkeypatch.setattr(client.client, "post", mock_post)

        with pytest.raises(PlanGenerationError):
            await client.generate_trail(PlanConfig(topics=topics("t1")))

    def test_from_settings_requires_url(self, monkeypatch):
        monkeypatch.delenv("AI_PLANNER_URL", raising=False)
        with pytest.raises(PlanConfigError):
            AIPlannerClient.from_settings()


class FailingGenerator:
    async def generate_trail(self, config):
        raise PlanGenerationError("service down")


class TestPlanningService:
    @pytest.mark.asyncio
    async def test_applies_and_saves_plan(self, engine, trail_persistence):
        config = PlanConfig(topics=topics("a", "b"), days=[DayId.THU], shuffle=False)

        outcome = await PlanningService(engine.store, RoundRobinPlanner()).apply_plan(config, "2024-01-03")

        assert outcome.applied
        assert outcome.week_key == WEEK
        assert outcome.entries == 2
        assert outcome.notice == "Study plan generated with 2 topic(s)."
        assert keys(trail_persistence.trails[WEEK], DayId.THU) == ["a", "b"]
        assert engine.store.active_week_key == WEEK

    @pytest.mark.asyncio
    async def test_failure_keeps_current_trail(self, engine, trail_persistence):
        engine.store.add_entries(WEEK, DayId.MON, topics("keep"))
        await engine.flush()
        saves_before = trail_persistence.save_calls

        outcome = await PlanningService(engine.store, FailingGenerator()).apply_plan(
            PlanConfig(topics=topics("a")), WEEK
        )

        assert not outcome.applied
        assert "current trail was kept" in outcome.notice
        assert keys(engine.store.get_trail(WEEK), DayId.MON) == ["keep"]
        assert trail_persistence.save_calls == saves_before

    @pytest.mark.asyncio
    async def test_invalid_request_raises(self, engine):
        with pytest.raises(PlanConfigError):
            await PlanningService(engine.store, RoundRobinPlanner()).apply_plan(PlanConfig(topics=[]), WEEK)
