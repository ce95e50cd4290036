"""
Unit tests for SyncReconciler (non-empty-wins reconciliation).
"""

import pytest

from studytrail.trail.engine import build_engine
from studytrail.trail.models import DayId, empty_week
from studytrail.trail.reconciler import ReconcileDecision, reconcile, reconcile_completion

WEEK = "2024-01-01"


def week_with(make_topic, **days):
    week = empty_week()
    for day, topic_ids in days.items():
        week[DayId(day)] = [make_topic(t) for t in topic_ids]
    return week


class TestReconcile:
    def test_equal_content_is_unchanged(self, make_topic):
        local = week_with(make_topic, mon=["a"])
        assert reconcile(local, week_with(make_topic, mon=["a"])) == ReconcileDecision.UNCHANGED

    def test_non_empty_load_is_adopted(self, make_topic):
        local = week_with(make_topic, mon=["a"])
        assert reconcile(local, week_with(make_topic, tue=["b"])) == ReconcileDecision.ADOPTED

    def test_empty_load_never_clobbers_local(self, make_topic):
        local = week_with(make_topic, mon=["a"])
        assert reconcile(local, empty_week()) == ReconcileDecision.KEPT_LOCAL

    def test_both_empty_is_unchanged(self):
        assert reconcile(empty_week(), {}) == ReconcileDecision.UNCHANGED

    def test_unparseable_load_keeps_local(self, make_topic):
        local = week_with(make_topic, mon=["a"])
        assert reconcile(local, {"mon": [{"kind": "alien"}]}) == ReconcileDecision.KEPT_LOCAL

    def test_raw_payload_is_accepted(self, make_topic):
        loaded = {"wed": [{"kind": "persistent", "topic_id": "x", "discipline_id": "law"}]}
        assert reconcile(empty_week(), loaded) == ReconcileDecision.ADOPTED

    def test_completion_rules(self):
        local = {(DayId.MON, "a"): True}
        assert reconcile_completion(local, dict(local)) == ReconcileDecision.UNCHANGED
        assert reconcile_completion(local, {(DayId.MON, "b"): True}) == ReconcileDecision.ADOPTED
        assert reconcile_completion(local, {}) == ReconcileDecision.KEPT_LOCAL
        assert reconcile_completion(local, None) == ReconcileDecision.KEPT_LOCAL


class TestSyncReconciler:
    def test_apply_adopts_without_saving(self, engine, make_topic):
        decision = engine.reconciler.apply(WEEK, week_with(make_topic, fri=["f"]))

        assert decision == ReconcileDecision.ADOPTED
        assert engine.store.get_trail(WEEK)[DayId.FRI][0].topic_key == "f"
        assert not engine.outbox.has_work

    @pytest.mark.asyncio
    async def test_load_week_from_storage(self, engine, trail_persistence, make_topic):
        trail_persistence.trails[WEEK] = week_with(make_topic, mon=["a", "b"])
        trail_persistence.completions[WEEK] = {(DayId.MON, "a"): True}

        result = await engine.reconciler.load_week("2024-01-03")

        assert result.week_key == WEEK
        assert result.trail == ReconcileDecision.ADOPTED
        assert result.completion == ReconcileDecision.ADOPTED
        assert engine.tracker.is_done(WEEK, DayId.MON, "a")

    @pytest.mark.asyncio
    async def test_in_flight_local_edit_survives_empty_load(self, trail_persistence, make_topic):
        engine = build_engine(persistence=trail_persistence, active_week_key=WEEK, save_delay_ms=10_000)
        engine.store.add_entries(WEEK, DayId.MON, [make_topic("a")])

        # Storage still empty: the save is queued but has not run
        result = await engine.reconciler.load_week(WEEK)
        engine.outbox.discard()

        assert result.trail == ReconcileDecision.KEPT_LOCAL
        assert engine.store.total_entries(WEEK) == 1

    @pytest.mark.asyncio
    async def test_load_error_keeps_local(self, engine, trail_persistence, make_topic, monkeypatch):
        engine.store.add_entries(WEEK, DayId.MON, [make_topic("a")])

        async def broken(week_key):
            raise ConnectionError("offline")

        monkeypatch.setattr(trail_persistence, "load_trail", broken)
        result = await engine.reconciler.load_week(WEEK)

        assert result.error == "offline"
        assert engine.store.total_entries(WEEK) == 1

    @pytest.mark.asyncio
    async def test_load_all(self, engine, trail_persistence, make_topic):
        trail_persistence.trails[WEEK] = week_with(make_topic, mon=["a"])
        trail_persistence.trails["2024-01-08"] = week_with(make_topic, tue=["b"])

        results = await engine.reconciler.load_all()

        assert [r.week_key for r in results] == [WEEK, "2024-01-08"]
        assert engine.store.week_keys() == [WEEK, "2024-01-08"]


class TestAdoptedStateWinsInStorage:
    @pytest.mark.asyncio
    async def test_queued_local_trail_save_does_not_overwrite_adopted_week(self, trail_persistence, make_topic):
        engine = build_engine(persistence=trail_persistence, active_week_key=WEEK, save_delay_ms=10_000)
        engine.store.add_entries(WEEK, DayId.MON, [make_topic("LOCAL")])
        trail_persistence.trails[WEEK] = week_with(make_topic, mon=["SERVER"])

        result = await engine.reconciler.load_week(WEEK)
        await engine.flush()

        assert result.trail == ReconcileDecision.ADOPTED
        assert [r.topic_key for r in engine.store.get_trail(WEEK)[DayId.MON]] == ["SERVER"]
        assert [r.topic_key for r in trail_persistence.trails[WEEK][DayId.MON]] == ["SERVER"]

    @pytest.mark.asyncio
    async def test_queued_local_completion_save_does_not_overwrite_adopted_map(self, trail_persistence, make_topic):
        engine = build_engine(persistence=trail_persistence, active_week_key=WEEK, save_delay_ms=10_000)
        engine.tracker.toggle(WEEK, DayId.MON, "local")
        trail_persistence.completions[WEEK] = {(DayId.MON, "server"): True}

        result = await engine.reconciler.load_week(WEEK)
        await engine.flush()

        assert result.completion == ReconcileDecision.ADOPTED
        assert engine.tracker.completion_map(WEEK) == {(DayId.MON, "server"): True}
        assert trail_persistence.completions[WEEK] == {(DayId.MON, "server"): True}

    def test_adopt_keeps_other_weeks_queued(self, engine, make_topic):
        engine.store.add_entries("2024-01-08", DayId.MON, [make_topic("other")])

        engine.reconciler.apply(WEEK, week_with(make_topic, fri=["f"]))

        assert engine.outbox.pending_keys == ["trail:2024-01-08"]
