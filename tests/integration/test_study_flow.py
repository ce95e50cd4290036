"""
Integration test for the full study flow over SQLite storage.

Plan a week, rearrange it, save a session with revisions, then rebuild the
engine from storage and check everything came back.
"""

from datetime import datetime

import pytest

from studytrail.db.database import build_engine as build_db_engine
from studytrail.db.database import build_session_factory, init_db
from studytrail.db.repositories import SqlRevisionRepository, SqlTrailPersistence
from studytrail.trail.engine import build_engine
from studytrail.trail.models import DayId, PersistentTopicRef
from studytrail.trail.planner import PlanConfig, PlanningService, RoundRobinPlanner
from studytrail.trail.study_service import StudySession

WEEK = "2024-01-01"


@pytest.fixture
def session_factory(tmp_path):
    db = build_db_engine(f"sqlite:///{tmp_path / 'flow.db'}")
    init_db(db)
    yield build_session_factory(db)
    db.dispose()


def sql_engine(session_factory):
    return build_engine(
        persistence=SqlTrailPersistence(session_factory),
        revisions=SqlRevisionRepository(session_factory),
        active_week_key=WEEK,
        save_delay_ms=0,
    )


@pytest.mark.asyncio
async def test_plan_edit_study_and_reload(session_factory):
    engine = sql_engine(session_factory)
    config = PlanConfig(
        topics=[PersistentTopicRef(topic_id=t, discipline_id="law") for t in ("a", "b", "c")],
        days=[DayId.MON],
        shuffle=False,
    )

    outcome = await PlanningService(engine.store, RoundRobinPlanner()).apply_plan(config, WEEK)
    assert outcome.applied

    engine.store.move_entry("mon__0", "droppable-tue")
    result = await engine.study.record_session(
        StudySession(
            topic_id="a",
            discipline_id="law",
            label="Contracts",
            studied_at=datetime(2024, 1, 2, 10, 0),
            schedule_revisions=True,
        )
    )
    await engine.flush()

    assert result.completion.day == DayId.TUE
    assert len(result.revisions.created) == 4
    assert engine.outbox.failures == 0

    reloaded = sql_engine(session_factory)
    await reloaded.reconciler.load_all()

    trail = reloaded.store.get_trail(WEEK)
    assert [ref.topic_key for ref in trail[DayId.MON]] == ["b", "c"]
    assert [ref.topic_key for ref in trail[DayId.TUE]] == ["a"]
    assert reloaded.tracker.is_done(WEEK, DayId.TUE, "a")
    assert reloaded.tracker.week_stats(WEEK).progress == 33

    again = await reloaded.scheduler.schedule_revisions(
        "a", "law", "Contracts", base_date=datetime(2024, 1, 2, 10, 0)
    )
    assert again.created == []
