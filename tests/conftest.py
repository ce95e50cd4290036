"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from studytrail.config import get_settings  # noqa: E402
from studytrail.trail.engine import build_engine  # noqa: E402
from studytrail.trail.models import PersistentTopicRef  # noqa: E402
from studytrail.trail.persistence import InMemoryRevisionRepository, InMemoryTrailPersistence  # noqa: E402

WEEK = "2024-01-01"


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (SQLite database)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(autouse=True)
def fresh_settings():
    """Settings are cached per process; tests that patch env need a fresh read."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def week_key():
    """A Monday-keyed week used across tests."""
    return WEEK


def topic(topic_id: str, discipline_id: str = "law") -> PersistentTopicRef:
    return PersistentTopicRef(topic_id=topic_id, discipline_id=discipline_id)


@pytest.fixture
def make_topic():
    """Factory for persistent topic references."""
    return topic


@pytest.fixture
def trail_persistence():
    return InMemoryTrailPersistence()


@pytest.fixture
def revision_repository():
    return InMemoryRevisionRepository()


@pytest.fixture
def engine(trail_persistence, revision_repository):
    """Engine over in-memory storage with immediate (zero-delay) saves."""
    return build_engine(
        persistence=trail_persistence,
        revisions=revision_repository,
        active_week_key=WEEK,
        save_delay_ms=0,
    )
