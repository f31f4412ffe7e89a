"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import sys
from datetime import UTC, datetime
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.analytics.engine import LearningAnalyticsEngine  # noqa: E402
from src.core.models import PerformanceRecord  # noqa: E402
from src.db.repository import InMemoryRepository  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (SQLite database)")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def now():
    """A fixed Monday morning, UTC."""
    return datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


@pytest.fixture
def repo():
    """Empty in-memory repository."""
    return InMemoryRepository()


@pytest.fixture
def engine(repo, now):
    """Engine over the in-memory repository with a frozen clock."""
    analytics = LearningAnalyticsEngine(repo, persistence_timeout=2.0, lock_timeout=2.0, clock=lambda: now)
    yield analytics
    analytics.close()


@pytest.fixture
def make_record():
    """Factory for performance records with sensible defaults."""

    def _make(
        timestamp,
        correctness=1.0,
        response_time_ms=5000,
        learner_id="learner-1",
        content_id="q-1",
        session_id=None,
        topic=None,
    ):
        return PerformanceRecord(
            learner_id=learner_id,
            content_id=content_id,
            content_type="quiz_question",
            correctness=correctness,
            response_time_ms=response_time_ms,
            timestamp=timestamp,
            session_id=session_id,
            topic=topic,
        )

    return _make
