"""
Unit tests for background profile refresh.
"""

import time
from datetime import timedelta

import pytest

from src.analytics.pattern_analyzer import PersonalPatternAnalyzer
from src.analytics.profile_refresher import ProfileRefresher
from src.core.errors import PersistenceUnavailableError
from src.core.models import ReviewItemState
from src.db.repository import InMemoryRepository


class OutageRepository(InMemoryRepository):
    """Fails record reads while `down` is set."""

    def __init__(self):
        super().__init__()
        self.down = False

    def list_records(self, learner_id, content_id=None, since=None):
        if self.down:
            raise PersistenceUnavailableError("database offline")
        return super().list_records(learner_id, content_id, since)


@pytest.fixture
def seeded_repo(now, make_record):
    repo = OutageRepository()
    for day in range(3):
        record = make_record(now + timedelta(days=day), content_id=f"q-{day}", session_id=f"s{day}")
        repo.commit_outcome(record, ReviewItemState(learner_id="learner-1", content_id=f"q-{day}"), 0)
    return repo


@pytest.fixture
def refresher(seeded_repo, now):
    worker = ProfileRefresher(PersonalPatternAnalyzer(seeded_repo), poll_seconds=0.05, clock=lambda: now + timedelta(days=3))
    yield worker
    worker.stop()


class TestProfileRefresher:
    def test_refresh_commits_profile(self, seeded_repo, refresher):
        refresher.start()

        assert refresher.request_refresh("learner-1") is True
        assert refresher.wait_until_idle(timeout=5)

        assert seeded_repo.get_profile("learner-1").version == 1
        assert refresher.status.total_refreshes == 1
        assert refresher.status.last_learner_id == "learner-1"

    def test_pending_requests_are_deduplicated(self, seeded_repo, refresher):
        assert refresher.request_refresh("learner-1") is True
        assert refresher.request_refresh("learner-1") is False
        assert refresher.status.pending == 1

        refresher.start()
        assert refresher.wait_until_idle(timeout=5)

        assert seeded_repo.get_profile("learner-1").version == 1

    def test_failed_rebuild_keeps_worker_alive(self, seeded_repo, refresher):
        refresher.start()
        seeded_repo.down = True
        refresher.request_refresh("learner-1")
        assert refresher.wait_until_idle(timeout=5)

        assert refresher.status.failed_refreshes == 1
        assert "offline" in refresher.status.error_message

        seeded_repo.down = False
        refresher.request_refresh("learner-1")
        assert refresher.wait_until_idle(timeout=5)

        assert refresher.status.total_refreshes == 1
        assert refresher.status.error_message is None
        assert refresher.is_running

    def test_completion_callback(self, seeded_repo, now):
        completed = []
        worker = ProfileRefresher(
            PersonalPatternAnalyzer(seeded_repo),
            poll_seconds=0.05,
            clock=lambda: now,
            on_refresh_complete=lambda status: completed.append(status.last_version),
        )
        worker.start()
        try:
            worker.request_refresh("learner-1")
            assert worker.wait_until_idle(timeout=5)
        finally:
            worker.stop()

        assert completed == [1]

    @pytest.mark.slow
    def test_periodic_pass_refreshes_known_learners(self, seeded_repo, now):
        worker = ProfileRefresher(
            PersonalPatternAnalyzer(seeded_repo),
            interval_seconds=1,
            poll_seconds=0.05,
            clock=lambda: now,
        )
        worker.start()
        try:
            deadline = time.monotonic() + 5
            while worker.status.total_refreshes == 0 and time.monotonic() < deadline:
                time.sleep(0.05)
        finally:
            worker.stop()

        assert seeded_repo.get_profile("learner-1") is not None

    def test_stop_is_idempotent(self, refresher):
        refresher.start()
        refresher.stop()
        refresher.stop()

        assert not refresher.is_running
