"""
Unit tests for timeout-bounded persistence and per-key locks.
"""

import threading
import time

import pytest

from src.core.errors import PersistenceTimeoutError
from src.db.bounded import BoundedRepository, persistence_deadline
from src.db.repository import InMemoryRepository
from src.scheduling.key_locks import KeyedLockRegistry


class SlowRepository(InMemoryRepository):
    """Blocks every item-state read until released."""

    def __init__(self):
        super().__init__()
        self.release = threading.Event()

    def list_item_states(self, learner_id):
        self.release.wait(timeout=5)
        return super().list_item_states(learner_id)


@pytest.fixture
def slow_repo():
    repo = SlowRepository()
    yield repo
    repo.release.set()


class TestBoundedRepository:
    def test_passes_through_fast_calls(self, repo):
        bounded = BoundedRepository(repo, default_timeout=1.0)
        try:
            assert bounded.list_item_states("learner-1") == []
            assert bounded.list_learner_ids() == []
        finally:
            bounded.shutdown()

    def test_default_timeout_raises(self, slow_repo):
        bounded = BoundedRepository(slow_repo, default_timeout=0.05)
        try:
            started = time.monotonic()
            with pytest.raises(PersistenceTimeoutError):
                bounded.list_item_states("learner-1")
            assert time.monotonic() - started < 2.0
        finally:
            bounded.shutdown()

    def test_caller_deadline_overrides_default(self, slow_repo):
        bounded = BoundedRepository(slow_repo, default_timeout=30.0)
        try:
            with persistence_deadline(0.05), pytest.raises(PersistenceTimeoutError):
                bounded.list_item_states("learner-1")
        finally:
            bounded.shutdown()

    def test_deadline_is_scoped_to_block(self, repo):
        bounded = BoundedRepository(repo, default_timeout=1.0)
        try:
            with persistence_deadline(0.5):
                pass
            with persistence_deadline(None):
                assert bounded.get_profile("learner-1") is None
        finally:
            bounded.shutdown()


class TestKeyedLockRegistry:
    def test_distinct_keys_do_not_block(self):
        locks = KeyedLockRegistry(timeout=0.05)

        with locks.hold(("learner-1", "q-1")), locks.hold(("learner-1", "q-2")):
            assert len(locks) == 2

    def test_same_key_times_out(self):
        locks = KeyedLockRegistry(timeout=0.05)
        errors = []

        def contender():
            try:
                with locks.hold("k"):
                    pass
            except PersistenceTimeoutError as exc:
                errors.append(exc)

        with locks.hold("k"):
            t = threading.Thread(target=contender)
            t.start()
            t.join()

        assert len(errors) == 1

    def test_idle_keys_are_released(self):
        locks = KeyedLockRegistry()

        with locks.hold("k"):
            pass

        assert len(locks) == 0

    def test_serializes_critical_section(self):
        locks = KeyedLockRegistry(timeout=5.0)
        counter = {"value": 0}

        def worker():
            for _ in range(200):
                with locks.hold("k"):
                    current = counter["value"]
                    time.sleep(0)
                    counter["value"] = current + 1

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert counter["value"] == 800
        assert len(locks) == 0
