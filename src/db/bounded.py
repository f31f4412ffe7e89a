"""
Timeout-bounded access to a repository.

Every repository call runs on a worker pool and the caller waits at most the
active timeout. The timeout comes from `persistence_deadline(...)` when one is
active in the calling context, otherwise from the default given at
construction. A call that exceeds it raises PersistenceTimeoutError instead
of hanging.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from typing import Any, TypeVar

from loguru import logger

from src.core.errors import PersistenceTimeoutError
from src.core.models import LearnerProfile, PerformanceRecord, ReviewItemState
from src.db.repository import Repository

T = TypeVar("T")

_active_timeout: ContextVar[float | None] = ContextVar("persistence_timeout", default=None)


@contextmanager
def persistence_deadline(timeout: float | None) -> Iterator[None]:
    """Apply `timeout` to every bounded repository call inside the block."""
    if timeout is None:
        yield
        return
    token = _active_timeout.set(timeout)
    try:
        yield
    finally:
        _active_timeout.reset(token)


class BoundedRepository:
    """Repository proxy that bounds each call by a timeout."""

    def __init__(self, inner: Repository, default_timeout: float = 5.0, max_workers: int = 8):
        self.inner = inner
        self.default_timeout = default_timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="persistence")

    def _call(self, name: str, fn: Callable[..., T], *args: Any) -> T:
        timeout = _active_timeout.get()
        if timeout is None:
            timeout = self.default_timeout
        future = self._executor.submit(fn, *args)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError as e:
            future.cancel()
            logger.warning("Repository call {} exceeded {}s", name, timeout)
            raise PersistenceTimeoutError(f"Repository call {name} exceeded {timeout}s") from e

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    # =========================================================================
    # Repository Operations
    # =========================================================================

    def get_record(self, learner_id: str, content_id: str, timestamp: datetime) -> PerformanceRecord | None:
        return self._call("get_record", self.inner.get_record, learner_id, content_id, timestamp)

    def list_records(
        self,
        learner_id: str,
        content_id: str | None = None,
        since: datetime | None = None,
    ) -> list[PerformanceRecord]:
        return self._call("list_records", self.inner.list_records, learner_id, content_id, since)

    def get_item_state(self, learner_id: str, content_id: str) -> ReviewItemState | None:
        return self._call("get_item_state", self.inner.get_item_state, learner_id, content_id)

    def list_item_states(self, learner_id: str) -> list[ReviewItemState]:
        return self._call("list_item_states", self.inner.list_item_states, learner_id)

    def commit_outcome(
        self,
        record: PerformanceRecord,
        state: ReviewItemState,
        expected_version: int,
    ) -> ReviewItemState:
        return self._call("commit_outcome", self.inner.commit_outcome, record, state, expected_version)

    def get_profile(self, learner_id: str) -> LearnerProfile | None:
        return self._call("get_profile", self.inner.get_profile, learner_id)

    def save_profile(self, profile: LearnerProfile, expected_version: int) -> LearnerProfile:
        return self._call("save_profile", self.inner.save_profile, profile, expected_version)

    def list_learner_ids(self) -> list[str]:
        return self._call("list_learner_ids", self.inner.list_learner_ids)
