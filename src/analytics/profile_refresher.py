"""
Background profile refresh.

Profile reads never recompute; instead, rebuilds are requested explicitly and
run on a background thread:
- request_refresh(learner_id) queues a rebuild (deduplicated while pending)
- an optional periodic pass re-queues every known learner

Consumers keep reading the last committed version, tolerating staleness of
at most one rebuild cycle.
"""

from __future__ import annotations

import queue
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from loguru import logger

from src.analytics.pattern_analyzer import PersonalPatternAnalyzer


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class RefreshStatus:
    """Current refresher status."""

    is_running: bool = False
    pending: int = 0
    last_refresh_at: datetime | None = None
    last_learner_id: str | None = None
    last_version: int | None = None
    total_refreshes: int = 0
    failed_refreshes: int = 0
    error_message: str | None = None


@dataclass
class ProfileRefresher:
    """
    Background profile rebuild worker.

    Usage:
        refresher = ProfileRefresher(analyzer, interval_seconds=3600)
        refresher.start()
        refresher.request_refresh("learner-1")
        # ... service runs ...
        refresher.stop()
    """

    analyzer: PersonalPatternAnalyzer
    interval_seconds: int = 0  # 0 disables the periodic pass
    poll_seconds: float = 0.5
    clock: Callable[[], datetime] = _utcnow
    on_refresh_complete: Callable[[RefreshStatus], None] | None = None

    # Internal state
    _status: RefreshStatus = field(default_factory=RefreshStatus)
    _thread: threading.Thread | None = field(default=None, repr=False)
    _stop_event: threading.Event = field(default_factory=threading.Event, repr=False)
    _idle_event: threading.Event = field(default_factory=threading.Event, repr=False)
    _queue: queue.Queue = field(default_factory=queue.Queue, repr=False)
    _pending: set[str] = field(default_factory=set, repr=False)
    _pending_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _last_periodic: float = field(default=0.0, repr=False)

    def __post_init__(self) -> None:
        self._idle_event.set()

    @property
    def status(self) -> RefreshStatus:
        """Get current refresh status."""
        with self._pending_lock:
            self._status.pending = len(self._pending)
        return self._status

    @property
    def is_running(self) -> bool:
        return self._status.is_running

    def start(self) -> None:
        """Start the background worker."""
        if self._status.is_running:
            logger.warning("Profile refresher already running")
            return

        self._stop_event.clear()
        self._status.is_running = True
        self._last_periodic = time.monotonic()
        self._thread = threading.Thread(
            target=self._refresh_loop,
            name="profile-refresher",
            daemon=True,
        )
        self._thread.start()
        logger.info("Profile refresher started (interval: {}s)", self.interval_seconds)

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the background worker gracefully."""
        if not self._status.is_running:
            return

        logger.info("Stopping profile refresher...")
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
        self._status.is_running = False
        logger.info("Profile refresher stopped")

    def request_refresh(self, learner_id: str) -> bool:
        """
        Queue a rebuild for a learner.

        Returns:
            True if queued, False if a rebuild for this learner is already pending
        """
        with self._pending_lock:
            if learner_id in self._pending:
                return False
            self._pending.add(learner_id)
            self._idle_event.clear()
        self._queue.put(learner_id)
        logger.debug("Queued profile refresh for {}", learner_id)
        return True

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        """Block until no rebuild is pending. Returns False on timeout."""
        return self._idle_event.wait(timeout)

    def _refresh_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                learner_id = self._queue.get(timeout=self.poll_seconds)
            except queue.Empty:
                self._maybe_queue_periodic()
                continue

            try:
                self._refresh(learner_id)
            finally:
                with self._pending_lock:
                    self._pending.discard(learner_id)
                    if not self._pending:
                        self._idle_event.set()
                self._queue.task_done()

    def _maybe_queue_periodic(self) -> None:
        if self.interval_seconds <= 0:
            return
        if time.monotonic() - self._last_periodic < self.interval_seconds:
            return
        self._last_periodic = time.monotonic()
        try:
            learner_ids = self.analyzer.repository.list_learner_ids()
        except Exception as exc:  # Worker must survive persistence outages
            logger.warning("Periodic refresh skipped: {}", exc)
            return
        for learner_id in learner_ids:
            self.request_refresh(learner_id)

    def _refresh(self, learner_id: str) -> None:
        try:
            profile = self.analyzer.rebuild_profile(learner_id, self.clock())
        except Exception as exc:  # Worker must survive a failed rebuild
            logger.error("Background refresh for {} failed: {}", learner_id, exc)
            self._status.failed_refreshes += 1
            self._status.error_message = str(exc)
            return

        self._status.last_refresh_at = profile.built_at
        self._status.last_learner_id = learner_id
        self._status.last_version = profile.version
        self._status.total_refreshes += 1
        self._status.error_message = None

        if self.on_refresh_complete:
            self.on_refresh_complete(self._status)
