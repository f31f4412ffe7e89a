"""
Repository interface for the learning analytics core.

Tables (logical):
- performance_records: append-only, keyed by (learner_id, content_id, timestamp)
- review_item_states: keyed by (learner_id, content_id), versioned
- learner_profiles: keyed by learner_id, versioned

Writes use compare-and-swap on the version column; a mismatch raises
ConflictError and leaves storage untouched. Reads return copies, never live
references into storage.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from typing import Protocol

from loguru import logger

from src.core.errors import ConflictError
from src.core.models import LearnerProfile, PerformanceRecord, ReviewItemState, ensure_utc


class Repository(Protocol):
    """Persistence operations the core depends on."""

    def get_record(self, learner_id: str, content_id: str, timestamp: datetime) -> PerformanceRecord | None:
        ...

    def list_records(
        self,
        learner_id: str,
        content_id: str | None = None,
        since: datetime | None = None,
    ) -> list[PerformanceRecord]:
        ...

    def get_item_state(self, learner_id: str, content_id: str) -> ReviewItemState | None:
        ...

    def list_item_states(self, learner_id: str) -> list[ReviewItemState]:
        ...

    def commit_outcome(
        self,
        record: PerformanceRecord,
        state: ReviewItemState,
        expected_version: int,
    ) -> ReviewItemState:
        ...

    def get_profile(self, learner_id: str) -> LearnerProfile | None:
        ...

    def save_profile(self, profile: LearnerProfile, expected_version: int) -> LearnerProfile:
        ...

    def list_learner_ids(self) -> list[str]:
        ...


class InMemoryRepository:
    """
    Thread-safe in-process repository.

    Used by tests, the CLI's ephemeral mode and as the reference for the
    SQLAlchemy implementation's semantics.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._records: dict[tuple[str, str, datetime], PerformanceRecord] = {}
        self._items: dict[tuple[str, str], ReviewItemState] = {}
        self._profiles: dict[str, LearnerProfile] = {}

    # =========================================================================
    # Performance Records
    # =========================================================================

    def get_record(self, learner_id: str, content_id: str, timestamp: datetime) -> PerformanceRecord | None:
        with self._lock:
            return self._records.get((learner_id, content_id, ensure_utc(timestamp)))

    def list_records(
        self,
        learner_id: str,
        content_id: str | None = None,
        since: datetime | None = None,
    ) -> list[PerformanceRecord]:
        since_utc = ensure_utc(since) if since is not None else None
        with self._lock:
            records = [
                r
                for r in self._records.values()
                if r.learner_id == learner_id
                and (content_id is None or r.content_id == content_id)
                and (since_utc is None or r.timestamp >= since_utc)
            ]
        return sorted(records, key=lambda r: (r.timestamp, r.content_id))

    # =========================================================================
    # Review Item State
    # =========================================================================

    def get_item_state(self, learner_id: str, content_id: str) -> ReviewItemState | None:
        with self._lock:
            state = self._items.get((learner_id, content_id))
            return replace(state) if state else None

    def list_item_states(self, learner_id: str) -> list[ReviewItemState]:
        with self._lock:
            return [replace(s) for (lid, _), s in self._items.items() if lid == learner_id]

    def commit_outcome(
        self,
        record: PerformanceRecord,
        state: ReviewItemState,
        expected_version: int,
    ) -> ReviewItemState:
        """
        Append the record and store the state in one atomic step.

        Raises:
            ConflictError: If the stored version differs or the record already exists
        """
        with self._lock:
            current = self._items.get(state.key)
            actual_version = current.version if current else 0
            if actual_version != expected_version:
                raise ConflictError(
                    f"Item {state.key} is at version {actual_version}, expected {expected_version}",
                    expected_version=expected_version,
                    actual_version=actual_version,
                )
            if record.key in self._records:
                raise ConflictError(f"Record {record.key} already exists")

            stored = replace(state, version=expected_version + 1)
            self._records[record.key] = record
            self._items[state.key] = stored
            logger.debug("Committed outcome {} -> version {}", record.key, stored.version)
            return replace(stored)

    # =========================================================================
    # Learner Profiles
    # =========================================================================

    def get_profile(self, learner_id: str) -> LearnerProfile | None:
        with self._lock:
            profile = self._profiles.get(learner_id)
            return _copy_profile(profile) if profile else None

    def save_profile(self, profile: LearnerProfile, expected_version: int) -> LearnerProfile:
        """
        Store a rebuilt profile as version expected_version + 1.

        Raises:
            ConflictError: If another rebuild committed first
        """
        with self._lock:
            current = self._profiles.get(profile.learner_id)
            actual_version = current.version if current else 0
            if actual_version != expected_version:
                raise ConflictError(
                    f"Profile {profile.learner_id} is at version {actual_version}, expected {expected_version}",
                    expected_version=expected_version,
                    actual_version=actual_version,
                )
            stored = _copy_profile(profile, version=expected_version + 1)
            self._profiles[profile.learner_id] = stored
            return _copy_profile(stored)

    def list_learner_ids(self) -> list[str]:
        with self._lock:
            learners = {r.learner_id for r in self._records.values()}
        return sorted(learners)


def _copy_profile(profile: LearnerProfile, **changes) -> LearnerProfile:
    return replace(
        profile,
        topic_strengths=dict(profile.topic_strengths),
        strengths=list(profile.strengths),
        weaknesses=list(profile.weaknesses),
        optimal_hours=list(profile.optimal_hours),
        weekday_accuracy=dict(profile.weekday_accuracy),
        **changes,
    )
