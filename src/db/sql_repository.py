"""
SQLAlchemy repository.

Same contract as InMemoryRepository, backed by the tables in
src.db.models.learning:
- commit_outcome inserts the record and writes the item state in one
  transaction, guarded by UPDATE ... WHERE version = expected
- save_profile uses the same compare-and-swap on the profile version

Driver errors are translated at this boundary:
- IntegrityError -> ConflictError (a concurrent writer got there first)
- pool TimeoutError -> PersistenceTimeoutError
- OperationalError -> PersistenceUnavailableError
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import replace
from datetime import UTC, datetime

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from src.core.errors import ConflictError, PersistenceTimeoutError, PersistenceUnavailableError
from src.core.models import LearnerProfile, LearnerStage, PerformanceRecord, ReviewItemState, ensure_utc
from src.db.database import session_scope
from src.db.models import LearnerProfileRow, PerformanceRecordRow, ReviewItemStateRow


def _to_db(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return ensure_utc(value).replace(tzinfo=None)


def _from_db(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value.replace(tzinfo=UTC)


# =============================================================================
# Row Mapping
# =============================================================================


def _record_from_row(row: PerformanceRecordRow) -> PerformanceRecord:
    return PerformanceRecord(
        learner_id=row.learner_id,
        content_id=row.content_id,
        content_type=row.content_type,
        correctness=row.correctness,
        response_time_ms=row.response_time_ms,
        timestamp=_from_db(row.reviewed_at),
        session_id=row.session_id,
        topic=row.topic,
    )


def _state_values(state: ReviewItemState) -> dict:
    return {
        "repetition_count": state.repetition_count,
        "ease_factor": state.ease_factor,
        "interval_days": state.interval_days,
        "stability_days": state.stability_days,
        "last_reviewed_at": _to_db(state.last_reviewed_at),
        "next_due_at": _to_db(state.next_due_at),
        "lapse_count": state.lapse_count,
        "review_count": state.review_count,
        "average_response_ms": state.average_response_ms,
    }


def _state_from_row(row: ReviewItemStateRow) -> ReviewItemState:
    return ReviewItemState(
        learner_id=row.learner_id,
        content_id=row.content_id,
        repetition_count=row.repetition_count,
        ease_factor=row.ease_factor,
        interval_days=row.interval_days,
        stability_days=row.stability_days,
        last_reviewed_at=_from_db(row.last_reviewed_at),
        next_due_at=_from_db(row.next_due_at),
        lapse_count=row.lapse_count,
        review_count=row.review_count,
        average_response_ms=row.average_response_ms,
        version=row.version,
    )


def _profile_values(profile: LearnerProfile) -> dict:
    return {
        "stage": profile.stage.value,
        "baseline_accuracy": profile.baseline_accuracy,
        "baseline_response_ms": profile.baseline_response_ms,
        "topic_strengths": dict(profile.topic_strengths),
        "strengths": list(profile.strengths),
        "weaknesses": list(profile.weaknesses),
        "optimal_hours": list(profile.optimal_hours),
        "weekday_accuracy": {str(day): score for day, score in profile.weekday_accuracy.items()},
        "days_active": profile.days_active,
        "session_count": profile.session_count,
        "record_count": profile.record_count,
        "optimal_session_minutes": profile.optimal_session_minutes,
        "current_load_level": profile.current_load_level,
        "load_tolerance": profile.load_tolerance,
        "fatigue_threshold_minutes": profile.fatigue_threshold_minutes,
        "study_streak_days": profile.study_streak_days,
        "built_at": _to_db(profile.built_at),
    }


def _profile_from_row(row: LearnerProfileRow) -> LearnerProfile:
    return LearnerProfile(
        learner_id=row.learner_id,
        stage=LearnerStage(row.stage),
        baseline_accuracy=row.baseline_accuracy,
        baseline_response_ms=row.baseline_response_ms,
        topic_strengths=dict(row.topic_strengths or {}),
        strengths=list(row.strengths or []),
        weaknesses=list(row.weaknesses or []),
        optimal_hours=list(row.optimal_hours or []),
        weekday_accuracy={int(day): score for day, score in (row.weekday_accuracy or {}).items()},
        days_active=row.days_active,
        session_count=row.session_count,
        record_count=row.record_count,
        optimal_session_minutes=row.optimal_session_minutes,
        current_load_level=row.current_load_level,
        load_tolerance=row.load_tolerance,
        fatigue_threshold_minutes=row.fatigue_threshold_minutes,
        study_streak_days=row.study_streak_days,
        version=row.version,
        built_at=_from_db(row.built_at),
    )


# =============================================================================
# Repository
# =============================================================================


class SqlRepository:
    """Repository backed by a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        try:
            with session_scope(self._session_factory) as session:
                yield session
        except IntegrityError as e:
            raise ConflictError(f"Concurrent write rejected: {e.orig}") from e
        except PoolTimeoutError as e:
            raise PersistenceTimeoutError(f"Database connection pool exhausted: {e}") from e
        except OperationalError as e:
            logger.error(f"Database unavailable: {e}")
            raise PersistenceUnavailableError(f"Database unavailable: {e.orig}") from e

    # =========================================================================
    # Performance Records
    # =========================================================================

    def get_record(self, learner_id: str, content_id: str, timestamp: datetime) -> PerformanceRecord | None:
        with self._session() as session:
            row = session.scalar(
                select(PerformanceRecordRow).where(
                    PerformanceRecordRow.learner_id == learner_id,
                    PerformanceRecordRow.content_id == content_id,
                    PerformanceRecordRow.reviewed_at == _to_db(timestamp),
                )
            )
            return _record_from_row(row) if row else None

    def list_records(
        self,
        learner_id: str,
        content_id: str | None = None,
        since: datetime | None = None,
    ) -> list[PerformanceRecord]:
        stmt = select(PerformanceRecordRow).where(PerformanceRecordRow.learner_id == learner_id)
        if content_id is not None:
            stmt = stmt.where(PerformanceRecordRow.content_id == content_id)
        if since is not None:
            stmt = stmt.where(PerformanceRecordRow.reviewed_at >= _to_db(since))
        stmt = stmt.order_by(PerformanceRecordRow.reviewed_at, PerformanceRecordRow.content_id)

        with self._session() as session:
            return [_record_from_row(row) for row in session.scalars(stmt)]

    # =========================================================================
    # Review Item State
    # =========================================================================

    def get_item_state(self, learner_id: str, content_id: str) -> ReviewItemState | None:
        with self._session() as session:
            row = session.get(ReviewItemStateRow, (learner_id, content_id))
            return _state_from_row(row) if row else None

    def list_item_states(self, learner_id: str) -> list[ReviewItemState]:
        stmt = select(ReviewItemStateRow).where(ReviewItemStateRow.learner_id == learner_id)
        with self._session() as session:
            return [_state_from_row(row) for row in session.scalars(stmt)]

    def commit_outcome(
        self,
        record: PerformanceRecord,
        state: ReviewItemState,
        expected_version: int,
    ) -> ReviewItemState:
        """
        Append the record and store the state in one transaction.

        Raises:
            ConflictError: If the stored version differs or the record already exists
        """
        new_version = expected_version + 1
        with self._session() as session:
            session.add(
                PerformanceRecordRow(
                    learner_id=record.learner_id,
                    content_id=record.content_id,
                    content_type=record.content_type,
                    correctness=record.correctness,
                    response_time_ms=record.response_time_ms,
                    reviewed_at=_to_db(record.timestamp),
                    session_id=record.session_id,
                    topic=record.topic,
                )
            )

            if expected_version == 0:
                # Primary key collision surfaces as IntegrityError -> ConflictError
                session.add(
                    ReviewItemStateRow(
                        learner_id=state.learner_id,
                        content_id=state.content_id,
                        version=new_version,
                        **_state_values(state),
                    )
                )
                session.flush()
            else:
                result = session.execute(
                    update(ReviewItemStateRow)
                    .where(
                        ReviewItemStateRow.learner_id == state.learner_id,
                        ReviewItemStateRow.content_id == state.content_id,
                        ReviewItemStateRow.version == expected_version,
                    )
                    .values(version=new_version, **_state_values(state))
                )
                if result.rowcount != 1:
                    raise ConflictError(
                        f"Item {state.key} moved past version {expected_version}",
                        expected_version=expected_version,
                    )

        logger.debug("Committed outcome {} -> version {}", record.key, new_version)
        return state.copy(version=new_version)

    # =========================================================================
    # Learner Profiles
    # =========================================================================

    def get_profile(self, learner_id: str) -> LearnerProfile | None:
        with self._session() as session:
            row = session.get(LearnerProfileRow, learner_id)
            return _profile_from_row(row) if row else None

    def save_profile(self, profile: LearnerProfile, expected_version: int) -> LearnerProfile:
        """
        Store a rebuilt profile as version expected_version + 1.

        Raises:
            ConflictError: If another rebuild committed first
        """
        new_version = expected_version + 1
        with self._session() as session:
            if expected_version == 0:
                session.add(
                    LearnerProfileRow(
                        learner_id=profile.learner_id,
                        version=new_version,
                        **_profile_values(profile),
                    )
                )
                session.flush()
            else:
                result = session.execute(
                    update(LearnerProfileRow)
                    .where(
                        LearnerProfileRow.learner_id == profile.learner_id,
                        LearnerProfileRow.version == expected_version,
                    )
                    .values(version=new_version, **_profile_values(profile))
                )
                if result.rowcount != 1:
                    raise ConflictError(
                        f"Profile {profile.learner_id} moved past version {expected_version}",
                        expected_version=expected_version,
                    )

        logger.debug("Saved profile {} as version {}", profile.learner_id, new_version)
        return replace(profile, version=new_version)

    def list_learner_ids(self) -> list[str]:
        stmt = select(PerformanceRecordRow.learner_id).distinct().order_by(PerformanceRecordRow.learner_id)
        with self._session() as session:
            return list(session.scalars(stmt))
