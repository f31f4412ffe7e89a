"""
Error taxonomy for the learning analytics core.

- ValidationError: malformed input, never retried
- NotFoundError: unknown learner/content on a read, surfaced as-is
- ConflictError: optimistic-concurrency version mismatch, retried internally
- PersistenceTimeoutError / PersistenceUnavailableError: persistence boundary
  failures, surfaced so the caller can retry the whole operation
"""

from __future__ import annotations


class LearningAnalyticsError(Exception):
    """Base class for all errors raised by the core."""


class ValidationError(LearningAnalyticsError, ValueError):
    """Input failed validation (out-of-range score, non-positive limit, ...)."""


class NotFoundError(LearningAnalyticsError, LookupError):
    """A learner or content item is unknown."""


class ConflictError(LearningAnalyticsError):
    """A compare-and-swap write lost against a newer version."""

    def __init__(self, message: str, expected_version: int | None = None, actual_version: int | None = None):
        super().__init__(message)
        self.expected_version = expected_version
        self.actual_version = actual_version


class PersistenceTimeoutError(LearningAnalyticsError, TimeoutError):
    """A repository call or lock acquisition exceeded its timeout."""


class PersistenceUnavailableError(LearningAnalyticsError):
    """The persistence backend could not be reached."""
