"""
Per-key locks for serializing item state transitions.

At most one record_outcome may run per (learner_id, content_id) pair; pairs
never block each other. Locks are created on demand and reference-counted so
idle keys do not accumulate.
"""

from __future__ import annotations

import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from src.core.errors import PersistenceTimeoutError


@dataclass
class _Entry:
    lock: threading.Lock
    holders: int = 0


class KeyedLockRegistry:
    """Get-or-create registry of locks keyed by arbitrary hashable keys."""

    def __init__(self, timeout: float | None = 5.0):
        self.timeout = timeout
        self._registry_lock = threading.Lock()
        self._entries: dict[Hashable, _Entry] = {}

    def _checkout(self, key: Hashable) -> _Entry:
        with self._registry_lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry(lock=threading.Lock())
                self._entries[key] = entry
            entry.holders += 1
            return entry

    def _release(self, key: Hashable, entry: _Entry) -> None:
        with self._registry_lock:
            entry.holders -= 1
            if entry.holders == 0:
                self._entries.pop(key, None)

    @contextmanager
    def hold(self, key: Hashable, timeout: float | None = None) -> Iterator[None]:
        """
        Hold the lock for `key` for the duration of the block.

        Raises:
            PersistenceTimeoutError: If the lock is not acquired in time
        """
        wait = self.timeout if timeout is None else timeout
        entry = self._checkout(key)
        acquired = entry.lock.acquire(timeout=-1 if wait is None else wait)
        if not acquired:
            self._release(key, entry)
            raise PersistenceTimeoutError(f"Timed out after {wait}s waiting for lock on {key!r}")
        try:
            yield
        finally:
            entry.lock.release()
            self._release(key, entry)

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._entries)
