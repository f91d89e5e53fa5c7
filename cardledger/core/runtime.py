"""
Runtime helpers shared by the authority: clock, id generation and keyed locks.
"""

import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Generator


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class KeyedLocks:
    """
    One lock per key, created on demand.

    `hold(*keys)` acquires in sorted order, so two callers locking
    overlapping key sets cannot deadlock.
    """

    def __init__(self):
        self._locks: dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, *keys: str) -> Generator[None, None, None]:
        locks = [self._lock_for(k) for k in sorted(set(keys))]
        acquired = []
        try:
            for lock in locks:
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
