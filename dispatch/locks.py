"""
Purpose: Per-key mutual exclusion for the accept-race guard.
What it does:
Hands out one re-entrant lock per key (e.g. "order_<id>") so that a rider's
accept, a timeout firing and an operator override for the same order are
serialized, while different orders never wait on each other.
A key's lock is dropped as soon as no thread holds or waits on it, so the
table only ever contains orders that are being worked on right now.

A distributed deployment would swap this for a Redis / row-lock based manager
exposing the same `lock(key)` context manager.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List


class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.RLock()
        # Threads holding or waiting on this key (re-entrant holds count once each)
        self.users = 0


class InMemoryLockManager:

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, _KeyLock] = {}

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = _KeyLock()
                self._locks[key] = entry
            entry.users += 1

        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[key]

    def keys(self) -> List[str]:
        with self._guard:
            return list(self._locks)
