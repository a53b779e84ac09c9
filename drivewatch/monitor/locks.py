"""
Per-key locking for shared monitor state.
"""

import threading
from contextlib import contextmanager


class KeyedLocks:
    """
    A table of re-entrant locks, one per key, created on demand.

    Entries are dropped once no thread holds or waits on them, so the
    table only grows with the number of keys in flight.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}  # key -> [RLock, users]

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.RLock(), 0])
            entry[1] += 1
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
