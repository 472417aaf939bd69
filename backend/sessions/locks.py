"""
Per-Session Locks

Start, Interim-Update and Stop packets for one Acct-Session-Id are handled on
different worker threads. Every handler that reads and writes an online
session holds the lock for its session id, so packets for the same session are
applied one at a time while unrelated sessions proceed in parallel.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class _LockEntry:
    __slots__ = ('lock', 'holders')

    def __init__(self):
        self.lock = threading.Lock()
        self.holders = 0


class SessionLockRegistry:
    """
    Registry of locks keyed by session id.

    Entries are reference counted and dropped once no thread holds or waits
    for them, so the registry only grows with the number of sessions being
    worked on at the same moment.
    """

    def __init__(self):
        self._entries: Dict[str, _LockEntry] = {}
        self._guard = threading.Lock()

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _LockEntry()
            entry.holders += 1

        entry.lock.acquire()
        try:
            yield
        finally:
            entry.lock.release()
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._entries[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


# Global registry shared by packet workers and background jobs
_session_locks = SessionLockRegistry()


def session_lock(session_id: str):
    """Context manager serializing all work on one accounting session."""
    return _session_locks.hold(session_id)
