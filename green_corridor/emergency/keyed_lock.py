"""
Keyed Locking

Per-key mutual exclusion for mission and signal state. Operations on
different keys never contend on a shared lock; only the lookup of a key's
lock object touches the shared mapping, and dict.setdefault is atomic.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator


class KeyedLock:
    """
    Lazily created lock per key

    Usage:
        locks = KeyedLock()
        with locks.hold("ACC-1"):
            ...  # serialized against other holders of "ACC-1" only
    """

    def __init__(self):
        self._locks: Dict[Hashable, threading.RLock] = {}

    def lock_for(self, key: Hashable) -> threading.RLock:
        """Get the lock guarding a key"""
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks.setdefault(key, threading.RLock())
        return lock

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        """Hold the lock for a key for the duration of the block"""
        lock = self.lock_for(key)
        with lock:
            yield

    def __len__(self) -> int:
        return len(self._locks)
