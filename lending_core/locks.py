"""
Keyed Locks

Per-key exclusive locks. The ledger holds one lock per loan while it reads
and rewrites the loan balance, and one per customer while it adjusts credit
fields. A payment carrying an idempotency key also holds a lock on that key.
Locks are always taken key, then loan, then customer.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class KeyedLock:
    """Hands out one exclusive lock per key, created on first use"""

    def __init__(self, name: str = "keyed"):
        self.name = name
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Hold the lock for `key` for the duration of the block"""
        lock = self._lock_for(key)
        with lock:
            yield

    def is_held(self, key: str) -> bool:
        with self._guard:
            lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
