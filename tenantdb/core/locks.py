# tenantdb/core/locks.py
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class NamedLocks:
    """
    One re-entrant lock per name, created on first use.

    Used to collapse concurrent in-process work on the same tenant database
    (provisioning, migrating) into a single caller while other names proceed.
    Locks are never removed; the set is bounded by the number of tenants.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    def get(self, name: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = self._locks[name] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, name: str) -> Iterator[None]:
        lock = self.get(name)
        with lock:
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
