"""
In-process mutual exclusion keyed by an identifier.

Used to linearize read-modify-write units on one student's ledger, and receipt counter
advances within one period, among coroutines of the same worker. Cross-process safety comes
from the optimistic version checks in the service layer; these locks only keep same-process
callers from wasting retries on each other.
"""

import asyncio
import weakref
from typing import Hashable


class KeyedLock:
    """One ``asyncio.Lock`` per key, dropped once no caller holds a reference to it."""

    def __init__(self) -> None:
        self._locks: "weakref.WeakValueDictionary[Hashable, asyncio.Lock]" = weakref.WeakValueDictionary()

    def for_key(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)


student_ledger_locks = KeyedLock()
receipt_period_locks = KeyedLock()
