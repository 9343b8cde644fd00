# src/perpindexer/infrastructure/sched/keyed_lock.py
"""
Per-key asyncio locks.

Read-modify-write on one holding or position is serialized; unrelated keys
proceed in parallel. Multiple keys are always acquired in sorted order so two
events touching the same pair of keys cannot deadlock.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable, Iterable, List


class KeyedLock:
    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._users: Dict[Hashable, int] = {}

    def _checkout(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        return lock

    def _checkin(self, key: Hashable) -> None:
        self._users[key] -= 1
        if self._users[key] == 0:
            # no holder or waiter left
            del self._users[key]
            del self._locks[key]

    @asynccontextmanager
    async def acquire(self, keys: Iterable[Hashable]) -> AsyncIterator[None]:
        ordered: List[Hashable] = sorted(set(keys), key=repr)
        locks = [self._checkout(k) for k in ordered]
        held: List[asyncio.Lock] = []
        try:
            for lock in locks:
                await lock.acquire()
                held.append(lock)
            yield
        finally:
            for lock in reversed(held):
                lock.release()
            for k in ordered:
                self._checkin(k)

    def __len__(self) -> int:
        return len(self._locks)
