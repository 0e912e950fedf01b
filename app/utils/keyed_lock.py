# app/utils/keyed_lock.py
"""
One asyncio.Lock per key (tracker id), created on demand and dropped when
nobody holds or waits for it. Different keys never contend.
"""

import asyncio
from typing import Dict, Hashable, Optional


class KeyedLock:
    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._users: Dict[Hashable, int] = {}

    async def acquire(self, key: Hashable, timeout: Optional[float] = None) -> bool:
        """
        Wait for the key's lock. Returns False if timeout elapses first.
        asyncio.wait never cancels the waiter itself, so a lock granted at the
        deadline is reported as acquired rather than leaked.
        """
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1

        waiter = asyncio.ensure_future(lock.acquire())
        try:
            done, _ = await asyncio.wait({waiter}, timeout=timeout)
        except BaseException:
            waiter.cancel()
            if waiter.done() and not waiter.cancelled():
                lock.release()
            self._forget(key)
            raise
        if waiter in done:
            return True

        waiter.cancel()
        try:
            await waiter
        except asyncio.CancelledError:
            self._forget(key)
            return False
        return True

    def release(self, key: Hashable):
        self._locks[key].release()
        self._forget(key)

    def _forget(self, key: Hashable):
        self._users[key] -= 1
        if self._users[key] == 0:
            del self._users[key]
            del self._locks[key]

    def locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self):
        return len(self._locks)
