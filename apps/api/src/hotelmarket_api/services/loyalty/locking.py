"""Per-ledger-key serialization for in-process writers."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager
from threading import Lock


class KeyedLockRegistry:
    """Hand out one ``asyncio.Lock`` per key, dropping it once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._waiters: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, asyncio.Lock())
            self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            with self._guard:
                remaining = self._waiters[key] - 1
                if remaining:
                    self._waiters[key] = remaining
                else:
                    del self._waiters[key]
                    del self._locks[key]

    def active_keys(self) -> int:
        with self._guard:
            return len(self._locks)


_LEDGER_LOCKS = KeyedLockRegistry()


def get_ledger_locks() -> KeyedLockRegistry:
    return _LEDGER_LOCKS


__all__ = ["KeyedLockRegistry", "get_ledger_locks"]
