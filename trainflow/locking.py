"""At most one concurrent advance per workflow instance."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class InstanceLocks:
    """Lazily created ``asyncio.Lock`` per instance id.

    Locks are dropped once nobody holds or waits on them. Different instances
    never block each other.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, instance_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(instance_id, asyncio.Lock())
        self._waiters[instance_id] = self._waiters.get(instance_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[instance_id] -= 1
            if not self._waiters[instance_id]:
                del self._waiters[instance_id]
                self._locks.pop(instance_id, None)

    def is_locked(self, instance_id: str) -> bool:
        lock = self._locks.get(instance_id)
        return bool(lock and lock.locked())
