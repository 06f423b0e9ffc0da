"""
Per-Class Mutual Exclusion

At most one transition or grouping may be in flight per class. A request
that finds its class busy is rejected immediately rather than queued;
different classes never contend.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from classroom.errors import ConcurrentModification

logger = logging.getLogger(__name__)


class ClassLockRegistry:
    """asyncio.Lock per class_id, created on first hold and dropped on release"""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, class_id: str) -> asyncio.Lock:
        lock = self._locks.get(class_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[class_id] = lock
        return lock

    def is_busy(self, class_id: str) -> bool:
        lock = self._locks.get(class_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, class_id: str) -> AsyncIterator[None]:
        """
        Hold the class scope for the duration of the block.

        Raises:
            ConcurrentModification: another operation already holds the scope
        """
        lock = self._lock_for(class_id)
        if lock.locked():
            logger.warning(f"Rejected concurrent modification of class {class_id}")
            raise ConcurrentModification(class_id)

        # Uncontended acquire completes without yielding to the loop
        await lock.acquire()
        try:
            yield
        finally:
            lock.release()
            # Busy callers are rejected, never queued, so a released lock has no waiters
            if self._locks.get(class_id) is lock and not lock.locked():
                del self._locks[class_id]


# Singleton instance
_registry = None


def get_class_lock_registry() -> ClassLockRegistry:
    """Get singleton lock registry instance"""
    global _registry
    if _registry is None:
        _registry = ClassLockRegistry()
    return _registry
