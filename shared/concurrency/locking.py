"""
Concurrency Control: Section Locks and Optimistic Counter Checks

Provides pessimistic per-resource locks (serialising units of work on the
same section) and optimistic compare-and-swap checks on occupancy counters.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class LockTimeoutError(Exception):
    """Raised when a lock could not be acquired within the wait timeout."""

    def __init__(self, resource_id: str, wait_timeout: float):
        super().__init__(f"Timed out after {wait_timeout}s waiting for lock on {resource_id}")
        self.resource_id = resource_id
        self.wait_timeout = wait_timeout


class LockManager:
    """
    Manages pessimistic locks for resources.

    One ``asyncio.Lock`` per resource id; waiters are served in FIFO order.
    """

    def __init__(self):
        """Initialize lock manager."""
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}
        self._owners: dict[str, tuple[str, datetime]] = {}

    def _checkout(self, resource_id: str) -> asyncio.Lock:
        lock = self._locks.get(resource_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[resource_id] = lock
        self._users[resource_id] = self._users.get(resource_id, 0) + 1
        return lock

    def _checkin(self, resource_id: str) -> None:
        # Holder and waiters are all users; the last one out evicts the lock
        remaining = self._users[resource_id] - 1
        if remaining:
            self._users[resource_id] = remaining
        else:
            del self._users[resource_id]
            del self._locks[resource_id]

    @asynccontextmanager
    async def hold(
        self,
        resource_id: str,
        owner: str,
        wait_timeout: float | None = None,
    ) -> AsyncIterator[None]:
        """
        Hold an exclusive lock on a resource for the duration of the block.

        Args:
            resource_id: Resource to lock
            owner: Lock owner identifier (for diagnostics)
            wait_timeout: Maximum time to wait if lock is held (None = wait forever)

        Raises:
            LockTimeoutError: If the lock was not acquired in time
        """
        lock = self._checkout(resource_id)

        try:
            if wait_timeout is None:
                await lock.acquire()
            else:
                await asyncio.wait_for(lock.acquire(), timeout=wait_timeout)
        except asyncio.TimeoutError:
            self._checkin(resource_id)
            logger.warning(
                "Lock acquisition timeout",
                resource_id=resource_id,
                owner=owner,
                wait_timeout=wait_timeout,
            )
            raise LockTimeoutError(resource_id, wait_timeout) from None
        except BaseException:
            self._checkin(resource_id)
            raise

        self._owners[resource_id] = (owner, datetime.now(timezone.utc))
        logger.debug("Lock acquired", resource_id=resource_id, owner=owner)

        try:
            yield
        finally:
            self._owners.pop(resource_id, None)
            lock.release()
            self._checkin(resource_id)
            logger.debug("Lock released", resource_id=resource_id, owner=owner)

    def tracked_resources(self) -> int:
        """Number of resources with a live lock (held or awaited)."""
        return len(self._locks)

    def is_locked(self, resource_id: str) -> bool:
        """Check if resource is currently locked."""
        lock = self._locks.get(resource_id)
        return lock is not None and lock.locked()

    def get_lock_info(self, resource_id: str) -> dict[str, Any] | None:
        """Get information about current lock holder."""
        held = self._owners.get(resource_id)
        if held is None:
            return None
        owner, acquired_at = held
        return {
            "resource_id": resource_id,
            "owner": owner,
            "acquired_at": acquired_at.isoformat(),
        }


class OptimisticConcurrencyControl:
    """
    Optimistic concurrency control using expected values.

    Used to verify that counters read inside a unit are still current at the
    moment they are swapped.
    """

    @staticmethod
    def matches(expected: Any, current: Any) -> bool:
        """Return True when the stored value still equals the expected one."""
        return expected == current
