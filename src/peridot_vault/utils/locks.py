"""Concurrency control for per-user custody operations.

Serializes operations on one user's wallet and rate limit counters. Different
users never share a lock. Locks are created on first use and can be pruned
once nobody holds or waits for them.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

logger = logging.getLogger(__name__)

# user_id -> asyncio.Lock
_user_locks: dict[int, asyncio.Lock] = {}
# user_id -> number of tasks holding or waiting for the lock
_holders: dict[int, int] = {}
_registry_lock = asyncio.Lock()


async def get_user_lock(user_id: int) -> asyncio.Lock:
    """Get or create the lock for a user."""
    async with _registry_lock:
        if user_id not in _user_locks:
            _user_locks[user_id] = asyncio.Lock()
        return _user_locks[user_id]


class LockTimeoutError(Exception):
    """Raised when a lock cannot be acquired within the timeout period."""

    pass


class UserLock:
    """Exclusive access to one user's custody state.

    The user is counted as a holder from the moment the lock is requested,
    so prune_user_locks() never drops a lock someone is waiting on.
    """

    def __init__(
        self,
        user_id: int,
        timeout: Optional[float] = 30.0,
        operation: str = "custody_operation",
    ):
        """Initialize the lock.

        Args:
            user_id: Telegram user ID
            timeout: Maximum time to wait for lock (None = wait forever)
            operation: Description of the operation for logging
        """
        self.user_id = user_id
        self.timeout = timeout
        self.operation = operation
        self._lock: Optional[asyncio.Lock] = None
        self._acquired = False

    async def __aenter__(self) -> "UserLock":
        self._lock = await get_user_lock(self.user_id)
        _holders[self.user_id] = _holders.get(self.user_id, 0) + 1

        try:
            if self.timeout:
                await asyncio.wait_for(self._lock.acquire(), timeout=self.timeout)
            else:
                await self._lock.acquire()
        except asyncio.TimeoutError:
            self._leave()
            logger.warning(
                f"Lock timeout for user {self.user_id} after {self.timeout}s: {self.operation}"
            )
            raise LockTimeoutError(
                f"Could not acquire lock for user {self.user_id} within {self.timeout}s"
            )
        except BaseException:
            self._leave()
            raise

        self._acquired = True
        logger.debug(f"Lock acquired for user {self.user_id}: {self.operation}")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._acquired and self._lock:
            self._lock.release()
            self._acquired = False
            self._leave()
            logger.debug(f"Lock released for user {self.user_id}: {self.operation}")
        return False

    def _leave(self) -> None:
        remaining = _holders.get(self.user_id, 0) - 1
        if remaining > 0:
            _holders[self.user_id] = remaining
        else:
            _holders.pop(self.user_id, None)


@asynccontextmanager
async def user_lock(
    user_id: int,
    timeout: Optional[float] = 30.0,
    operation: str = "custody_operation",
) -> AsyncIterator[UserLock]:
    """Hold a user's lock for the duration of the block.

    Example:
        async with user_lock(user_id, operation="export_private_key"):
            decision = limiter.check(user_id, "export_private_key")
            ...
            limiter.record(user_id, "export_private_key")
    """
    async with UserLock(user_id, timeout=timeout, operation=operation) as lock:
        yield lock


def prune_user_locks(keep: Callable[[int], bool]) -> int:
    """Drop idle locks of users for whom ``keep`` returns False.

    A lock is idle when it is not held and no task is waiting for it.

    Returns:
        Number of locks removed
    """
    idle = [
        user_id
        for user_id, lock in _user_locks.items()
        if not lock.locked() and user_id not in _holders and not keep(user_id)
    ]
    for user_id in idle:
        del _user_locks[user_id]

    if idle:
        logger.debug(f"Pruned {len(idle)} idle user locks")
    return len(idle)


def user_lock_count() -> int:
    return len(_user_locks)


def clear_user_locks() -> None:
    """Forget all locks (tests only)."""
    _user_locks.clear()
    _holders.clear()
