"""
Per-account cycle locks.
"""

import asyncio
from contextlib import asynccontextmanager


def pair_key(workspace_id: str, account_id: str) -> str:
    return f"{workspace_id}:{account_id}"


class PairLocks:
    """One asyncio.Lock per (workspace, account); cycles for a pair run one at a time."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, workspace_id: str, account_id: str) -> asyncio.Lock:
        key = pair_key(workspace_id, account_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def busy(self, workspace_id: str, account_id: str) -> bool:
        lock = self._locks.get(pair_key(workspace_id, account_id))
        return lock is not None and lock.locked()

    def any_busy(self) -> bool:
        return any(lock.locked() for lock in self._locks.values())

    @asynccontextmanager
    async def hold(self, workspace_id: str, account_id: str):
        """Wait for and hold the pair's lock."""
        async with self._lock(workspace_id, account_id):
            yield
