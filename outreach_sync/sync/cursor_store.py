"""
Cursor store: last cursor, last sync time and running counters per account.

Backed by the schedule repository. All writes are field-level: the cursor
is compare-and-set against the value read at cycle start and the counter
is an in-place increment, so concurrent writers never regress it.
"""

import logging
from datetime import datetime
from typing import Optional

from ..db.models import SyncSchedule, utcnow
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class CursorStore:
    """Read and advance per-account traversal state."""

    def __init__(self, schedules):
        self.schedules = schedules

    async def load(self, workspace_id: str, account_id: str) -> SyncSchedule:
        """
        Load the schedule row for an account.

        Raises:
            ConfigurationError: If no schedule exists
        """
        schedule = await self.schedules.get(workspace_id, account_id)
        if schedule is None:
            raise ConfigurationError(workspace_id, account_id)
        return schedule

    async def commit(
        self,
        workspace_id: str,
        account_id: str,
        expected_cursor: Optional[str],
        new_cursor: Optional[str],
        items_synced: int,
        synced_at: Optional[datetime] = None,
    ) -> Optional[SyncSchedule]:
        """
        Persist the next cursor and add to the running counter.

        If the stored cursor moved since ``expected_cursor`` was read, the
        cursor is left alone and only the counter is incremented.
        """
        synced_at = synced_at or utcnow()
        schedule = await self.schedules.advance_cursor(
            workspace_id, account_id, expected_cursor, new_cursor, items_synced, synced_at
        )
        if schedule is not None:
            return schedule

        logger.warning(
            f"⚠ Cursor for {workspace_id}/{account_id} moved during cycle "
            f"(expected {expected_cursor!r}); counting {items_synced} items only"
        )
        return await self.schedules.add_items_synced(
            workspace_id, account_id, items_synced, synced_at
        )

    async def record_items(
        self,
        workspace_id: str,
        account_id: str,
        items_synced: int,
        synced_at: Optional[datetime] = None,
    ) -> Optional[SyncSchedule]:
        """Add to the running counter without moving the cursor."""
        return await self.schedules.add_items_synced(
            workspace_id, account_id, items_synced, synced_at or utcnow()
        )

    async def reset(self, workspace_id: str, account_id: str) -> SyncSchedule:
        """Clear the cursor so the next cycle starts a fresh pass."""
        schedule = await self.schedules.reset_cursor(workspace_id, account_id)
        if schedule is None:
            raise ConfigurationError(workspace_id, account_id)
        return schedule
