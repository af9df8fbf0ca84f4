"""
Repository layer for database operations.

Schedule rows are only ever changed with field-level UPDATE statements
(counter increments, cursor compare-and-set), never read-merge-write.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

import asyncpg

from .models import (
    PriorityMode,
    SyncOutcome,
    SyncOutcomeStatus,
    SyncSchedule,
    SyncScheduleCreate,
    SyncStrategy,
    SyncTrigger,
    SyncType,
    utcnow,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Sync Schedule Repository
# ============================================================================

class SyncScheduleRepository:
    """Repository for per-account sync schedules."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def get(self, workspace_id: str, account_id: str) -> Optional[SyncSchedule]:
        """Get the schedule for a workspace/account pair."""
        query = "SELECT * FROM sync_schedules WHERE workspace_id = $1 AND account_id = $2"
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(query, workspace_id, account_id)
            return self._row_to_schedule(row) if row else None

    async def upsert(self, data: SyncScheduleCreate) -> SyncSchedule:
        """
        Insert or update the configuration of a schedule.

        Cursor, counters and last_sync_at of an existing row are preserved.
        """
        now = utcnow()

        query = """
            INSERT INTO sync_schedules (
                workspace_id, account_id, enabled, interval_minutes, sync_type,
                batch_size, max_items_per_cycle, priority_mode, next_sync_at,
                created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
            ON CONFLICT (workspace_id, account_id)
            DO UPDATE SET
                enabled = EXCLUDED.enabled,
                interval_minutes = EXCLUDED.interval_minutes,
                sync_type = EXCLUDED.sync_type,
                batch_size = EXCLUDED.batch_size,
                max_items_per_cycle = EXCLUDED.max_items_per_cycle,
                priority_mode = EXCLUDED.priority_mode,
                next_sync_at = EXCLUDED.next_sync_at,
                updated_at = EXCLUDED.updated_at
            RETURNING *
        """

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                query,
                data.workspace_id,
                data.account_id,
                data.enabled,
                data.interval_minutes,
                data.sync_type.value,
                data.batch_size,
                data.max_items_per_cycle,
                data.priority_mode.value,
                data.next_sync_at,
                now,
                now,
            )
            return self._row_to_schedule(row)

    async def set_enabled(
        self, workspace_id: str, account_id: str, enabled: bool
    ) -> Optional[SyncSchedule]:
        """Flip the enabled flag. Counters and cursor are left intact."""
        query = """
            UPDATE sync_schedules
            SET enabled = $3, updated_at = NOW()
            WHERE workspace_id = $1 AND account_id = $2
            RETURNING *
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(query, workspace_id, account_id, enabled)
            return self._row_to_schedule(row) if row else None

    async def set_next_sync_at(
        self, workspace_id: str, account_id: str, next_sync_at: Optional[datetime]
    ) -> Optional[SyncSchedule]:
        """Set when the next autonomous cycle is due."""
        query = """
            UPDATE sync_schedules
            SET next_sync_at = $3, updated_at = NOW()
            WHERE workspace_id = $1 AND account_id = $2
            RETURNING *
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(query, workspace_id, account_id, next_sync_at)
            return self._row_to_schedule(row) if row else None

    async def update_settings(
        self,
        workspace_id: str,
        account_id: str,
        interval_minutes: Optional[int] = None,
        sync_type: Optional[SyncType] = None,
    ) -> Optional[SyncSchedule]:
        """Change interval and/or sync type; None leaves a field unchanged."""
        query = """
            UPDATE sync_schedules
            SET interval_minutes = COALESCE($3, interval_minutes),
                sync_type = COALESCE($4, sync_type),
                updated_at = NOW()
            WHERE workspace_id = $1 AND account_id = $2
            RETURNING *
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                query,
                workspace_id,
                account_id,
                interval_minutes,
                sync_type.value if sync_type else None,
            )
            return self._row_to_schedule(row) if row else None

    async def update_strategy(
        self, workspace_id: str, account_id: str, strategy: SyncStrategy
    ) -> Optional[SyncSchedule]:
        """Store the batch sizing of a freshly selected strategy."""
        query = """
            UPDATE sync_schedules
            SET batch_size = $3, max_items_per_cycle = $4, priority_mode = $5,
                updated_at = NOW()
            WHERE workspace_id = $1 AND account_id = $2
            RETURNING *
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                query,
                workspace_id,
                account_id,
                strategy.batch_size,
                strategy.max_items_per_cycle,
                strategy.priority_mode.value,
            )
            return self._row_to_schedule(row) if row else None

    async def advance_cursor(
        self,
        workspace_id: str,
        account_id: str,
        expected_cursor: Optional[str],
        new_cursor: Optional[str],
        items_synced: int,
        synced_at: datetime,
    ) -> Optional[SyncSchedule]:
        """
        Compare-and-set the cursor and add to the running counter.

        Returns:
            The updated schedule, or None if the stored cursor no longer
            equals ``expected_cursor`` (nothing is written in that case).
        """
        query = """
            UPDATE sync_schedules
            SET last_cursor = $4,
                total_items_synced = total_items_synced + $5,
                last_sync_at = $6,
                updated_at = NOW()
            WHERE workspace_id = $1 AND account_id = $2
              AND last_cursor IS NOT DISTINCT FROM $3
            RETURNING *
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                query,
                workspace_id,
                account_id,
                expected_cursor,
                new_cursor,
                max(0, items_synced),
                synced_at,
            )
            return self._row_to_schedule(row) if row else None

    async def add_items_synced(
        self,
        workspace_id: str,
        account_id: str,
        items_synced: int,
        synced_at: datetime,
    ) -> Optional[SyncSchedule]:
        """Increment the running counter without touching the cursor."""
        query = """
            UPDATE sync_schedules
            SET total_items_synced = total_items_synced + $3,
                last_sync_at = $4,
                updated_at = NOW()
            WHERE workspace_id = $1 AND account_id = $2
            RETURNING *
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                query, workspace_id, account_id, max(0, items_synced), synced_at
            )
            return self._row_to_schedule(row) if row else None

    async def reset_cursor(self, workspace_id: str, account_id: str) -> Optional[SyncSchedule]:
        """Clear the cursor so the next cycle starts a fresh traversal."""
        query = """
            UPDATE sync_schedules
            SET last_cursor = NULL, updated_at = NOW()
            WHERE workspace_id = $1 AND account_id = $2
            RETURNING *
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(query, workspace_id, account_id)
            return self._row_to_schedule(row) if row else None

    async def list_enabled(self) -> list[SyncSchedule]:
        """Get every enabled schedule, soonest due first."""
        query = """
            SELECT * FROM sync_schedules
            WHERE enabled = TRUE
            ORDER BY next_sync_at ASC NULLS FIRST
        """
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(query)
            return [self._row_to_schedule(row) for row in rows]

    def _row_to_schedule(self, row: asyncpg.Record) -> SyncSchedule:
        """Convert database row to SyncSchedule model."""
        return SyncSchedule(
            workspace_id=row["workspace_id"],
            account_id=row["account_id"],
            enabled=row["enabled"],
            interval_minutes=row["interval_minutes"],
            sync_type=SyncType(row["sync_type"]),
            batch_size=row["batch_size"],
            max_items_per_cycle=row["max_items_per_cycle"],
            priority_mode=PriorityMode(row["priority_mode"]),
            last_sync_at=row["last_sync_at"],
            next_sync_at=row["next_sync_at"],
            last_cursor=row["last_cursor"],
            total_items_synced=row["total_items_synced"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


# ============================================================================
# Synced Item Repository
# ============================================================================

class SyncedItemRepository:
    """Repository for synced remote items."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def upsert_item(
        self, workspace_id: str, remote_item_id: str, payload: dict[str, Any]
    ) -> bool:
        """
        Insert or refresh one item keyed by its remote id.

        Returns:
            True if the row was newly inserted, False if it already existed
        """
        query = """
            INSERT INTO synced_items (
                workspace_id, remote_item_id, item_kind, payload,
                first_synced_at, last_synced_at
            ) VALUES ($1, $2, $3, $4, $5, $5)
            ON CONFLICT (workspace_id, remote_item_id)
            DO UPDATE SET
                item_kind = EXCLUDED.item_kind,
                payload = EXCLUDED.payload,
                last_synced_at = EXCLUDED.last_synced_at
            RETURNING (xmax = 0) AS inserted
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                query,
                workspace_id,
                remote_item_id,
                payload.get("kind"),
                json.dumps(payload, default=str),
                utcnow(),
            )
            return bool(row["inserted"]) if row else False

    async def count(self, workspace_id: str) -> int:
        """Count stored items for a workspace."""
        query = "SELECT COUNT(*) FROM synced_items WHERE workspace_id = $1"
        async with self.pool.acquire() as conn:
            return await conn.fetchval(query, workspace_id)


# ============================================================================
# Sync History Repository
# ============================================================================

class SyncHistoryRepository:
    """Repository for the append-only cycle history."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def append(self, outcome: SyncOutcome) -> SyncOutcome:
        """Append one cycle outcome."""
        query = """
            INSERT INTO sync_history (
                id, workspace_id, account_id, items_synced, next_cursor,
                status, duration_ms, errors, trigger, phase, rate_limited,
                created_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
            RETURNING *
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                query,
                uuid4(),
                outcome.workspace_id,
                outcome.account_id,
                outcome.items_synced,
                outcome.next_cursor,
                outcome.status.value,
                outcome.duration_ms,
                json.dumps(outcome.errors),
                outcome.trigger.value,
                outcome.phase,
                outcome.rate_limited,
                outcome.created_at,
            )
            return self._row_to_outcome(row)

    async def list_recent(
        self, workspace_id: str, limit: int = 5, account_id: Optional[str] = None
    ) -> list[SyncOutcome]:
        """Get the most recent outcomes for a workspace, newest first."""
        if account_id is None:
            query = """
                SELECT * FROM sync_history
                WHERE workspace_id = $1
                ORDER BY created_at DESC
                LIMIT $2
            """
            args = (workspace_id, limit)
        else:
            query = """
                SELECT * FROM sync_history
                WHERE workspace_id = $1 AND account_id = $3
                ORDER BY created_at DESC
                LIMIT $2
            """
            args = (workspace_id, limit, account_id)

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(query, *args)
            return [self._row_to_outcome(row) for row in rows]

    def _row_to_outcome(self, row: asyncpg.Record) -> SyncOutcome:
        """Convert database row to SyncOutcome model."""
        errors = row["errors"]
        if isinstance(errors, str):
            errors = json.loads(errors)

        return SyncOutcome(
            workspace_id=row["workspace_id"],
            account_id=row["account_id"],
            items_synced=row["items_synced"],
            next_cursor=row["next_cursor"],
            status=SyncOutcomeStatus(row["status"]),
            duration_ms=row["duration_ms"],
            errors=errors or [],
            trigger=SyncTrigger(row["trigger"]),
            phase=row["phase"],
            rate_limited=row["rate_limited"],
            created_at=row["created_at"],
        )


# ============================================================================
# Store facade
# ============================================================================

@dataclass
class SyncStore:
    """The three repositories the engine writes through."""
    schedules: SyncScheduleRepository
    items: SyncedItemRepository
    history: SyncHistoryRepository

    @classmethod
    def from_pool(cls, pool: asyncpg.Pool) -> "SyncStore":
        return cls(
            schedules=SyncScheduleRepository(pool),
            items=SyncedItemRepository(pool),
            history=SyncHistoryRepository(pool),
        )
