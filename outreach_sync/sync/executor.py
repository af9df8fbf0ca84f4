"""
Sync Executor.

Runs one bounded fetch-and-persist cycle for an account:
- Loads the schedule (cursor, batch sizing, priority mode)
- Fetches exactly one page from the remote provider
- Upserts each item keyed by its stable remote id
- Advances the cursor and running counter
- Appends the outcome to the sync history

Partial failures are reported in the outcome, never raised. A remote
failure yields a ``failed`` outcome with the cursor untouched.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from ..db.models import (
    PriorityFilter,
    SyncOutcome,
    SyncOutcomeStatus,
    SyncTrigger,
    SyncType,
)
from .cursor_store import CursorStore
from .errors import PartialWriteError, RemoteUnavailable
from .strategy import build_priority_filter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CyclePlan:
    """
    Overrides for one cycle, used by phase passes.

    ``carry_cursor=False`` makes the cycle a snapshot pass: it starts from
    the first page and does not move the stored cursor.
    """
    label: Optional[str] = None
    page_size: Optional[int] = None
    max_items: Optional[int] = None
    priority_filter: Optional[PriorityFilter] = None
    messages_per_item: Optional[int] = None
    sync_type: Optional[SyncType] = None
    carry_cursor: bool = True


def remote_item_id(item: dict[str, Any]) -> Optional[str]:
    """Stable id of a remote item as ``"{kind}:{id}"``, or None if it has no id."""
    item_id = item.get("id") or item.get("provider_id")
    if item_id in (None, ""):
        return None
    return f"{item.get('kind', 'item')}:{item_id}"


class SyncExecutor:
    """Executes single sync cycles against a store and a remote provider."""

    def __init__(self, store, provider):
        self.store = store
        self.provider = provider
        self.cursors = CursorStore(store.schedules)

    async def run_cycle(
        self,
        workspace_id: str,
        account_id: str,
        plan: Optional[CyclePlan] = None,
        trigger: SyncTrigger = SyncTrigger.SCHEDULED,
    ) -> SyncOutcome:
        """
        Run one cycle.

        Args:
            workspace_id: Workspace that owns the local store
            account_id: Remote account to read from
            plan: Optional overrides for page size, cap, filter and cursor use
            trigger: What started the cycle (recorded in history)

        Returns:
            The recorded SyncOutcome

        Raises:
            ConfigurationError: If the account has no schedule
        """
        started = time.monotonic()
        plan = plan or CyclePlan()
        schedule = await self.cursors.load(workspace_id, account_id)

        cap = plan.max_items or schedule.max_items_per_cycle
        page_size = min(plan.page_size or schedule.page_size, cap)
        priority_filter = (
            plan.priority_filter
            if plan.priority_filter is not None
            else build_priority_filter(schedule.priority_mode)
        )
        if plan.messages_per_item is not None:
            priority_filter = priority_filter.model_copy(
                update={"messages_per_item": plan.messages_per_item}
            )
        sync_type = plan.sync_type or schedule.sync_type
        cursor = schedule.last_cursor if plan.carry_cursor else None

        label = f" [{plan.label}]" if plan.label else ""
        logger.info(
            f"🔄 Sync cycle{label} for {workspace_id}/{account_id} "
            f"(limit: {page_size}, cursor: {cursor!r})"
        )

        def finish(**fields) -> SyncOutcome:
            return SyncOutcome(
                workspace_id=workspace_id,
                account_id=account_id,
                duration_ms=int((time.monotonic() - started) * 1000),
                trigger=trigger,
                phase=plan.label,
                **fields,
            )

        # 1. Fetch exactly one page
        try:
            page = await self.provider.fetch_page(
                account_id, priority_filter, cursor, page_size, sync_type
            )
        except RemoteUnavailable as e:
            logger.warning(f"⚠ Remote unavailable for {account_id}{label}: {e.message}")
            outcome = finish(
                items_synced=0,
                next_cursor=cursor,
                status=SyncOutcomeStatus.FAILED,
                errors=[e.message],
                rate_limited=e.rate_limited,
            )
            return await self._record(outcome)

        # 2. Upsert items; anything past the requested limit is ignored
        written = 0
        errors: list[str] = []
        for item in page.items[:page_size]:
            item_id = remote_item_id(item)
            if item_id is None:
                errors.append(PartialWriteError(None, "item has no id, skipped").message)
                continue
            try:
                await self.store.items.upsert_item(workspace_id, item_id, item)
                written += 1
            except Exception as e:
                logger.error(f"Failed to store item {item_id}: {e}")
                errors.append(PartialWriteError(item_id, str(e)).message)

        # 3. Advance cursor and counter
        next_cursor = page.next_cursor
        try:
            if plan.carry_cursor:
                await self.cursors.commit(workspace_id, account_id, cursor, next_cursor, written)
            else:
                await self.cursors.record_items(workspace_id, account_id, written)
        except Exception as e:
            logger.error(f"Failed to persist cursor for {workspace_id}/{account_id}: {e}")
            errors.append(f"cursor persist failed: {e}")
            if plan.carry_cursor:
                next_cursor = cursor

        outcome = finish(
            items_synced=written,
            next_cursor=next_cursor,
            status=SyncOutcomeStatus.PARTIAL if errors else SyncOutcomeStatus.SUCCESS,
            errors=errors,
        )
        logger.info(
            f"✓ Sync cycle{label} for {workspace_id}/{account_id}: "
            f"{written} synced, {len(errors)} errors, "
            f"{'caught up' if next_cursor is None else 'more pending'}"
        )
        return await self._record(outcome)

    async def _record(self, outcome: SyncOutcome) -> SyncOutcome:
        try:
            await self.store.history.append(outcome)
        except Exception as e:
            logger.error(
                f"Failed to record sync history for {outcome.workspace_id}/{outcome.account_id}: {e}"
            )
        return outcome
