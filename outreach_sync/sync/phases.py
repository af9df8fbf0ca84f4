"""
Phase Scheduler.

Splits the work for large accounts into staggered passes so the caller gets
a result quickly and the remote API is never hit in a burst:

- Very large (15000+): phase 1 "recent" runs now with the schedule's own
  filter and cursor; phase 2 "active" follows 5s later and phase 3
  "important" at 15s. Phases 2 and 3 are snapshot passes.
- Large (1000+): cursor-carrying batches chained 10s apart until the
  estimate is exhausted, the remote reports end-of-results, or a batch fails.
- Small: one cycle.

Follow-up work is scheduled as one-shot jobs, and only while the account
is armed. Follow-ups take the account's lock when they fire.
"""

import logging
import time
from typing import Awaitable, Callable, Optional

from ..db.models import (
    ConnectionMetrics,
    PriorityFilter,
    SyncOutcome,
    SyncOutcomeStatus,
    SyncTrigger,
)
from .executor import CyclePlan, SyncExecutor
from .locks import PairLocks
from .strategy import (
    ENGAGED_TAGS,
    EXCLUDED_STATUSES,
    LARGE_THRESHOLD,
    VERY_LARGE_THRESHOLD,
)

logger = logging.getLogger(__name__)

RECENT_PHASE = CyclePlan(label="recent", max_items=200, messages_per_item=10)
ACTIVE_PHASE = CyclePlan(
    label="active",
    page_size=300,
    max_items=300,
    priority_filter=PriorityFilter(recent_activity_days=7, messages_per_item=20),
    carry_cursor=False,
)
IMPORTANT_PHASE = CyclePlan(
    label="important",
    page_size=500,
    max_items=500,
    priority_filter=PriorityFilter(
        unread_only=True,
        include_tags=list(ENGAGED_TAGS),
        exclude_status=list(EXCLUDED_STATUSES),
        messages_per_item=15,
    ),
    carry_cursor=False,
)


def job_prefix(workspace_id: str, account_id: str) -> str:
    """Prefix shared by every job of one account."""
    return f"sync:{workspace_id}:{account_id}:"


def job_id(workspace_id: str, account_id: str, suffix: str) -> str:
    return f"{job_prefix(workspace_id, account_id)}{suffix}"


class PhaseScheduler:
    """Runs the first pass of a sync synchronously and schedules the rest."""

    def __init__(
        self,
        executor: SyncExecutor,
        jobs,
        locks: PairLocks,
        is_armed: Callable[[str, str], bool],
        on_outcome: Optional[Callable[[SyncOutcome], Awaitable[None]]] = None,
        active_delay_seconds: float = 5,
        important_delay_seconds: float = 15,
        batch_spacing_seconds: float = 10,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.executor = executor
        self.jobs = jobs
        self.locks = locks
        self.is_armed = is_armed
        self.on_outcome = on_outcome
        self.active_delay_seconds = active_delay_seconds
        self.important_delay_seconds = important_delay_seconds
        self.batch_spacing_seconds = batch_spacing_seconds
        self.clock = clock

    async def run(
        self,
        workspace_id: str,
        account_id: str,
        metrics: ConnectionMetrics,
        trigger: SyncTrigger = SyncTrigger.SCHEDULED,
    ) -> SyncOutcome:
        """
        Run the first pass for an account sized by ``metrics``.

        The caller must hold the account's lock.
        """
        total = metrics.total_items

        if total >= VERY_LARGE_THRESHOLD:
            logger.info(f"📊 Very large account {account_id} ({total} items): phased sync")
            outcome = await self.executor.run_cycle(workspace_id, account_id, RECENT_PHASE, trigger)
            anchor = self.clock()
            if outcome.status != SyncOutcomeStatus.FAILED and self.is_armed(workspace_id, account_id):
                self.jobs.schedule_once(
                    job_id(workspace_id, account_id, "phase:active"),
                    self.run_active_phase,
                    delay_seconds=self.active_delay_seconds,
                    args=(workspace_id, account_id, anchor),
                )
            return outcome

        outcome = await self.executor.run_cycle(workspace_id, account_id, trigger=trigger)

        if total >= LARGE_THRESHOLD:
            logger.info(f"📊 Large account {account_id} ({total} items): batched sync")
            self._chain_batch(workspace_id, account_id, outcome, 2, outcome.items_synced, total)

        return outcome

    # ------------------------------------------------------------------
    # Very large: follow-up phases
    # ------------------------------------------------------------------

    async def run_active_phase(self, workspace_id: str, account_id: str, anchor: float):
        """Phase 2; schedules phase 3 relative to when phase 1 returned."""
        outcome = await self._run_followup(workspace_id, account_id, ACTIVE_PHASE)
        if outcome is None or not self.is_armed(workspace_id, account_id):
            return

        elapsed = self.clock() - anchor
        self.jobs.schedule_once(
            job_id(workspace_id, account_id, "phase:important"),
            self.run_important_phase,
            delay_seconds=max(0.0, self.important_delay_seconds - elapsed),
            args=(workspace_id, account_id),
        )

    async def run_important_phase(self, workspace_id: str, account_id: str):
        """Phase 3."""
        await self._run_followup(workspace_id, account_id, IMPORTANT_PHASE)

    # ------------------------------------------------------------------
    # Large: chained batches
    # ------------------------------------------------------------------

    async def run_batch(
        self,
        workspace_id: str,
        account_id: str,
        batch_number: int,
        synced_so_far: int,
        estimated_total: int,
    ):
        """One cursor-carrying batch; chains the next while work remains."""
        plan = CyclePlan(label=f"batch {batch_number}")
        outcome = await self._run_followup(workspace_id, account_id, plan)
        if outcome is None:
            return
        self._chain_batch(
            workspace_id,
            account_id,
            outcome,
            batch_number + 1,
            synced_so_far + outcome.items_synced,
            estimated_total,
        )

    def _chain_batch(
        self,
        workspace_id: str,
        account_id: str,
        outcome: SyncOutcome,
        next_batch: int,
        synced_so_far: int,
        estimated_total: int,
    ):
        if outcome.status == SyncOutcomeStatus.FAILED:
            logger.info(f"Batch chain for {account_id} stopped: batch failed")
            return
        if outcome.next_cursor is None or outcome.items_synced == 0:
            logger.info(f"Batch chain for {account_id} complete: end of results")
            return
        if synced_so_far >= estimated_total:
            logger.info(f"Batch chain for {account_id} complete: {synced_so_far}/{estimated_total} synced")
            return
        if not self.is_armed(workspace_id, account_id):
            return

        self.jobs.schedule_once(
            job_id(workspace_id, account_id, f"batch:{next_batch}"),
            self.run_batch,
            delay_seconds=self.batch_spacing_seconds,
            args=(workspace_id, account_id, next_batch, synced_so_far, estimated_total),
        )

    # ------------------------------------------------------------------
    # Shared
    # ------------------------------------------------------------------

    async def _run_followup(
        self, workspace_id: str, account_id: str, plan: CyclePlan
    ) -> Optional[SyncOutcome]:
        """Run a follow-up pass under the account lock. Never raises."""
        if not self.is_armed(workspace_id, account_id):
            logger.info(f"Skipping {plan.label} for {account_id}: sync disabled")
            return None

        try:
            async with self.locks.hold(workspace_id, account_id):
                outcome = await self.executor.run_cycle(
                    workspace_id, account_id, plan, SyncTrigger.PHASE
                )
        except Exception as e:
            logger.error(f"✗ {plan.label} pass failed for {workspace_id}/{account_id}: {e}")
            return None

        if self.on_outcome is not None:
            await self.on_outcome(outcome)
        return outcome
