"""
Sync Engine: per-account recurring sync lifecycle.

Each enabled (workspace, account) pair owns one interval job on the shared
JobScheduler. A firing is gated by the PeakGovernor, sized by the metrics
probe and strategy selector, and executed through the PhaseScheduler.

State per pair:
    Disabled --enable--> Armed --timer--> Running --> Armed
    Armed --timer in peak window--> Armed (next_sync_at pushed out)
    Armed/Running --disable--> Disabled (in-flight cycle still completes)

Manual triggers work in either state and never change ``enabled``.

Usage:
    engine = SyncEngine(SyncStore.from_pool(pool), UnipileClient(), JobScheduler())
    await engine.start()
    await engine.enable("ws_1", "acc_1")
    status = await engine.get_status("ws_1", "acc_1")
    await engine.shutdown()
"""

import asyncio
import inspect
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from ..core.config import Settings, get_settings
from ..db.models import (
    SyncOutcome,
    SyncSchedule,
    SyncScheduleCreate,
    SyncStatusEvent,
    SyncStatusView,
    SyncTrigger,
    SyncType,
    utcnow,
)
from .errors import ConfigurationError
from .executor import CyclePlan, SyncExecutor
from .governor import PeakGovernor
from .locks import PairLocks, pair_key
from .metrics import probe_metrics
from .phases import PhaseScheduler, job_id, job_prefix
from .strategy import select_strategy

logger = logging.getLogger(__name__)

StatusListener = Callable[[SyncStatusEvent], Any]


class SyncEngine:
    """
    Service object owning every per-account sync timer.

    Build once at startup, call ``start()``, and ``shutdown()`` on exit.
    """

    def __init__(
        self,
        store,
        provider,
        jobs,
        governor: Optional[PeakGovernor] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.provider = provider
        self.jobs = jobs
        self.clock = clock
        self.governor = governor or PeakGovernor.from_settings(self.settings)
        self.locks = PairLocks()
        self.executor = SyncExecutor(store, provider)
        self.phases = PhaseScheduler(
            self.executor,
            jobs,
            self.locks,
            is_armed=self.is_armed,
            on_outcome=self._on_phase_outcome,
            active_delay_seconds=self.settings.phase_active_delay_seconds,
            important_delay_seconds=self.settings.phase_important_delay_seconds,
            batch_spacing_seconds=self.settings.batch_spacing_seconds,
        )
        self._armed: set[str] = set()
        self._listeners: list[StatusListener] = []

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> int:
        """
        Start the job scheduler and re-arm every enabled schedule.

        Returns:
            Number of timers restored
        """
        if not self.jobs.running:
            self.jobs.start()

        now = self.clock()
        schedules = await self.store.schedules.list_enabled()
        for schedule in schedules:
            first_run = schedule.next_sync_at if schedule.next_sync_at and schedule.next_sync_at > now else now
            self._armed.add(pair_key(schedule.workspace_id, schedule.account_id))
            self._arm_timer(schedule.workspace_id, schedule.account_id, schedule.interval_minutes, first_run)

        logger.info(f"🚀 Sync engine started ({len(schedules)} schedule(s) restored)")
        return len(schedules)

    async def shutdown(self, timeout_seconds: Optional[float] = None) -> bool:
        """
        Stop all timers and wait (bounded) for in-flight cycles.

        Returns:
            True if every in-flight cycle finished within the timeout
        """
        timeout = timeout_seconds if timeout_seconds is not None else self.settings.shutdown_timeout_seconds
        self._armed.clear()
        if self.jobs.running:
            self.jobs.stop()

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while self.locks.any_busy():
            if loop.time() >= deadline:
                logger.warning(f"⚠ Sync engine shutdown timed out after {timeout}s with cycles in flight")
                return False
            await asyncio.sleep(0.05)

        logger.info("🛑 Sync engine stopped")
        return True

    # =========================================================================
    # Enable / Disable
    # =========================================================================

    async def enable(
        self,
        workspace_id: str,
        account_id: str,
        interval_minutes: Optional[int] = None,
        sync_type: SyncType = SyncType.BOTH,
    ) -> SyncSchedule:
        """
        Enable recurring sync for an account.

        Probes the account size to pick a strategy, persists the schedule,
        arms the interval timer and queues one immediate cycle. Does not
        wait for that cycle.

        Args:
            interval_minutes: Explicit interval; None uses the strategy's
            sync_type: What to synchronize
        """
        metrics = await probe_metrics(self.provider, account_id)
        strategy = select_strategy(metrics.total_items)
        interval = interval_minutes or strategy.sync_interval_minutes
        next_sync_at = self.clock() + timedelta(minutes=interval)

        schedule = await self.store.schedules.upsert(
            SyncScheduleCreate(
                workspace_id=workspace_id,
                account_id=account_id,
                enabled=True,
                interval_minutes=interval,
                sync_type=sync_type,
                batch_size=strategy.batch_size,
                max_items_per_cycle=strategy.max_items_per_cycle,
                priority_mode=strategy.priority_mode,
                next_sync_at=next_sync_at,
            )
        )

        self._armed.add(pair_key(workspace_id, account_id))
        self._arm_timer(workspace_id, account_id, interval, next_sync_at)
        self.jobs.schedule_once(
            job_id(workspace_id, account_id, "kickoff"),
            self._run_kickoff,
            delay_seconds=0,
            args=(workspace_id, account_id),
        )

        logger.info(
            f"✅ Sync enabled for {workspace_id}/{account_id} "
            f"(every {interval}m, {metrics.total_items} items, mode: {strategy.priority_mode.value})"
        )
        await self._emit("enabled", schedule)
        return schedule

    async def disable(self, workspace_id: str, account_id: str) -> SyncSchedule:
        """
        Disable recurring sync. Cancels the timer and pending phases.

        Counters and cursor are kept; a cycle already fetching completes
        and records its outcome.

        Raises:
            ConfigurationError: If the account has no schedule
        """
        schedule = await self.store.schedules.set_enabled(workspace_id, account_id, False)
        if schedule is None:
            raise ConfigurationError(workspace_id, account_id)

        self._armed.discard(pair_key(workspace_id, account_id))
        removed = self.jobs.remove_jobs_with_prefix(job_prefix(workspace_id, account_id))
        schedule = await self.store.schedules.set_next_sync_at(workspace_id, account_id, None) or schedule

        logger.info(f"⏸ Sync disabled for {workspace_id}/{account_id} ({removed} job(s) cancelled)")
        await self._emit("disabled", schedule)
        return schedule

    def is_armed(self, workspace_id: str, account_id: str) -> bool:
        return pair_key(workspace_id, account_id) in self._armed

    # =========================================================================
    # Cycles
    # =========================================================================

    async def trigger_now(
        self,
        workspace_id: str,
        account_id: str,
        sync_type: Optional[SyncType] = None,
    ) -> SyncOutcome:
        """
        Run a cycle now, bypassing the peak window.

        Waits for any cycle already running for the account. ``sync_type``
        overrides the schedule's type for this cycle only.

        Raises:
            ConfigurationError: If the account has no schedule
        """
        logger.info(f"🏃 Manual sync triggered for {workspace_id}/{account_id}")
        async with self.locks.hold(workspace_id, account_id):
            return await self._run_cycle(workspace_id, account_id, SyncTrigger.MANUAL, sync_type)

    async def _on_timer(self, workspace_id: str, account_id: str):
        """Interval job body. Never raises."""
        try:
            if not self.is_armed(workspace_id, account_id):
                return

            if self.locks.busy(workspace_id, account_id):
                logger.info(f"Sync for {workspace_id}/{account_id} already running, skipping firing")
                return

            if self.governor.is_peak():
                await self._defer(workspace_id, account_id)
                return

            async with self.locks.hold(workspace_id, account_id):
                await self._run_cycle(workspace_id, account_id, SyncTrigger.SCHEDULED)

        except Exception as e:
            logger.error(f"✗ Scheduled sync failed for {workspace_id}/{account_id}: {e}")

    async def _run_kickoff(self, workspace_id: str, account_id: str):
        """Immediate cycle queued by enable(). Never raises."""
        try:
            if not self.is_armed(workspace_id, account_id):
                return
            async with self.locks.hold(workspace_id, account_id):
                await self._run_cycle(workspace_id, account_id, SyncTrigger.MANUAL)
        except Exception as e:
            logger.error(f"✗ Initial sync failed for {workspace_id}/{account_id}: {e}")

    async def _run_cycle(
        self,
        workspace_id: str,
        account_id: str,
        trigger: SyncTrigger,
        sync_type: Optional[SyncType] = None,
    ) -> SyncOutcome:
        """Probe, re-size and run one cycle. Caller holds the account lock."""
        started_at = self.clock()
        schedule = await self.executor.cursors.load(workspace_id, account_id)

        metrics = await probe_metrics(self.provider, account_id)
        strategy = select_strategy(metrics.total_items)
        if (
            strategy.batch_size != schedule.batch_size
            or strategy.max_items_per_cycle != schedule.max_items_per_cycle
            or strategy.priority_mode != schedule.priority_mode
        ):
            logger.info(
                f"📊 Strategy for {account_id} changed: batch {strategy.batch_size}, "
                f"max {strategy.max_items_per_cycle}, mode {strategy.priority_mode.value}"
            )
            await self.store.schedules.update_strategy(workspace_id, account_id, strategy)

        if sync_type is not None and sync_type != schedule.sync_type:
            # The stored cursor belongs to the schedule's own traversal
            outcome = await self.executor.run_cycle(
                workspace_id,
                account_id,
                CyclePlan(label=f"{sync_type.value} only", sync_type=sync_type, carry_cursor=False),
                trigger,
            )
        else:
            outcome = await self.phases.run(workspace_id, account_id, metrics, trigger)

        await self._after_cycle(workspace_id, account_id, schedule.interval_minutes, outcome, started_at)
        return outcome

    async def _after_cycle(
        self,
        workspace_id: str,
        account_id: str,
        interval_minutes: int,
        outcome: SyncOutcome,
        started_at: datetime,
    ):
        schedule = None
        if self.is_armed(workspace_id, account_id):
            if outcome.rate_limited:
                schedule = await self._back_off(workspace_id, account_id, interval_minutes)
            elif outcome.trigger == SyncTrigger.SCHEDULED:
                next_sync_at = started_at + timedelta(minutes=interval_minutes)
                schedule = await self.store.schedules.set_next_sync_at(workspace_id, account_id, next_sync_at)

        if schedule is None:
            schedule = await self.store.schedules.get(workspace_id, account_id)
        await self._emit("cycle", schedule, outcome)

    async def _defer(self, workspace_id: str, account_id: str):
        """Push an autonomous firing out of the peak window."""
        deferred_to = self.governor.deferred_until(self.clock())
        schedule = await self.store.schedules.set_next_sync_at(workspace_id, account_id, deferred_to)
        self.jobs.reschedule(job_id(workspace_id, account_id, "interval"), deferred_to)
        logger.info(f"⏭ Peak hours: sync for {workspace_id}/{account_id} deferred to {deferred_to.isoformat()}")
        await self._emit("deferred", schedule)

    async def _back_off(
        self, workspace_id: str, account_id: str, interval_minutes: int
    ) -> Optional[SyncSchedule]:
        """Push the next autonomous attempt one full interval out after a rate limit."""
        next_sync_at = self.clock() + timedelta(minutes=interval_minutes)
        logger.warning(
            f"⚠ Rate limited on {account_id}, next sync pushed to {next_sync_at.isoformat()}"
        )
        schedule = await self.store.schedules.set_next_sync_at(workspace_id, account_id, next_sync_at)
        self.jobs.reschedule(job_id(workspace_id, account_id, "interval"), next_sync_at)
        return schedule

    async def _on_phase_outcome(self, outcome: SyncOutcome):
        workspace_id, account_id = outcome.workspace_id, outcome.account_id
        schedule = await self.store.schedules.get(workspace_id, account_id)
        if outcome.rate_limited and schedule is not None and self.is_armed(workspace_id, account_id):
            schedule = await self._back_off(workspace_id, account_id, schedule.interval_minutes) or schedule
        await self._emit("cycle", schedule, outcome)

    # =========================================================================
    # Settings & Status
    # =========================================================================

    async def update_settings(
        self,
        workspace_id: str,
        account_id: str,
        interval_minutes: Optional[int] = None,
        sync_type: Optional[SyncType] = None,
    ) -> SyncSchedule:
        """
        Change the interval and/or sync type. Re-arms the timer when enabled.

        A new sync type starts a fresh traversal; the old cursor is cleared.

        Raises:
            ConfigurationError: If the account has no schedule
        """
        previous = await self.store.schedules.get(workspace_id, account_id)
        if previous is None:
            raise ConfigurationError(workspace_id, account_id)

        schedule = await self.store.schedules.update_settings(
            workspace_id, account_id, interval_minutes=interval_minutes, sync_type=sync_type
        )
        if schedule is None:
            raise ConfigurationError(workspace_id, account_id)

        if sync_type is not None and sync_type != previous.sync_type and previous.last_cursor is not None:
            schedule = await self.executor.cursors.reset(workspace_id, account_id)
            logger.info(f"↺ Sync type for {workspace_id}/{account_id} changed to {sync_type.value}, cursor reset")

        if interval_minutes is not None and self.is_armed(workspace_id, account_id):
            next_sync_at = self.clock() + timedelta(minutes=interval_minutes)
            schedule = await self.store.schedules.set_next_sync_at(workspace_id, account_id, next_sync_at) or schedule
            self._arm_timer(workspace_id, account_id, interval_minutes, next_sync_at)

        logger.info(f"⚙ Sync settings updated for {workspace_id}/{account_id}")
        await self._emit("settings", schedule)
        return schedule

    async def reset_cursor(self, workspace_id: str, account_id: str) -> SyncSchedule:
        """Force the next cycle to start a fresh traversal."""
        async with self.locks.hold(workspace_id, account_id):
            schedule = await self.executor.cursors.reset(workspace_id, account_id)
        logger.info(f"↺ Cursor reset for {workspace_id}/{account_id}")
        await self._emit("reset", schedule)
        return schedule

    async def get_status(self, workspace_id: str, account_id: str) -> SyncStatusView:
        """
        Get the caller-facing sync status for an account.

        Raises:
            ConfigurationError: If the account has no schedule
        """
        schedule = await self.store.schedules.get(workspace_id, account_id)
        if schedule is None:
            raise ConfigurationError(workspace_id, account_id)

        recent = await self.store.history.list_recent(
            workspace_id, self.settings.status_history_limit, account_id=account_id
        )
        return SyncStatusView(
            workspace_id=workspace_id,
            account_id=account_id,
            is_enabled=schedule.enabled,
            last_sync_at=schedule.last_sync_at,
            next_sync_at=schedule.next_sync_at,
            interval_minutes=schedule.interval_minutes,
            sync_type=schedule.sync_type,
            total_items_synced=schedule.total_items_synced,
            in_flight=self.locks.busy(workspace_id, account_id),
            recent_syncs=recent,
        )

    def list_jobs(self) -> list[dict]:
        return self.jobs.get_job_status(prefix="sync:")

    # =========================================================================
    # Listeners
    # =========================================================================

    def add_listener(self, listener: StatusListener):
        """Register a sync or async callable receiving SyncStatusEvent."""
        self._listeners.append(listener)

    def remove_listener(self, listener: StatusListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _emit(
        self,
        event: str,
        schedule: Optional[SyncSchedule],
        outcome: Optional[SyncOutcome] = None,
    ):
        if schedule is None or not self._listeners:
            return

        status_event = SyncStatusEvent(
            workspace_id=schedule.workspace_id,
            account_id=schedule.account_id,
            event=event,
            is_enabled=schedule.enabled,
            last_sync_at=schedule.last_sync_at,
            next_sync_at=schedule.next_sync_at,
            total_items_synced=schedule.total_items_synced,
            outcome=outcome,
        )
        for listener in list(self._listeners):
            try:
                result = listener(status_event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Sync status listener failed on '{event}': {e}")

    # =========================================================================
    # Timers
    # =========================================================================

    def _arm_timer(
        self,
        workspace_id: str,
        account_id: str,
        interval_minutes: int,
        next_run_time: Optional[datetime],
    ):
        self.jobs.add_interval(
            job_id(workspace_id, account_id, "interval"),
            self._on_timer,
            minutes=interval_minutes,
            args=(workspace_id, account_id),
            next_run_time=next_run_time,
        )
