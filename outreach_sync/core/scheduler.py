"""
Background Job Scheduler using APScheduler.

This module provides:
- JobScheduler, a service object around AsyncIOScheduler
- Per-job timeout enforcement (default 20 minutes)
- Recurring (interval) and one-shot (delayed) job registration
- Job inspection and cancellation by id or id prefix

Usage:
    from outreach_sync.core.scheduler import JobScheduler

    jobs = JobScheduler()
    jobs.start()

    # Recurring job every 30 minutes
    jobs.add_interval("sync:ws:acct", run_sync, minutes=30, args=("ws", "acct"))

    # One-shot job 5 seconds from now
    jobs.schedule_once("sync:ws:acct:phase:active", run_phase, delay_seconds=5)

    jobs.remove_jobs_with_prefix("sync:ws:acct")
    jobs.stop()
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Any, Callable, Optional, Sequence

from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MISSED,
    JobExecutionEvent,
)
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger(__name__)

# ============================================================================
# Scheduler Configuration
# ============================================================================

# Default job timeout (20 minutes)
DEFAULT_JOB_TIMEOUT_SECONDS = 20 * 60  # 1200 seconds

# Job defaults
JOB_DEFAULTS = {
    'coalesce': True,  # Combine multiple pending executions into one
    'max_instances': 1,  # Only one instance of each job running at a time
    'misfire_grace_time': 60 * 5,  # 5 minutes grace time for missed jobs
}


# ============================================================================
# Event Listeners
# ============================================================================

def job_executed_listener(event: JobExecutionEvent):
    """Log when a job completes successfully."""
    logger.debug(f"✓ Job '{event.job_id}' executed successfully at {event.scheduled_run_time}")


def job_error_listener(event: JobExecutionEvent):
    """Log when a job fails."""
    logger.error(f"✗ Job '{event.job_id}' failed with error: {event.exception}")
    if event.traceback:
        logger.error(f"  Traceback: {event.traceback}")


def job_missed_listener(event: JobExecutionEvent):
    """Log when a job is missed."""
    logger.warning(f"⚠ Job '{event.job_id}' missed its scheduled time: {event.scheduled_run_time}")


# ============================================================================
# Job Timeout
# ============================================================================

class JobTimeoutError(Exception):
    """Raised when a job exceeds its timeout."""
    def __init__(self, job_id: str, timeout_seconds: int):
        self.job_id = job_id
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Job '{job_id}' timed out after {timeout_seconds} seconds")


def with_timeout(job_id: str, func: Callable, timeout_seconds: int) -> Callable:
    """
    Wrap a coroutine function so each run is bounded by ``timeout_seconds``.

    Args:
        job_id: Job id used in log lines and in JobTimeoutError
        func: Coroutine function to wrap
        timeout_seconds: Max execution time

    Returns:
        Wrapped coroutine function carrying ``_job_info`` for status reporting
    """
    @wraps(func)
    async def wrapper(*args, **kwargs):
        start_time = datetime.now(timezone.utc)
        logger.debug(f"⏱ Job '{job_id}' starting (timeout: {timeout_seconds}s)")

        try:
            result = await asyncio.wait_for(func(*args, **kwargs), timeout=timeout_seconds)
            elapsed = (datetime.now(timezone.utc) - start_time).total_seconds()
            logger.debug(f"✓ Job '{job_id}' completed in {elapsed:.2f}s")
            return result

        except asyncio.TimeoutError:
            elapsed = (datetime.now(timezone.utc) - start_time).total_seconds()
            logger.error(
                f"⏰ Job '{job_id}' TIMED OUT after {elapsed:.2f}s "
                f"(limit: {timeout_seconds}s)"
            )
            raise JobTimeoutError(job_id, timeout_seconds)

        except Exception as e:
            elapsed = (datetime.now(timezone.utc) - start_time).total_seconds()
            logger.error(f"✗ Job '{job_id}' failed after {elapsed:.2f}s: {e}")
            raise

    wrapper._job_info = {'id': job_id, 'timeout_seconds': timeout_seconds}
    return wrapper


# ============================================================================
# Job Scheduler Service
# ============================================================================

class JobScheduler:
    """
    Service object owning one AsyncIOScheduler.

    Construct once at process start and pass it to whatever needs timers.
    All jobs are coroutine functions run on the event loop that was current
    when ``start()`` was called.
    """

    def __init__(
        self,
        timezone_name: str = 'UTC',
        default_timeout_seconds: int = DEFAULT_JOB_TIMEOUT_SECONDS,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.default_timeout_seconds = default_timeout_seconds
        self.timezone_name = timezone_name
        self._scheduler = scheduler or self._build_scheduler()
        self._add_listeners(self._scheduler)
        # AsyncIOScheduler.shutdown() may complete on a later loop iteration,
        # so the scheduler's own ``running`` flag lags behind stop()
        self._running = False

    def _build_scheduler(self) -> AsyncIOScheduler:
        return AsyncIOScheduler(
            jobstores={'default': MemoryJobStore()},
            executors={'default': AsyncIOExecutor()},
            job_defaults=JOB_DEFAULTS,
            timezone=self.timezone_name,
        )

    @staticmethod
    def _add_listeners(scheduler: AsyncIOScheduler):
        scheduler.add_listener(job_executed_listener, EVENT_JOB_EXECUTED)
        scheduler.add_listener(job_error_listener, EVENT_JOB_ERROR)
        scheduler.add_listener(job_missed_listener, EVENT_JOB_MISSED)

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        """Start the scheduler. Safe to call right after stop()."""
        if self._running:
            logger.warning("Scheduler is already running")
            return

        if self._scheduler.running:
            # Previous shutdown has not completed yet; start on a fresh instance
            self._scheduler = self._build_scheduler()
            self._add_listeners(self._scheduler)

        self._scheduler.start()
        self._running = True
        logger.info(f"🚀 Background scheduler started (default timeout: {self.default_timeout_seconds}s)")

    def stop(self):
        """
        Stop the scheduler without waiting for running jobs.

        Jobs already executing keep running on the event loop until they
        finish; no new jobs are started. Pending jobs are discarded.
        """
        if not self._running:
            logger.warning("Scheduler is not running")
            return

        self._running = False
        self._scheduler.remove_all_jobs()
        self._scheduler.shutdown(wait=False)
        logger.info("🛑 Background scheduler stopped")

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def add_interval(
        self,
        job_id: str,
        func: Callable,
        minutes: int,
        args: Sequence[Any] = (),
        next_run_time: Optional[datetime] = None,
        timeout_seconds: Optional[int] = None,
    ) -> Any:
        """
        Add (or replace) a recurring job.

        Args:
            job_id: Unique job ID
            func: Coroutine function to run
            minutes: Interval between runs
            args: Positional arguments for func
            next_run_time: First fire time (default: now + interval)
            timeout_seconds: Max execution time per run

        Returns:
            The job instance
        """
        timeout = timeout_seconds or self.default_timeout_seconds
        trigger_args = {'minutes': minutes}
        if next_run_time is not None:
            trigger_args['next_run_time'] = next_run_time

        job = self._scheduler.add_job(
            with_timeout(job_id, func, timeout),
            'interval',
            id=job_id,
            name=job_id,
            args=list(args),
            replace_existing=True,
            **trigger_args
        )
        logger.info(f"📅 Registered job: {job_id} (every {minutes}m, timeout: {timeout}s)")
        return job

    def schedule_once(
        self,
        job_id: str,
        func: Callable,
        delay_seconds: float,
        args: Sequence[Any] = (),
        timeout_seconds: Optional[int] = None,
    ) -> Any:
        """
        Schedule a function to run once after a delay.

        Args:
            job_id: Unique ID for the job (replaces a pending job with the same id)
            func: Coroutine function to run
            delay_seconds: Seconds to wait before running
            args: Positional arguments for func
            timeout_seconds: Max execution time

        Returns:
            The job instance
        """
        timeout = timeout_seconds or self.default_timeout_seconds
        run_time = datetime.now(timezone.utc) + timedelta(seconds=max(0.0, delay_seconds))

        job = self._scheduler.add_job(
            with_timeout(job_id, func, timeout),
            'date',
            run_date=run_time,
            id=job_id,
            name=job_id,
            args=list(args),
            replace_existing=True,
        )
        logger.info(f"📅 Scheduled one-time job: {job_id} at {run_time}")
        return job

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def reschedule(self, job_id: str, run_at: datetime) -> bool:
        """Move the next fire time of an existing job."""
        try:
            self._scheduler.modify_job(job_id, next_run_time=run_at)
            logger.info(f"⏭ Job '{job_id}' moved to {run_at}")
            return True
        except JobLookupError:
            logger.warning(f"Job '{job_id}' not found")
            return False

    def remove_job(self, job_id: str) -> bool:
        """Remove a job from the scheduler."""
        try:
            self._scheduler.remove_job(job_id)
            logger.info(f"🗑 Job '{job_id}' removed")
            return True
        except JobLookupError:
            return False

    def remove_jobs_with_prefix(self, prefix: str) -> int:
        """Remove every pending job whose id starts with ``prefix``."""
        removed = 0
        for job in self._scheduler.get_jobs():
            if job.id.startswith(prefix) and self.remove_job(job.id):
                removed += 1
        return removed

    def has_job(self, job_id: str) -> bool:
        return self._scheduler.get_job(job_id) is not None

    def get_job_status(self, prefix: Optional[str] = None) -> list[dict]:
        """Get status of registered jobs, optionally filtered by id prefix."""
        jobs = []
        for job in self._scheduler.get_jobs():
            if prefix and not job.id.startswith(prefix):
                continue
            timeout = self.default_timeout_seconds
            if hasattr(job.func, '_job_info'):
                timeout = job.func._job_info.get('timeout_seconds', timeout)

            jobs.append({
                'id': job.id,
                'name': job.name,
                'next_run_time': job.next_run_time.isoformat() if job.next_run_time else None,
                'trigger': str(job.trigger),
                'timeout_seconds': timeout,
            })
        return jobs
