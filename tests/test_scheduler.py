"""
Tests for the APScheduler-backed JobScheduler.

These use a real AsyncIOScheduler on the test's event loop.

Run with: pytest tests/test_scheduler.py -v
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from outreach_sync.core.scheduler import (
    JOB_DEFAULTS,
    JobScheduler,
    JobTimeoutError,
    with_timeout,
)


async def noop(*args):
    return args


class TestWithTimeout:

    @pytest.mark.asyncio
    async def test_returns_result(self):
        wrapped = with_timeout("job", noop, 5)

        assert await wrapped(1, 2) == (1, 2)
        assert wrapped._job_info == {"id": "job", "timeout_seconds": 5}

    @pytest.mark.asyncio
    async def test_times_out(self):
        async def slow():
            await asyncio.sleep(5)

        with pytest.raises(JobTimeoutError) as exc:
            await with_timeout("slow-job", slow, 0.05)()

        assert exc.value.job_id == "slow-job"

    @pytest.mark.asyncio
    async def test_propagates_errors(self):
        async def broken():
            raise ValueError("boom")

        with pytest.raises(ValueError):
            await with_timeout("broken-job", broken, 5)()


class TestJobScheduler:

    def test_job_defaults(self):
        assert JOB_DEFAULTS["coalesce"] is True
        assert JOB_DEFAULTS["max_instances"] == 1

    @pytest.mark.asyncio
    async def test_interval_job_registration(self):
        jobs = JobScheduler(default_timeout_seconds=60)
        jobs.start()
        try:
            first_run = (datetime.now(timezone.utc) + timedelta(minutes=10)).replace(microsecond=0)
            jobs.add_interval("sync:ws:acc:interval", noop, minutes=30, args=("ws", "acc"),
                              next_run_time=first_run)

            status = jobs.get_job_status(prefix="sync:")
            assert len(status) == 1
            assert status[0]["id"] == "sync:ws:acc:interval"
            assert status[0]["timeout_seconds"] == 60
            assert datetime.fromisoformat(status[0]["next_run_time"]) == first_run
        finally:
            jobs.stop()

    @pytest.mark.asyncio
    async def test_reschedule_and_remove_by_prefix(self):
        jobs = JobScheduler()
        jobs.start()
        try:
            jobs.add_interval("sync:ws:acc_1:interval", noop, minutes=30)
            jobs.schedule_once("sync:ws:acc_1:phase:active", noop, delay_seconds=60)
            jobs.add_interval("sync:ws:acc_10:interval", noop, minutes=30)

            later = datetime.now(timezone.utc) + timedelta(hours=8)
            assert jobs.reschedule("sync:ws:acc_1:interval", later)
            assert not jobs.reschedule("sync:ws:missing", later)

            assert jobs.remove_jobs_with_prefix("sync:ws:acc_1:") == 2
            assert not jobs.has_job("sync:ws:acc_1:interval")
            assert jobs.has_job("sync:ws:acc_10:interval")
            assert not jobs.remove_job("sync:ws:acc_1:interval")
        finally:
            jobs.stop()

    @pytest.mark.asyncio
    async def test_schedule_once_runs(self):
        jobs = JobScheduler()
        jobs.start()
        done = asyncio.Event()

        async def job(value):
            done.set()
            return value

        try:
            jobs.schedule_once("once", job, delay_seconds=0, args=("x",))
            await asyncio.wait_for(done.wait(), timeout=5)
        finally:
            jobs.stop()

    @pytest.mark.asyncio
    async def test_start_stop_are_idempotent(self):
        jobs = JobScheduler()
        jobs.start()
        jobs.start()
        assert jobs.running
        jobs.stop()
        jobs.stop()
        assert not jobs.running

    @pytest.mark.asyncio
    async def test_restart_right_after_stop(self):
        jobs = JobScheduler()
        jobs.start()
        jobs.add_interval("sync:ws:acc:interval", noop, minutes=30)
        jobs.stop()
        assert not jobs.running
        assert jobs.get_job_status() == []

        done = asyncio.Event()

        async def job():
            done.set()

        jobs.start()
        try:
            assert jobs.running
            jobs.schedule_once("sync:ws:acc:kickoff", job, delay_seconds=0)
            await asyncio.wait_for(done.wait(), timeout=5)
        finally:
            jobs.stop()
