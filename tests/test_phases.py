"""
Tests for the Phase Scheduler.

Run with: pytest tests/test_phases.py -v
"""

from outreach_sync.db.models import ConnectionMetrics, PriorityMode, SyncOutcomeStatus, SyncTrigger
from outreach_sync.sync.executor import SyncExecutor
from outreach_sync.sync.locks import PairLocks
from outreach_sync.sync.phases import PhaseScheduler, job_id, job_prefix

from .fakes import (
    ACCOUNT,
    WORKSPACE,
    FakeMonotonic,
    FakeProvider,
    make_items,
    rate_limited,
    run_async,
    seed_schedule,
)


def make_phases(store, provider, jobs, armed=True, monotonic=None, outcomes=None):
    armed_state = {"value": armed}

    async def on_outcome(outcome):
        if outcomes is not None:
            outcomes.append(outcome)

    phases = PhaseScheduler(
        SyncExecutor(store, provider),
        jobs,
        PairLocks(),
        is_armed=lambda ws, acct: armed_state["value"],
        on_outcome=on_outcome,
        clock=monotonic or FakeMonotonic(),
    )
    return phases, armed_state


def metrics(total):
    return ConnectionMetrics(total_items=total)


class TestJobIds:

    def test_prefix_does_not_match_other_accounts(self):
        assert not job_id(WORKSPACE, "acc_10", "interval").startswith(job_prefix(WORKSPACE, "acc_1"))
        assert job_id(WORKSPACE, "acc_1", "interval").startswith(job_prefix(WORKSPACE, "acc_1"))


class TestVeryLargeAccount:

    def test_phase_one_runs_now_and_phase_two_is_scheduled(self, store, jobs):
        seed_schedule(store, batch_size=50, max_items_per_cycle=200, priority_mode=PriorityMode.ENGAGED)
        provider = FakeProvider(make_items(2000), total=20000)
        phases, _ = make_phases(store, provider, jobs)

        outcome = run_async(phases.run(WORKSPACE, ACCOUNT, metrics(20000), SyncTrigger.MANUAL))

        assert outcome.phase == "recent"
        assert outcome.items_synced <= 200
        assert outcome.status == SyncOutcomeStatus.SUCCESS
        assert provider.calls[0]["filter"].messages_per_item == 10
        assert provider.calls[0]["filter"].min_message_count == 5

        pending = jobs.once_jobs()
        assert list(pending) == [job_id(WORKSPACE, ACCOUNT, "phase:active")]
        assert pending[job_id(WORKSPACE, ACCOUNT, "phase:active")]["delay_seconds"] == 5

    def test_phase_three_is_anchored_to_phase_one(self, store, jobs):
        seed_schedule(store, batch_size=50, max_items_per_cycle=200, priority_mode=PriorityMode.ENGAGED,
                      last_cursor=None)
        provider = FakeProvider(make_items(2000), total=20000)
        monotonic = FakeMonotonic(1000.0)
        outcomes = []
        phases, _ = make_phases(store, provider, jobs, monotonic=monotonic, outcomes=outcomes)

        run_async(phases.run(WORKSPACE, ACCOUNT, metrics(20000)))
        cursor_after_phase_one = store.schedules.rows[(WORKSPACE, ACCOUNT)].last_cursor

        # Phase 2 fires 5s later and takes 3s
        monotonic.now = 1008.0
        run_async(jobs.fire(job_id(WORKSPACE, ACCOUNT, "phase:active")))

        active = outcomes[0]
        assert active.phase == "active"
        assert active.trigger == SyncTrigger.PHASE
        assert active.items_synced == 300
        assert provider.calls[1]["cursor"] is None
        assert provider.calls[1]["filter"].recent_activity_days == 7
        assert provider.calls[1]["filter"].messages_per_item == 20

        important_id = job_id(WORKSPACE, ACCOUNT, "phase:important")
        assert jobs.once_jobs()[important_id]["delay_seconds"] == 7

        run_async(jobs.fire(important_id))

        important = outcomes[1]
        assert important.phase == "important"
        assert important.items_synced == 500
        sent = provider.calls[2]["filter"]
        assert sent.unread_only is True
        assert sent.messages_per_item == 15
        assert "vip" in sent.include_tags

        # Snapshot passes leave the traversal where phase 1 put it
        assert store.schedules.rows[(WORKSPACE, ACCOUNT)].last_cursor == cursor_after_phase_one
        assert jobs.once_jobs() == {}

    def test_phase_three_delay_never_negative(self, store, jobs):
        seed_schedule(store, batch_size=50, max_items_per_cycle=200)
        provider = FakeProvider(make_items(1000), total=20000)
        monotonic = FakeMonotonic(0.0)
        phases, _ = make_phases(store, provider, jobs, monotonic=monotonic)

        run_async(phases.run(WORKSPACE, ACCOUNT, metrics(20000)))
        monotonic.now = 40.0
        run_async(jobs.fire(job_id(WORKSPACE, ACCOUNT, "phase:active")))

        assert jobs.once_jobs()[job_id(WORKSPACE, ACCOUNT, "phase:important")]["delay_seconds"] == 0

    def test_no_followups_when_not_armed(self, store, jobs):
        seed_schedule(store, enabled=False, batch_size=50, max_items_per_cycle=200)
        provider = FakeProvider(make_items(500), total=20000)
        phases, _ = make_phases(store, provider, jobs, armed=False)

        outcome = run_async(phases.run(WORKSPACE, ACCOUNT, metrics(20000), SyncTrigger.MANUAL))

        assert outcome.status == SyncOutcomeStatus.SUCCESS
        assert jobs.jobs == {}

    def test_disarmed_before_phase_two_fires(self, store, jobs):
        seed_schedule(store, batch_size=50, max_items_per_cycle=200)
        provider = FakeProvider(make_items(500), total=20000)
        outcomes = []
        phases, armed = make_phases(store, provider, jobs, outcomes=outcomes)

        run_async(phases.run(WORKSPACE, ACCOUNT, metrics(20000)))
        armed["value"] = False
        run_async(jobs.fire(job_id(WORKSPACE, ACCOUNT, "phase:active")))

        assert outcomes == []
        assert len(provider.calls) == 1
        assert jobs.jobs == {}

    def test_failed_phase_one_schedules_nothing(self, store, jobs):
        seed_schedule(store, batch_size=50, max_items_per_cycle=200)
        provider = FakeProvider(make_items(500), total=20000)
        provider.failures = [rate_limited()]
        phases, _ = make_phases(store, provider, jobs)

        outcome = run_async(phases.run(WORKSPACE, ACCOUNT, metrics(20000)))

        assert outcome.status == SyncOutcomeStatus.FAILED
        assert jobs.jobs == {}


class TestLargeAccount:

    def test_batches_chain_until_end_of_results(self, store, jobs):
        seed_schedule(store, batch_size=200, max_items_per_cycle=1000)
        provider = FakeProvider(make_items(500), total=3000)
        outcomes = []
        phases, _ = make_phases(store, provider, jobs, outcomes=outcomes)

        first = run_async(phases.run(WORKSPACE, ACCOUNT, metrics(3000)))
        assert first.items_synced == 200

        batch_two = job_id(WORKSPACE, ACCOUNT, "batch:2")
        assert jobs.once_jobs()[batch_two]["delay_seconds"] == 10
        run_async(jobs.fire(batch_two))

        batch_three = job_id(WORKSPACE, ACCOUNT, "batch:3")
        assert jobs.once_jobs()[batch_three]["delay_seconds"] == 10
        run_async(jobs.fire(batch_three))

        assert [o.items_synced for o in outcomes] == [200, 100]
        assert outcomes[-1].next_cursor is None
        assert jobs.once_jobs() == {}
        assert len(store.items.rows) == 500
        assert store.schedules.rows[(WORKSPACE, ACCOUNT)].last_cursor is None

    def test_batches_stop_at_estimated_total(self, store, jobs):
        seed_schedule(store, batch_size=200, max_items_per_cycle=1000)
        provider = FakeProvider(make_items(5000), total=1000)
        phases, _ = make_phases(store, provider, jobs)

        run_async(phases.run(WORKSPACE, ACCOUNT, metrics(1000)))
        for n in range(2, 6):
            run_async(jobs.fire(job_id(WORKSPACE, ACCOUNT, f"batch:{n}")))

        assert jobs.once_jobs() == {}
        assert store.schedules.rows[(WORKSPACE, ACCOUNT)].total_items_synced == 1000

    def test_failed_batch_stops_chain(self, store, jobs):
        seed_schedule(store, batch_size=200, max_items_per_cycle=1000)
        provider = FakeProvider(make_items(1000), total=3000)
        phases, _ = make_phases(store, provider, jobs)

        run_async(phases.run(WORKSPACE, ACCOUNT, metrics(3000)))
        provider.failures = [rate_limited()]
        run_async(jobs.fire(job_id(WORKSPACE, ACCOUNT, "batch:2")))

        assert jobs.once_jobs() == {}
        assert store.schedules.rows[(WORKSPACE, ACCOUNT)].last_cursor == "offset:200"


class TestSmallAccount:

    def test_single_cycle_no_jobs(self, store, jobs):
        seed_schedule(store)
        provider = FakeProvider(make_items(50))
        phases, _ = make_phases(store, provider, jobs)

        outcome = run_async(phases.run(WORKSPACE, ACCOUNT, metrics(50)))

        assert outcome.items_synced == 50
        assert outcome.next_cursor is None
        assert outcome.phase is None
        assert jobs.jobs == {}
