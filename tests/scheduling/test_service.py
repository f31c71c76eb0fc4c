"""Tests for SchedulerService: firing, misfires, vetoes, recording, lifecycle.

The service is driven with explicit ``tick()`` calls against a fake clock;
only the ``slow`` test uses the real thread backend.
"""

from __future__ import annotations

import threading
from datetime import timedelta

import httpx
import pytest

from cronspine.core.models import ExecutionStatus, JobSpec, TriggerKey, TriggerState
from cronspine.execution.http_job import HttpJobExecutor
from cronspine.execution.protocol import JobResult
from cronspine.scheduling.service import SchedulerService
from cronspine.scheduling.store import TriggerStore
from cronspine.scheduling.thread_backend import ThreadSchedulerBackend

from conftest import T0, RecordingExecutor

PING_DATA = {"url": "https://example.org/ping", "method": "GET"}
PING_KEY = TriggerKey("ping_trigger", "grp1")


def ping_spec(**overrides) -> JobSpec:
    values = dict(
        job_name="ping",
        job_group="grp1",
        cron_expression="0 */5 * * * ?",
        job_data=dict(PING_DATA),
    )
    values.update(overrides)
    return JobSpec(**values)


def at(minutes: float = 0, seconds: float = 0):
    return T0 + timedelta(minutes=minutes, seconds=seconds)


class RaisingExecutor:
    job_type = "http"

    def execute(self, job_data):
        raise RuntimeError("connection pool exploded")


class TestFiring:
    """A due trigger fires once and is re-armed."""

    def test_fires_at_due_instant_and_records_history(self, store, service, history, executor, clock):
        store.upsert_job(ping_spec())

        clock.set(at(5))
        service.tick()
        assert service.wait_idle(5)

        [entry] = history.history("grp1", "ping")
        assert entry.fire_time == at(5)
        assert entry.status == ExecutionStatus.SUCCESS
        assert entry.message == "pong"
        assert entry.end_time >= entry.fire_time
        assert executor.calls == [PING_DATA]

        view = next(iter(store.list_triggers()))
        assert view.last_execution_time == "2026-01-05 10:05:00"
        assert view.next_execution_time == "2026-01-05 10:10:00"
        assert service.get_armed(PING_KEY).next_fire_time == at(10)

    def test_not_fired_before_due(self, store, service, executor):
        store.upsert_job(ping_spec())
        service.tick(at(4, 59))
        service.wait_idle(5)
        assert executor.calls == []

    def test_same_instant_fires_once(self, store, service, history):
        store.upsert_job(ping_spec())
        service.tick(at(5))
        service.tick(at(5))
        service.wait_idle(5)
        assert len(history.history("grp1", "ping")) == 1

    def test_consecutive_fire_instants(self, store, service, history):
        store.upsert_job(ping_spec())
        for minute in (5, 10, 15):
            service.tick(at(minute))
            service.wait_idle(5)

        fire_times = [e.fire_time for e in history.history("grp1", "ping")]
        assert fire_times == [at(15), at(10), at(5)]

    def test_empty_success_message_defaults(self, store, service, history, executor):
        executor.result = JobResult.success(None)
        store.upsert_job(ping_spec())
        service.tick(at(5))
        service.wait_idle(5)
        assert history.history("grp1", "ping")[0].message == "Success"

    def test_end_time_completes_trigger(self, store, service, history):
        store.upsert_job(ping_spec(end_time=at(7)))

        service.tick(at(5))
        service.wait_idle(5)

        assert len(history.history("grp1", "ping")) == 1
        assert service.get_armed(PING_KEY) is None
        trigger = store.get_trigger("grp1", "ping_trigger")
        assert trigger.state == TriggerState.COMPLETE
        assert next(iter(store.list_triggers())).next_execution_time == "Completed"


class TestOutcomes:
    def test_failure_result(self, store, service, history, executor):
        executor.result = JobResult.failure("Connection refused")
        store.upsert_job(ping_spec())
        service.tick(at(5))
        service.wait_idle(5)

        [entry] = history.history("grp1", "ping")
        assert entry.status == ExecutionStatus.FAILURE
        assert entry.message == "Connection refused"
        assert service.get_stats().failed == 1

    def test_executor_exception_is_failure(self, store, service, history, registry):
        registry.register(RaisingExecutor())
        store.upsert_job(ping_spec())
        service.tick(at(5))
        service.wait_idle(5)

        [entry] = history.history("grp1", "ping")
        assert entry.status == ExecutionStatus.FAILURE
        assert entry.message == "connection pool exploded"

    def test_invalid_url_is_recorded_as_failure(self, store, service, history, registry):
        def unreachable(request):
            raise AssertionError("no request should be sent")

        client = httpx.Client(transport=httpx.MockTransport(unreachable))
        registry.register(HttpJobExecutor(client=client))
        store.upsert_job(ping_spec(job_data={"url": "http://example.org:abc/", "method": "GET"}))
        service.tick(at(5))
        service.wait_idle(5)

        [entry] = history.history("grp1", "ping")
        assert entry.status == ExecutionStatus.FAILURE
        assert "Invalid port" in entry.message
        assert service.get_stats().failed == 1
        client.close()

    def test_aborted_firing_writes_no_history(self, store, service, history, executor):
        executor.result = JobResult.abort("URL or Method not specified in job data")
        store.upsert_job(ping_spec())
        service.tick(at(5))
        service.wait_idle(5)

        assert history.history("grp1", "ping") == []
        assert service.get_stats().aborted == 1
        # the schedule still advances
        assert service.get_armed(PING_KEY).next_fire_time == at(10)


class TestMisfire:
    def test_late_tick_fires_once_at_latest_instant(self, store, service, history, executor):
        store.upsert_job(ping_spec())

        service.tick(at(17, 30))
        service.wait_idle(5)

        [entry] = history.history("grp1", "ping")
        assert entry.fire_time == at(15)
        assert len(executor.calls) == 1
        assert service.get_stats().misfired == 1
        assert service.get_armed(PING_KEY).next_fire_time == at(20)

    def test_cadence_resumes_after_misfire(self, store, service, history):
        store.upsert_job(ping_spec())
        service.tick(at(17, 30))
        service.tick(at(20))
        service.wait_idle(5)

        fire_times = [e.fire_time for e in history.history("grp1", "ping")]
        assert fire_times == [at(20), at(15)]

    def test_within_threshold_is_not_a_misfire(self, store, service, history):
        store.upsert_job(ping_spec())
        service.tick(at(5, 30))
        service.wait_idle(5)

        assert history.history("grp1", "ping")[0].fire_time == at(5)
        assert service.get_stats().misfired == 0
        assert service.get_armed(PING_KEY).next_fire_time == at(10)


class TestVetoes:
    def test_overlap_vetoed_when_concurrency_disallowed(self, store, history, registry, backend, clock, executor):
        executor.gate = threading.Event()
        service = SchedulerService(
            store, history, registry, backend, clock=clock, allow_concurrent_execution=False
        )
        store.add_listener(service)
        try:
            store.upsert_job(ping_spec())
            service.tick(at(5))
            assert executor.started.wait(5)

            service.tick(at(10))
            assert service.in_flight == 1

            executor.gate.set()
            assert service.wait_idle(5)
        finally:
            executor.gate.set()
            service.stop(grace_seconds=5)

        vetoed, succeeded = history.history("grp1", "ping")
        assert vetoed.status == ExecutionStatus.VETOED
        assert vetoed.fire_time == at(10)
        assert vetoed.message == "Job execution vetoed: previous execution still running"
        assert succeeded.status == ExecutionStatus.SUCCESS
        assert len(executor.calls) == 1

    def test_overlap_allowed_by_default(self, store, service, history, executor):
        executor.gate = threading.Event()
        store.upsert_job(ping_spec())
        try:
            service.tick(at(5))
            assert executor.started.wait(5)
            service.tick(at(10))
        finally:
            executor.gate.set()
        service.wait_idle(5)

        statuses = {e.status for e in history.history("grp1", "ping")}
        assert statuses == {ExecutionStatus.SUCCESS}
        assert len(executor.calls) == 2

    def test_rejected_by_stopped_pool(self, store, service, history, executor):
        store.upsert_job(ping_spec())
        service.stop(grace_seconds=1)

        service.tick(at(5))

        [entry] = history.history("grp1", "ping")
        assert entry.status == ExecutionStatus.VETOED
        assert entry.message.startswith("Job execution vetoed: worker pool rejected")
        assert executor.calls == []
        assert service.get_stats().vetoed == 1


class TestDefinitionChanges:
    def test_delete_while_running_still_records(self, store, service, history, executor):
        executor.gate = threading.Event()
        store.upsert_job(ping_spec())
        try:
            service.tick(at(5))
            assert executor.started.wait(5)
            assert store.delete_job("grp1", "ping")
            assert service.get_armed(PING_KEY) is None
        finally:
            executor.gate.set()
        service.wait_idle(5)

        [entry] = history.history("grp1", "ping")
        assert entry.status == ExecutionStatus.SUCCESS

        service.tick(at(10))
        service.wait_idle(5)
        assert len(executor.calls) == 1

    def test_replace_rearms_with_new_schedule(self, store, service, executor):
        store.upsert_job(ping_spec())
        store.upsert_job(ping_spec(cron_expression="0 0 * * * ?"))

        service.tick(at(5))
        service.wait_idle(5)

        assert executor.calls == []
        assert service.get_armed(PING_KEY).next_fire_time == at(60)

    def test_paused_trigger_never_fires(self, store, service, executor):
        store.upsert_job(ping_spec())
        store.pause_job("grp1", "ping")

        service.tick(at(5))
        service.wait_idle(5)
        assert executor.calls == []

        store.resume_job("grp1", "ping")
        assert service.get_armed(PING_KEY).next_fire_time == at(5)

    def test_stale_armed_trigger_is_discarded(self, store, history, registry, backend, clock, executor):
        service = SchedulerService(store, history, registry, backend, clock=clock)
        try:
            trigger = store.upsert_job(ping_spec())
            service.schedule_trigger(trigger, store.get_job("grp1", "ping"))
            # replaced behind the service's back
            store.upsert_job(ping_spec(description="changed"))

            service.tick(at(5))
            service.wait_idle(5)

            assert executor.calls == []
            assert service.get_stats().discarded == 1
            assert service.get_armed(PING_KEY) is None
            assert history.history("grp1", "ping") == []
        finally:
            service.stop(grace_seconds=5)


class TestLifecycle:
    def test_start_arms_active_triggers(self, store, history, registry, backend, clock):
        store.upsert_job(ping_spec())
        service = SchedulerService(store, history, registry, backend, clock=clock)
        assert service.get_armed(PING_KEY) is None

        service.start()
        try:
            assert backend.started
            assert service.is_running
            assert service.get_armed(PING_KEY).next_fire_time == at(5)
        finally:
            service.stop(grace_seconds=5)
        assert not backend.started
        assert not service.is_running

    def test_arming_wakes_running_backend(self, store, service, backend):
        service.start()
        store.upsert_job(ping_spec())
        assert backend.wakes == 1

    def test_restart_after_stop(self, store, service, history, clock):
        service.start()
        service.stop(grace_seconds=1)
        service.start()

        store.upsert_job(ping_spec())
        service.tick(at(5))
        service.wait_idle(5)
        assert history.history("grp1", "ping")[0].status == ExecutionStatus.SUCCESS


class TestTickDelay:
    def test_idle_when_nothing_armed(self, service):
        assert service.tick(at(0)) == 1.0

    def test_capped_by_max_idle(self, store, service):
        store.upsert_job(ping_spec())
        assert service.tick(at(0)) == 1.0

    def test_time_to_next_fire(self, store, service):
        store.upsert_job(ping_spec())
        assert service.tick(at(4, 59.5)) == pytest.approx(0.5)

    def test_long_idle(self, store, history, registry, backend, clock):
        service = SchedulerService(
            store, history, registry, backend, clock=clock, max_idle_seconds=600
        )
        store.add_listener(service)
        try:
            store.upsert_job(ping_spec())
            assert service.tick(at(0)) == pytest.approx(300.0)
        finally:
            service.stop(grace_seconds=1)


class TestHealth:
    def test_unhealthy_until_started(self, service):
        assert service.health().healthy is False

    def test_health_and_stats(self, store, service):
        service.start()
        store.upsert_job(ping_spec())
        service.tick(at(5))
        service.wait_idle(5)

        health = service.health()
        assert health.healthy is True
        assert health.armed_triggers == 1
        assert health.in_flight == 0
        data = health.to_dict()
        assert data["stats"]["fired"] == 1
        assert data["stats"]["succeeded"] == 1
        assert data["last_tick"] == "2026-01-05T10:05:00.000+00:00"

        service.reset_stats()
        assert service.get_stats().fired == 0


@pytest.mark.slow
class TestWithThreadBackend:
    def test_real_clock_fires_every_second_job(self, conn, registry, history):
        executor = RecordingExecutor()
        registry.register(executor)
        store = TriggerStore(conn, registry)
        service = SchedulerService(
            store, history, registry, ThreadSchedulerBackend(), max_idle_seconds=0.2
        )
        store.add_listener(service)
        service.start()
        try:
            store.upsert_job(ping_spec(cron_expression="* * * * * ?"))
            assert executor.started.wait(5)
        finally:
            service.stop(grace_seconds=5)

        assert history.history("grp1", "ping")
        assert service.backend.tick_count > 0
