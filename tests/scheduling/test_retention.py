"""Tests for execution-log retention."""

from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from cronspine.core.models import ExecutionStatus, FireOutcome, JobKey, Trigger, TriggerKey
from cronspine.scheduling.retention import (
    RetentionCleaner,
    compute_cutoff,
    purge_execution_logs,
)

from conftest import T0

TRIGGER = Trigger(
    key=TriggerKey("ping_trigger", "grp1"),
    job_key=JobKey("ping", "grp1"),
    cron_expression="0 */5 * * * ?",
)


def seed(history, *ages: timedelta) -> None:
    for age in ages:
        history.record(TRIGGER, T0 - age, FireOutcome(ExecutionStatus.SUCCESS, str(age)))


class TestComputeCutoff:
    def test_days_before_now(self):
        assert compute_cutoff(10, T0) == T0 - timedelta(days=10)


class TestPurgeExecutionLogs:
    def test_deletes_strictly_older_than_cutoff(self, conn, history, log_repository):
        seed(
            history,
            timedelta(days=10, seconds=1),   # older than cutoff
            timedelta(days=10),              # exactly at cutoff, kept
            timedelta(days=9, hours=23),
            timedelta(minutes=5),
        )

        result = purge_execution_logs(conn, retention_days=10, now=T0)

        assert result.deleted == 1
        assert result.skipped is False
        assert result.cutoff == "2025-12-26T10:00:00.000+00:00"
        assert log_repository.count() == 3

    def test_zero_days_disables(self, conn, history, log_repository):
        seed(history, timedelta(days=400))
        result = purge_execution_logs(conn, retention_days=0, now=T0)
        assert result.skipped is True
        assert result.deleted == 0
        assert log_repository.count() == 1

    def test_negative_days_disables(self, conn, history, log_repository):
        seed(history, timedelta(days=400))
        assert purge_execution_logs(conn, retention_days=-3, now=T0).skipped is True
        assert log_repository.count() == 1

    def test_all_jobs_purged_together(self, conn, history, log_repository):
        other = Trigger(
            key=TriggerKey("pong_trigger", "grp2"),
            job_key=JobKey("pong", "grp2"),
            cron_expression="0 0 * * * ?",
        )
        history.record(other, T0 - timedelta(days=30), FireOutcome(ExecutionStatus.FAILURE, "x"))
        seed(history, timedelta(days=30))

        assert purge_execution_logs(conn, retention_days=10, now=T0).deleted == 2
        assert log_repository.count() == 0


class TestRetentionCleaner:
    def test_run_once_uses_clock(self, conn, clock, history, log_repository):
        seed(history, timedelta(days=11), timedelta(days=1))
        cleaner = RetentionCleaner(conn, retention_days=10, clock=clock)

        result = cleaner.run_once()

        assert result.deleted == 1
        assert cleaner.last_result is result
        assert log_repository.count() == 1

    def test_run_once_failure_returns_none(self, conn, clock):
        conn.execute("DROP TABLE cs_execution_logs")
        cleaner = RetentionCleaner(conn, clock=clock)
        assert cleaner.run_once() is None
        assert cleaner.last_result is None

    def test_next_run_is_next_midnight(self, conn, clock):
        cleaner = RetentionCleaner(conn, clock=clock)
        assert cleaner.next_run_after(T0) == T0.replace(hour=0) + timedelta(days=1)

    def test_start_stop(self, conn, clock):
        cleaner = RetentionCleaner(conn, clock=clock)
        cleaner.start()
        try:
            assert cleaner.is_running
        finally:
            cleaner.stop(timeout=2)
        assert not cleaner.is_running

    @pytest.mark.slow
    def test_unexpected_error_does_not_end_the_loop(self, conn, clock):
        class FlakyCleaner(RetentionCleaner):
            calls = 0
            second_call = threading.Event()

            def run_once(self, now=None):
                type(self).calls += 1
                if self.calls == 1:
                    raise RuntimeError("disk on fire")
                self.second_call.set()
                return super().run_once(now)

        cleaner = FlakyCleaner(conn, schedule="* * * * * ?", clock=clock)
        cleaner.start()
        try:
            assert FlakyCleaner.second_call.wait(timeout=5)
            assert cleaner.is_running
        finally:
            cleaner.stop(timeout=2)
