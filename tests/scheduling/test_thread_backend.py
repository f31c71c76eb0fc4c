"""Tests for ThreadSchedulerBackend."""

from __future__ import annotations

import threading

import pytest

from cronspine.scheduling.protocol import SchedulerBackend
from cronspine.scheduling.thread_backend import ThreadSchedulerBackend


class CountingTick:
    def __init__(self, delay, wanted=3):
        self.delay = delay
        self.wanted = wanted
        self.count = 0
        self.reached = threading.Event()
        self.first = threading.Event()

    def __call__(self):
        self.count += 1
        self.first.set()
        if self.count >= self.wanted:
            self.reached.set()
        return self.delay


@pytest.fixture
def backend_thread():
    backend = ThreadSchedulerBackend(join_timeout=2.0)
    yield backend
    backend.stop()


class TestThreadSchedulerBackend:
    def test_satisfies_protocol(self, backend_thread):
        assert isinstance(backend_thread, SchedulerBackend)

    def test_ticks_repeatedly(self, backend_thread):
        tick = CountingTick(delay=0.01)
        backend_thread.start(tick, max_idle_seconds=1.0)

        assert tick.reached.wait(5)
        assert backend_thread.is_running
        assert backend_thread.tick_count >= 3
        assert backend_thread.last_tick is not None

    def test_delay_capped_by_max_idle(self, backend_thread):
        tick = CountingTick(delay=3600, wanted=2)
        backend_thread.start(tick, max_idle_seconds=0.05)
        assert tick.reached.wait(5)

    def test_wake_cuts_sleep_short(self, backend_thread):
        tick = CountingTick(delay=30, wanted=2)
        backend_thread.start(tick, max_idle_seconds=30)
        assert tick.first.wait(5)

        backend_thread.wake()
        assert tick.reached.wait(5)

    def test_tick_exception_keeps_loop_alive(self, backend_thread):
        calls = []
        done = threading.Event()

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")
            done.set()
            return 0.01

        backend_thread.start(flaky, max_idle_seconds=0.05)
        assert done.wait(5)

    def test_stop(self, backend_thread):
        tick = CountingTick(delay=30, wanted=1)
        backend_thread.start(tick, max_idle_seconds=30)
        assert tick.reached.wait(5)

        backend_thread.stop()

        assert not backend_thread.is_running
        health = backend_thread.health()
        assert health["healthy"] is False
        assert health["backend"] == "thread"

    def test_health_while_running(self, backend_thread):
        tick = CountingTick(delay=0.01, wanted=1)
        backend_thread.start(tick, max_idle_seconds=0.5)
        assert tick.reached.wait(5)

        health = backend_thread.health()
        assert health["healthy"] is True
        assert health["max_idle_seconds"] == 0.5
        assert health["tick_count"] >= 1

    def test_stop_before_start_is_noop(self):
        ThreadSchedulerBackend().stop()
