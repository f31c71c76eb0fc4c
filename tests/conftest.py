"""
Shared pytest fixtures for cron-spine tests.

This module provides:
- An in-memory SQLite connection with the scheduler tables
- A settable fake clock (``FakeClock``) so firings are deterministic
- A recording executor that stands in for the HTTP job
- A stub timing backend, so nothing ticks unless a test calls ``tick()``
- Store / history / service / engine wiring on top of those
"""

from __future__ import annotations

import threading
from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from cronspine.core.connection import SqliteConnection, create_connection
from cronspine.core.settings import CronSpineSettings
from cronspine.execution.protocol import JobResult
from cronspine.execution.registry import ExecutorRegistry
from cronspine.scheduling.engine import SchedulerEngine, create_scheduler
from cronspine.scheduling.history import ExecutionLogRepository, HistoryRecorder
from cronspine.scheduling.service import SchedulerService
from cronspine.scheduling.store import TriggerStore

# Monday, on a five-minute boundary.
T0 = datetime(2026, 1, 5, 10, 0, 0, tzinfo=UTC)


class FakeClock:
    """Clock whose ``now()`` only moves when a test moves it."""

    def __init__(self, start: datetime = T0) -> None:
        self._now = start
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def set(self, instant: datetime) -> None:
        with self._lock:
            self._now = instant

    def advance(self, **kwargs: Any) -> datetime:
        with self._lock:
            self._now = self._now + timedelta(**kwargs)
            return self._now


class RecordingExecutor:
    """Executor registered as ``http`` that records calls instead of making them.

    ``gate`` (when given) blocks each call until set, to hold a firing in flight.
    """

    job_type = "http"

    def __init__(self, result: JobResult | None = None, gate: threading.Event | None = None) -> None:
        self.result = result or JobResult.success("pong")
        self.gate = gate
        self.calls: list[dict[str, str]] = []
        self.started = threading.Event()

    def execute(self, job_data):
        self.calls.append(dict(job_data))
        self.started.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)
        return self.result


class StubBackend:
    """Timing backend that never ticks on its own."""

    name = "stub"

    def __init__(self) -> None:
        self.started = False
        self.wakes = 0

    def start(self, tick_callback, max_idle_seconds: float = 1.0) -> None:
        self.tick_callback = tick_callback
        self.started = True

    def stop(self) -> None:
        self.started = False

    def wake(self) -> None:
        self.wakes += 1

    def health(self) -> dict[str, Any]:
        return {"healthy": self.started, "backend": self.name, "tick_count": 0, "last_tick": None}


@pytest.fixture
def conn() -> Generator[SqliteConnection, None, None]:
    c = create_connection(":memory:")
    yield c
    c.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def executor() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture
def registry(executor) -> ExecutorRegistry:
    return ExecutorRegistry([executor])


@pytest.fixture
def store(conn, registry, clock) -> TriggerStore:
    return TriggerStore(conn, registry, clock=clock, tz=UTC)


@pytest.fixture
def log_repository(conn) -> ExecutionLogRepository:
    return ExecutionLogRepository(conn)


@pytest.fixture
def history(log_repository) -> HistoryRecorder:
    return HistoryRecorder(log_repository)


@pytest.fixture
def backend() -> StubBackend:
    return StubBackend()


@pytest.fixture
def service(store, history, registry, backend, clock) -> Generator[SchedulerService, None, None]:
    svc = SchedulerService(store, history, registry, backend, clock=clock)
    store.add_listener(svc)
    yield svc
    svc.stop(grace_seconds=5)


@pytest.fixture
def settings(tmp_path) -> CronSpineSettings:
    return CronSpineSettings(
        database_path=":memory:",
        data_dir=tmp_path,
        timezone="UTC",
        log_level="DEBUG",
    )


@pytest.fixture
def engine(settings, conn, clock, executor, backend) -> Generator[SchedulerEngine, None, None]:
    eng = create_scheduler(settings, conn, clock, executors=[executor], backend=backend)
    yield eng
    eng.close()
