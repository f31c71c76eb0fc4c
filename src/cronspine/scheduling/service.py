"""Scheduler service: the timing authority.

Tags:
    cron-spine, scheduling, orchestrator, beat-as-poller, service

┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULER SERVICE                                                           │
│                                                                              │
│   TriggerStore ── schedule_trigger / unschedule_trigger ──┐                  │
│                                                           ▼                  │
│   ┌───────────────────────── RLock ───────────────────────────────────┐      │
│   │  heap[(next_fire, generation, key)]   entries{key: _WakeEntry}   │      │
│   └───────────────────────────────────────────────────────────────────┘      │
│        ▲                                                                     │
│        │ tick()  (ThreadSchedulerBackend, or a test calling tick(now))       │
│        │                                                                     │
│   1. pop entries due at or before now (stale generations skipped)           │
│   2. mark acquired                                                           │
│   3. misfire check, fire instant, next fire                                  │
│   4. store.record_fire (version-guarded), re-arm or retire                   │
│   5. dispatch to the worker pool, or record VETOED                           │
│                                                                              │
│   worker: executor.execute(job_data) → FireOutcome → HistoryRecorder         │
└──────────────────────────────────────────────────────────────────────────────┘

Misfire policy: when a trigger is evaluated more than
``misfire_threshold_seconds`` after its due instant it fires once, at the
most recent scheduled instant not after now, and the next fire is computed
from now. Missed instants in between are not replayed.

Overlap policy: with ``allow_concurrent_execution`` (the default) a firing is
dispatched even if the previous one of the same trigger is still running.
Without it, such a firing is recorded as VETOED.
"""

from __future__ import annotations

import heapq
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any

from cronspine.core.cron import parse_cron
from cronspine.core.logging import LogContext, get_logger
from cronspine.core.models import (
    ExecutionStatus,
    FireOutcome,
    JobDefinition,
    Trigger,
    TriggerKey,
    TriggerState,
)
from cronspine.core.timestamps import ensure_utc, to_iso8601
from cronspine.execution.protocol import JobResult
from cronspine.execution.registry import ExecutorRegistry

from .history import HistoryRecorder
from .protocol import Clock, SchedulerBackend, SystemClock
from .store import TriggerStore
from .thread_backend import ThreadSchedulerBackend

logger = get_logger(__name__)

VETO_MESSAGE = "Job execution vetoed"
SUCCESS_MESSAGE = "Success"

_EPSILON = timedelta(microseconds=1)
_RETRY_DELAY = timedelta(seconds=1)


@dataclass
class SchedulerStats:
    """Counters since start (or the last ``reset_stats``)."""

    tick_count: int = 0
    fired: int = 0
    succeeded: int = 0
    failed: int = 0
    vetoed: int = 0
    aborted: int = 0
    misfired: int = 0
    discarded: int = 0
    last_tick: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick_count": self.tick_count,
            "fired": self.fired,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "vetoed": self.vetoed,
            "aborted": self.aborted,
            "misfired": self.misfired,
            "discarded": self.discarded,
            "last_tick": to_iso8601(self.last_tick),
            "last_error": self.last_error,
        }


@dataclass
class SchedulerHealth:
    """Health status for the scheduler service."""

    healthy: bool
    backend: dict[str, Any]
    armed_triggers: int = 0
    in_flight: int = 0
    last_tick: datetime | None = None
    stats: SchedulerStats = field(default_factory=SchedulerStats)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend,
            "armed_triggers": self.armed_triggers,
            "in_flight": self.in_flight,
            "last_tick": to_iso8601(self.last_tick),
            "stats": self.stats.to_dict(),
        }


@dataclass
class _WakeEntry:
    trigger: Trigger
    job: JobDefinition
    generation: int
    acquired: bool = False


class SchedulerService:
    """Arms triggers, fires them when due, and records every attempt.

    Example:
        >>> service = SchedulerService(store, history, registry)
        >>> store.add_listener(service)
        >>> service.start()
        >>> # ... later ...
        >>> service.stop(grace_seconds=30)
    """

    def __init__(
        self,
        store: TriggerStore,
        history: HistoryRecorder,
        registry: ExecutorRegistry,
        backend: SchedulerBackend | None = None,
        *,
        clock: Clock | None = None,
        max_workers: int = 10,
        misfire_threshold_seconds: float = 60.0,
        max_idle_seconds: float = 1.0,
        allow_concurrent_execution: bool = True,
    ) -> None:
        """Initialize scheduler service.

        Args:
            store: Trigger Store (durable definitions, ``record_fire``)
            history: History Recorder for outcomes
            registry: Executors by job type
            backend: Timing backend (default: ``ThreadSchedulerBackend``)
            clock: Source of "now" (default: system clock)
            max_workers: Size of the job worker pool
            misfire_threshold_seconds: Lateness after which a firing is a misfire
            max_idle_seconds: Longest the timing thread sleeps between ticks
            allow_concurrent_execution: Let a trigger overlap with itself
        """
        self.store = store
        self.history = history
        self.registry = registry
        self.backend = backend or ThreadSchedulerBackend()
        self.clock = clock or SystemClock()
        self.tz = store.tz
        self.max_workers = max_workers
        self.misfire_threshold = timedelta(seconds=misfire_threshold_seconds)
        self.max_idle_seconds = max_idle_seconds
        self.allow_concurrent_execution = allow_concurrent_execution

        self._lock = threading.RLock()
        self._heap: list[tuple[datetime, int, TriggerKey]] = []
        self._entries: dict[TriggerKey, _WakeEntry] = {}
        self._generation = 0
        self._running_counts: dict[TriggerKey, int] = {}
        self._futures: set[Future] = set()
        self._pool = self._new_pool()
        self._pool_closed = False
        self._stats = SchedulerStats()
        self._running = False

    def _new_pool(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="cronspine-job")

    # === Lifecycle ===

    def start(self) -> None:
        """Arm every active trigger from the store and start ticking."""
        if self._running:
            logger.warning("scheduler.already_running")
            return

        with self._lock:
            if self._pool_closed:
                self._pool = self._new_pool()
                self._pool_closed = False
            active = self.store.load_active()
            for trigger, job in active:
                self._arm(trigger, job)

        self.backend.start(self.tick, self.max_idle_seconds)
        self._running = True
        logger.info(
            "scheduler.started",
            backend=self.backend.name,
            armed=len(active),
            max_workers=self.max_workers,
        )

    def stop(self, grace_seconds: float = 30.0) -> None:
        """Stop ticking, wait up to ``grace_seconds`` for in-flight firings, shut the pool."""
        if self._running:
            self.backend.stop()
            self._running = False

        drained = self.wait_idle(timeout=grace_seconds)
        if not drained:
            logger.warning("scheduler.shutdown_timeout", in_flight=self.in_flight)
        self._pool.shutdown(wait=False, cancel_futures=True)
        self._pool_closed = True
        logger.info("scheduler.stopped", drained=drained)

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until every dispatched firing (and its history write) is done."""
        with self._lock:
            pending = list(self._futures)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    @property
    def is_running(self) -> bool:
        return self._running

    # === Arming (called by the Trigger Store) ===

    def schedule_trigger(self, trigger: Trigger, job: JobDefinition) -> None:
        """Insert or replace the live wake entry for ``trigger``."""
        if trigger.state != TriggerState.NORMAL or trigger.next_fire_time is None:
            self.unschedule_trigger(trigger.key)
            return
        with self._lock:
            self._arm(trigger, job)
        if self._running:
            self.backend.wake()

    def unschedule_trigger(self, key: TriggerKey) -> bool:
        """Drop the live wake entry; an in-flight execution is not affected."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def _arm(self, trigger: Trigger, job: JobDefinition) -> None:
        self._generation += 1
        entry = _WakeEntry(trigger=trigger, job=job, generation=self._generation)
        self._entries[trigger.key] = entry
        heapq.heappush(self._heap, (trigger.next_fire_time, entry.generation, trigger.key))

    def get_armed(self, key: TriggerKey) -> Trigger | None:
        """The trigger snapshot currently armed under ``key``, if any."""
        with self._lock:
            entry = self._entries.get(key)
            return entry.trigger if entry else None

    # === Tick processing ===

    def tick(self, now: datetime | None = None) -> float:
        """Fire every due trigger; return seconds until the next tick is needed."""
        now = ensure_utc(now) if now else self.clock.now()
        with self._lock:
            self._stats.tick_count += 1
            self._stats.last_tick = now

            for entry in self._acquire_due(now):
                try:
                    self._fire(entry, now)
                except Exception as e:
                    self._stats.last_error = str(e)
                    logger.exception(
                        "scheduler.fire_failed",
                        trigger=str(entry.trigger.key),
                        error=str(e),
                    )
                    self._retry_later(entry, now)

            return self._seconds_until_next(now)

    def _acquire_due(self, now: datetime) -> list[_WakeEntry]:
        due: list[_WakeEntry] = []
        while self._heap and self._heap[0][0] <= now:
            _, generation, key = heapq.heappop(self._heap)
            entry = self._entries.get(key)
            if entry is None or entry.generation != generation or entry.acquired:
                continue
            if entry.trigger.state != TriggerState.NORMAL:
                continue
            entry.acquired = True
            due.append(entry)
        return due

    def _fire(self, entry: _WakeEntry, now: datetime) -> None:
        trigger, job = entry.trigger, entry.job
        cron = parse_cron(trigger.cron_expression, self.tz)
        due = trigger.next_fire_time
        fire_at, basis = due, due

        if now - due > self.misfire_threshold:
            latest = cron.previous_fire_before(now + _EPSILON)
            if latest and trigger.end_time and latest > trigger.end_time:
                latest = cron.previous_fire_before(trigger.end_time + _EPSILON)
            fire_at = max(latest or due, due)
            basis = now
            self._stats.misfired += 1
            logger.warning(
                "scheduler.misfire",
                trigger=str(trigger.key),
                due=to_iso8601(due),
                fire_time=to_iso8601(fire_at),
                late_seconds=(now - due).total_seconds(),
            )

        next_fire = cron.next_fire_after(basis)
        if next_fire and trigger.end_time and next_fire > trigger.end_time:
            next_fire = None
        state = TriggerState.NORMAL if next_fire else TriggerState.COMPLETE

        if not self.store.record_fire(trigger, fire_at, next_fire, state):
            # Replaced or deleted since it was armed.
            self._drop(entry)
            self._stats.discarded += 1
            logger.info("scheduler.fire_discarded", trigger=str(trigger.key))
            return

        updated = replace(
            trigger, previous_fire_time=fire_at, next_fire_time=next_fire, state=state
        )
        if state == TriggerState.NORMAL:
            self._arm(updated, job)
        else:
            self._drop(entry)
            logger.info("scheduler.trigger_completed", trigger=str(trigger.key))

        self._dispatch(updated, job, fire_at)

    def _drop(self, entry: _WakeEntry) -> None:
        current = self._entries.get(entry.trigger.key)
        if current is not None and current.generation == entry.generation:
            del self._entries[entry.trigger.key]

    def _retry_later(self, entry: _WakeEntry, now: datetime) -> None:
        current = self._entries.get(entry.trigger.key)
        if current is not entry:
            return
        entry.acquired = False
        heapq.heappush(self._heap, (now + _RETRY_DELAY, entry.generation, entry.trigger.key))

    def _seconds_until_next(self, now: datetime) -> float:
        while self._heap:
            due, generation, key = self._heap[0]
            entry = self._entries.get(key)
            if entry is not None and entry.generation == generation:
                return min(max((due - now).total_seconds(), 0.0), self.max_idle_seconds)
            heapq.heappop(self._heap)
        return self.max_idle_seconds

    # === Dispatch ===

    def _dispatch(self, trigger: Trigger, job: JobDefinition, fire_at: datetime) -> None:
        key = trigger.key
        if not self.allow_concurrent_execution and self._running_counts.get(key, 0) > 0:
            self._veto(trigger, fire_at, "previous execution still running")
            return

        self._running_counts[key] = self._running_counts.get(key, 0) + 1
        try:
            future = self._pool.submit(self._execute, trigger, job, fire_at)
        except RuntimeError as e:
            self._release(key)
            self._veto(trigger, fire_at, f"worker pool rejected the job ({e})")
            return

        self._futures.add(future)
        future.add_done_callback(self._forget)
        self._stats.fired += 1
        logger.info("scheduler.fired", trigger=str(key), fire_time=to_iso8601(fire_at))

    def _veto(self, trigger: Trigger, fire_at: datetime, reason: str) -> None:
        self._stats.vetoed += 1
        logger.warning("scheduler.vetoed", trigger=str(trigger.key), reason=reason)
        self.history.record(
            trigger,
            fire_at,
            FireOutcome(ExecutionStatus.VETOED, f"{VETO_MESSAGE}: {reason}"),
        )

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._futures.discard(future)

    def _release(self, key: TriggerKey) -> None:
        remaining = self._running_counts.get(key, 0) - 1
        if remaining > 0:
            self._running_counts[key] = remaining
        else:
            self._running_counts.pop(key, None)

    def _execute(self, trigger: Trigger, job: JobDefinition, fire_at: datetime) -> None:
        """Worker body: run the job, then hand the outcome to the History Recorder."""
        started = time.perf_counter()
        succeeded = False
        with LogContext(job=str(trigger.job_key), fire_time=to_iso8601(fire_at)):
            try:
                try:
                    executor = self.registry.get(job.job_type)
                    result = executor.execute(dict(job.job_data))
                except Exception as e:
                    logger.exception("scheduler.job_raised", error=str(e))
                    result = JobResult.failure(str(e) or e.__class__.__name__)
                runtime = timedelta(seconds=time.perf_counter() - started)

                if result.aborted:
                    logger.warning("scheduler.fire_aborted", message=result.message)
                    with self._lock:
                        self._stats.aborted += 1
                    return

                succeeded = result.succeeded
                if succeeded:
                    outcome = FireOutcome(
                        ExecutionStatus.SUCCESS, result.message or SUCCESS_MESSAGE, runtime
                    )
                else:
                    outcome = FireOutcome(ExecutionStatus.FAILURE, result.message, runtime)
                self.history.record(trigger, fire_at, outcome)
                logger.info(
                    "scheduler.completed",
                    status=outcome.status.value,
                    duration_ms=int(runtime / timedelta(milliseconds=1)),
                )
                with self._lock:
                    if succeeded:
                        self._stats.succeeded += 1
                    else:
                        self._stats.failed += 1
            finally:
                with self._lock:
                    self._release(trigger.key)

    # === Health & Stats ===

    @property
    def in_flight(self) -> int:
        with self._lock:
            return sum(self._running_counts.values())

    def health(self) -> SchedulerHealth:
        backend_health = self.backend.health()
        with self._lock:
            return SchedulerHealth(
                healthy=self._running and bool(backend_health.get("healthy", False)),
                backend=backend_health,
                armed_triggers=len(self._entries),
                in_flight=sum(self._running_counts.values()),
                last_tick=self._stats.last_tick,
                stats=replace(self._stats),
            )

    def get_stats(self) -> SchedulerStats:
        return self._stats

    def reset_stats(self) -> None:
        self._stats = SchedulerStats()


__all__ = [
    "SchedulerHealth",
    "SchedulerService",
    "SchedulerStats",
    "VETO_MESSAGE",
]
