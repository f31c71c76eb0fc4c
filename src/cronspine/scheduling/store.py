"""Trigger Store: durable job definitions and their cron triggers.

Each job owns exactly one trigger named ``<job>_trigger`` in the job's group.
The store is the only writer of ``cs_jobs`` and ``cs_triggers``:

- ``upsert_job`` / ``delete_job`` / ``pause_job`` / ``resume_job`` are the
  administrative writes, serialized by the store lock and followed by a
  notification to the registered listeners (the scheduler) so the live
  wake entry always matches the committed row.
- ``record_fire`` is the Scheduler Loop's write path. It is guarded by the
  row version, so a firing computed against a trigger that was replaced or
  deleted meanwhile is discarded instead of clobbering the new schedule.

Example:
    >>> store = TriggerStore(conn, registry)
    >>> trigger = store.upsert_job(JobSpec(
    ...     job_name="ping",
    ...     job_group="grp1",
    ...     cron_expression="0 */5 * * * ?",
    ...     job_data={"url": "https://example.org/ping", "method": "GET"},
    ... ))
    >>> [view.job_name for view in store.list_triggers()]
    ['ping']
"""

from __future__ import annotations

import json
import sqlite3
import threading
from collections.abc import Iterator
from dataclasses import replace
from datetime import UTC, datetime, timedelta, tzinfo
from typing import Protocol

from cronspine.core.connection import Connection
from cronspine.core.cron import parse_cron
from cronspine.core.errors import PersistenceError, SchedulingError
from cronspine.core.logging import get_logger
from cronspine.core.models import (
    JobDefinition,
    JobKey,
    JobSpec,
    Trigger,
    TriggerKey,
    TriggerState,
    TriggerView,
)
from cronspine.core.timestamps import ensure_utc, format_display, from_iso8601, to_iso8601
from cronspine.execution.registry import ExecutorRegistry

from .protocol import Clock, SystemClock

logger = get_logger(__name__)

NEVER = "Never"
COMPLETED = "Completed"

# A start instant is inclusive: evaluate from just before it.
_START_EPSILON = timedelta(microseconds=1)


class TriggerListener(Protocol):
    """Receives committed trigger changes (implemented by ``SchedulerService``)."""

    def schedule_trigger(self, trigger: Trigger, job: JobDefinition) -> None: ...

    def unschedule_trigger(self, key: TriggerKey) -> None: ...


class TriggerViews:
    """Lazy, restartable listing: every iteration runs a fresh query."""

    def __init__(self, store: TriggerStore) -> None:
        self._store = store

    def __iter__(self) -> Iterator[TriggerView]:
        return self._store._iter_views()


class TriggerStore:
    """Durable job + trigger definitions."""

    def __init__(
        self,
        conn: Connection,
        registry: ExecutorRegistry,
        *,
        clock: Clock | None = None,
        tz: tzinfo = UTC,
    ) -> None:
        """Initialize the store.

        Args:
            conn: Database connection (tables already created)
            registry: Executors, used to reject unknown job types at upsert
            clock: Source of "now" (default: system clock)
            tz: Zone in which cron expressions are evaluated and times displayed
        """
        self.conn = conn
        self.registry = registry
        self.clock = clock or SystemClock()
        self.tz = tz
        self._lock = threading.RLock()
        self._listeners: list[TriggerListener] = []

    def add_listener(self, listener: TriggerListener) -> None:
        self._listeners.append(listener)

    # === Administrative writes ===

    def upsert_job(self, spec: JobSpec) -> Trigger:
        """Create or fully replace a job and its trigger.

        Returns:
            The committed trigger (``COMPLETE`` if it can never fire)

        Raises:
            SchedulingError: Invalid name, cron expression, job type or window;
                nothing is written
            PersistenceError: The transaction failed and was rolled back
        """
        if not spec.job_name or not spec.job_group:
            raise SchedulingError("Job name and group are required")
        cron = parse_cron(spec.cron_expression, self.tz)
        self.registry.get(spec.job_type)

        start_time = ensure_utc(spec.start_time) if spec.start_time else None
        end_time = ensure_utc(spec.end_time) if spec.end_time else None
        if start_time and end_time and end_time < start_time:
            raise SchedulingError("End time cannot be before start time").with_context(
                job_group=spec.job_group, job_name=spec.job_name
            )

        job = JobDefinition(
            key=spec.job_key,
            description=spec.description or "",
            job_type=spec.job_type,
            job_data=dict(spec.job_data or {}),
        )
        trigger_key = TriggerKey.for_job(job.key)

        with self._lock:
            now = self.clock.now()
            basis = now
            if start_time and start_time - _START_EPSILON > now:
                basis = start_time - _START_EPSILON
            next_fire = None
            if end_time is None or end_time >= now:
                next_fire = cron.next_fire_after(basis)
            if next_fire and end_time and next_fire > end_time:
                next_fire = None
            state = TriggerState.NORMAL if next_fire else TriggerState.COMPLETE

            existing = self.get_trigger(trigger_key.group, trigger_key.name)
            if existing is not None and existing.job_key != job.key:
                raise SchedulingError(
                    f"Trigger {trigger_key} already belongs to job {existing.job_key}"
                )
            trigger = Trigger(
                key=trigger_key,
                job_key=job.key,
                cron_expression=spec.cron_expression,
                start_time=start_time,
                end_time=end_time,
                state=state,
                next_fire_time=next_fire,
                version=existing.version + 1 if existing else 1,
            )
            self._write(job, trigger, now)
            self._notify(trigger, job)

        logger.info(
            "store.job_upserted",
            job=str(job.key),
            cron=spec.cron_expression,
            state=state.value,
            next_fire_time=to_iso8601(next_fire),
            replaced=existing is not None,
        )
        return trigger

    def _write(self, job: JobDefinition, trigger: Trigger, now: datetime) -> None:
        stamp = to_iso8601(now)
        try:
            with self.conn.transaction():
                self.conn.execute(
                    """
                    INSERT INTO cs_jobs (
                        job_group, job_name, description, job_type, job_data,
                        durable, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT (job_group, job_name) DO UPDATE SET
                        description = excluded.description,
                        job_type = excluded.job_type,
                        job_data = excluded.job_data,
                        durable = excluded.durable,
                        updated_at = excluded.updated_at
                    """,
                    (
                        job.key.group,
                        job.key.name,
                        job.description,
                        job.job_type,
                        json.dumps(job.job_data, sort_keys=True),
                        1 if job.durable else 0,
                        stamp,
                        stamp,
                    ),
                )
                self.conn.execute(
                    """
                    INSERT INTO cs_triggers (
                        trigger_group, trigger_name, job_group, job_name,
                        cron_expression, start_time, end_time, state,
                        previous_fire_time, next_fire_time, version, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT (trigger_group, trigger_name) DO UPDATE SET
                        cron_expression = excluded.cron_expression,
                        start_time = excluded.start_time,
                        end_time = excluded.end_time,
                        state = excluded.state,
                        previous_fire_time = excluded.previous_fire_time,
                        next_fire_time = excluded.next_fire_time,
                        version = excluded.version,
                        updated_at = excluded.updated_at
                    """,
                    (
                        trigger.key.group,
                        trigger.key.name,
                        trigger.job_key.group,
                        trigger.job_key.name,
                        trigger.cron_expression,
                        to_iso8601(trigger.start_time),
                        to_iso8601(trigger.end_time),
                        trigger.state.value,
                        to_iso8601(trigger.previous_fire_time),
                        to_iso8601(trigger.next_fire_time),
                        trigger.version,
                        stamp,
                    ),
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to store job {job.key}: {e}", cause=e).with_context(
                job_group=job.key.group, job_name=job.key.name
            ) from e

    def delete_job(self, job_group: str, job_name: str) -> bool:
        """Delete a job and (by cascade) its trigger.

        Idempotent: returns False when there was nothing to delete. An
        execution already in flight is not cancelled.
        """
        key = JobKey(job_name, job_group)
        with self._lock:
            try:
                cursor = self.conn.execute(
                    "DELETE FROM cs_jobs WHERE job_group = ? AND job_name = ?",
                    (job_group, job_name),
                )
            except sqlite3.Error as e:
                raise PersistenceError(f"Failed to delete job {key}: {e}", cause=e) from e
            deleted = cursor.rowcount > 0
            for listener in self._listeners:
                listener.unschedule_trigger(TriggerKey.for_job(key))

        logger.info("store.job_deleted", job=str(key), existed=deleted)
        return deleted

    def pause_job(self, job_group: str, job_name: str) -> bool:
        """Move a ``NORMAL`` trigger to ``PAUSED``; it keeps its row but never fires."""
        with self._lock:
            trigger = self._trigger_for_job(job_group, job_name)
            if trigger is None or trigger.state != TriggerState.NORMAL:
                return False
            self._set_state(trigger, TriggerState.PAUSED, trigger.next_fire_time)
            for listener in self._listeners:
                listener.unschedule_trigger(trigger.key)

        logger.info("store.job_paused", job=f"{job_group}.{job_name}")
        return True

    def resume_job(self, job_group: str, job_name: str) -> bool:
        """Re-arm a ``PAUSED`` trigger; the next fire is computed from now."""
        with self._lock:
            trigger = self._trigger_for_job(job_group, job_name)
            if trigger is None or trigger.state != TriggerState.PAUSED:
                return False
            cron = parse_cron(trigger.cron_expression, self.tz)
            now = self.clock.now()
            basis = now
            if trigger.start_time and trigger.start_time - _START_EPSILON > now:
                basis = trigger.start_time - _START_EPSILON
            next_fire = cron.next_fire_after(basis)
            if next_fire and trigger.end_time and next_fire > trigger.end_time:
                next_fire = None
            state = TriggerState.NORMAL if next_fire else TriggerState.COMPLETE
            updated = self._set_state(trigger, state, next_fire)
            if state == TriggerState.NORMAL:
                job = self.get_job(job_group, job_name)
                if job is not None:
                    self._notify(updated, job)

        logger.info("store.job_resumed", job=f"{job_group}.{job_name}", state=state.value)
        return True

    def _set_state(
        self, trigger: Trigger, state: TriggerState, next_fire: datetime | None
    ) -> Trigger:
        version = trigger.version + 1
        try:
            self.conn.execute(
                """
                UPDATE cs_triggers
                SET state = ?, next_fire_time = ?, version = ?, updated_at = ?
                WHERE trigger_group = ? AND trigger_name = ?
                """,
                (
                    state.value,
                    to_iso8601(next_fire),
                    version,
                    to_iso8601(self.clock.now()),
                    trigger.key.group,
                    trigger.key.name,
                ),
            )
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to update trigger {trigger.key}: {e}", cause=e) from e
        return replace(trigger, state=state, next_fire_time=next_fire, version=version)

    def _notify(self, trigger: Trigger, job: JobDefinition) -> None:
        for listener in self._listeners:
            if trigger.state == TriggerState.NORMAL:
                listener.schedule_trigger(trigger, job)
            else:
                listener.unschedule_trigger(trigger.key)

    # === Scheduler write path ===

    def record_fire(
        self,
        trigger: Trigger,
        previous_fire: datetime,
        next_fire: datetime | None,
        state: TriggerState,
    ) -> bool:
        """Persist the outcome of acquiring ``trigger`` for a firing.

        Returns:
            False if the row no longer carries ``trigger.version`` (replaced
            or deleted since it was armed); nothing is written then.
        """
        try:
            cursor = self.conn.execute(
                """
                UPDATE cs_triggers
                SET previous_fire_time = ?, next_fire_time = ?, state = ?, updated_at = ?
                WHERE trigger_group = ? AND trigger_name = ? AND version = ?
                """,
                (
                    to_iso8601(previous_fire),
                    to_iso8601(next_fire),
                    state.value,
                    to_iso8601(self.clock.now()),
                    trigger.key.group,
                    trigger.key.name,
                    trigger.version,
                ),
            )
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to record fire of {trigger.key}: {e}", cause=e) from e
        return cursor.rowcount > 0

    # === Reads ===

    def get_job(self, job_group: str, job_name: str) -> JobDefinition | None:
        row = self.conn.query_one(
            "SELECT * FROM cs_jobs WHERE job_group = ? AND job_name = ?",
            (job_group, job_name),
        )
        return self._row_to_job(row) if row else None

    def get_trigger(self, trigger_group: str, trigger_name: str) -> Trigger | None:
        row = self.conn.query_one(
            "SELECT * FROM cs_triggers WHERE trigger_group = ? AND trigger_name = ?",
            (trigger_group, trigger_name),
        )
        return self._row_to_trigger(row) if row else None

    def _trigger_for_job(self, job_group: str, job_name: str) -> Trigger | None:
        row = self.conn.query_one(
            "SELECT * FROM cs_triggers WHERE job_group = ? AND job_name = ?",
            (job_group, job_name),
        )
        return self._row_to_trigger(row) if row else None

    def list_triggers(self) -> TriggerViews:
        """All triggers joined with their jobs, ordered by group then job name."""
        return TriggerViews(self)

    def _iter_views(self) -> Iterator[TriggerView]:
        rows = self.conn.query(
            """
            SELECT t.*, j.description, j.job_data
            FROM cs_triggers t
            JOIN cs_jobs j ON j.job_group = t.job_group AND j.job_name = t.job_name
            ORDER BY t.job_group, t.job_name
            """
        )
        for row in rows:
            yield TriggerView(
                job_name=row["job_name"],
                job_group=row["job_group"],
                trigger_name=row["trigger_name"],
                trigger_group=row["trigger_group"],
                description=row["description"],
                cron_expression=row["cron_expression"],
                last_execution_time=format_display(
                    from_iso8601(row["previous_fire_time"]), self.tz, NEVER
                ),
                next_execution_time=format_display(
                    from_iso8601(row["next_fire_time"]), self.tz, COMPLETED
                ),
                job_data=json.loads(row["job_data"]),
                state=row["state"],
            )

    def list_job_groups(self) -> set[str]:
        rows = self.conn.query("SELECT DISTINCT job_group FROM cs_jobs")
        return {row["job_group"] for row in rows}

    def load_active(self) -> list[tuple[Trigger, JobDefinition]]:
        """``NORMAL`` triggers with a next fire instant, for arming at start-up."""
        rows = self.conn.query(
            """
            SELECT t.*, j.description, j.job_type, j.job_data, j.durable
            FROM cs_triggers t
            JOIN cs_jobs j ON j.job_group = t.job_group AND j.job_name = t.job_name
            WHERE t.state = ? AND t.next_fire_time IS NOT NULL
            ORDER BY t.next_fire_time
            """,
            (TriggerState.NORMAL.value,),
        )
        return [(self._row_to_trigger(row), self._row_to_job(row)) for row in rows]

    # === Row mapping ===

    @staticmethod
    def _row_to_job(row) -> JobDefinition:
        return JobDefinition(
            key=JobKey(row["job_name"], row["job_group"]),
            description=row["description"],
            job_type=row["job_type"],
            job_data=json.loads(row["job_data"]),
            durable=bool(row["durable"]),
        )

    @staticmethod
    def _row_to_trigger(row) -> Trigger:
        return Trigger(
            key=TriggerKey(row["trigger_name"], row["trigger_group"]),
            job_key=JobKey(row["job_name"], row["job_group"]),
            cron_expression=row["cron_expression"],
            start_time=from_iso8601(row["start_time"]),
            end_time=from_iso8601(row["end_time"]),
            state=TriggerState(row["state"]),
            previous_fire_time=from_iso8601(row["previous_fire_time"]),
            next_fire_time=from_iso8601(row["next_fire_time"]),
            version=row["version"],
        )
