"""Execution history: one ``cs_execution_logs`` row per firing attempt.

``ExecutionLogRepository`` is the raw-SQL data layer; ``HistoryRecorder`` is
what the Scheduler Loop talks to. The recorder turns a ``FireOutcome`` into an
``ExecutionLogEntry`` and never lets a database problem escape into the loop.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta

from cronspine.core.connection import Connection
from cronspine.core.errors import PersistenceError
from cronspine.core.logging import get_logger
from cronspine.core.models import ExecutionLogEntry, ExecutionStatus, FireOutcome, Trigger
from cronspine.core.timestamps import from_iso8601, to_iso8601

logger = get_logger(__name__)

MAX_MESSAGE_LENGTH = 4000
ELLIPSIS = "..."
DEFAULT_HISTORY_LIMIT = 20


def truncate_message(message: str | None) -> str | None:
    """Cap ``message`` at 4000 characters, marking the cut with an ellipsis."""
    if message is None or len(message) <= MAX_MESSAGE_LENGTH:
        return message
    return message[:MAX_MESSAGE_LENGTH] + ELLIPSIS


class ExecutionLogRepository:
    """Data access for ``cs_execution_logs``.

    Every method wraps ``sqlite3.Error`` in ``PersistenceError``.
    """

    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    def insert(self, entry: ExecutionLogEntry) -> int:
        """Persist ``entry`` and return its assigned id."""
        try:
            cursor = self.conn.execute(
                """
                INSERT INTO cs_execution_logs (
                    job_group, job_name, trigger_group, trigger_name,
                    fire_time, end_time, duration_ms, status, message
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.job_group,
                    entry.job_name,
                    entry.trigger_group,
                    entry.trigger_name,
                    to_iso8601(entry.fire_time),
                    to_iso8601(entry.end_time),
                    entry.duration_ms,
                    entry.status.value,
                    entry.message,
                ),
            )
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to insert execution log: {e}", cause=e).with_context(
                job_group=entry.job_group, job_name=entry.job_name
            ) from e
        return cursor.lastrowid

    def list_for_job(
        self, job_group: str, job_name: str, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> list[ExecutionLogEntry]:
        """Most recent entries for a job, newest fire time first."""
        try:
            rows = self.conn.query(
                """
                SELECT * FROM cs_execution_logs
                WHERE job_group = ? AND job_name = ?
                ORDER BY fire_time DESC, id DESC
                LIMIT ?
                """,
                (job_group, job_name, limit),
            )
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to read execution logs: {e}", cause=e) from e
        return [self._row_to_entry(row) for row in rows]

    def delete_older_than(self, cutoff: datetime) -> int:
        """Delete every entry whose fire time is strictly before ``cutoff``."""
        try:
            cursor = self.conn.execute(
                "DELETE FROM cs_execution_logs WHERE fire_time < ?",
                (to_iso8601(cutoff),),
            )
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to purge execution logs: {e}", cause=e) from e
        return cursor.rowcount

    def count(self, job_group: str | None = None, job_name: str | None = None) -> int:
        sql = "SELECT COUNT(*) FROM cs_execution_logs"
        params: tuple = ()
        if job_group is not None and job_name is not None:
            sql += " WHERE job_group = ? AND job_name = ?"
            params = (job_group, job_name)
        try:
            row = self.conn.query_one(sql, params)
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to count execution logs: {e}", cause=e) from e
        return row[0] if row else 0

    @staticmethod
    def _row_to_entry(row) -> ExecutionLogEntry:
        return ExecutionLogEntry(
            id=row["id"],
            job_group=row["job_group"],
            job_name=row["job_name"],
            trigger_group=row["trigger_group"],
            trigger_name=row["trigger_name"],
            fire_time=from_iso8601(row["fire_time"]),
            end_time=from_iso8601(row["end_time"]),
            duration_ms=row["duration_ms"],
            status=ExecutionStatus(row["status"]),
            message=row["message"],
        )


class HistoryRecorder:
    """Writes the audit trail of firings.

    Example:
        >>> recorder = HistoryRecorder(ExecutionLogRepository(conn))
        >>> recorder.record(trigger, fired_at, FireOutcome(ExecutionStatus.SUCCESS, "pong"))
        ExecutionLogEntry(...)
        >>> recorder.history("grp1", "ping")
        [ExecutionLogEntry(...)]
    """

    def __init__(
        self,
        repository: ExecutionLogRepository,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self.repository = repository
        self.history_limit = history_limit

    def record(
        self, trigger: Trigger, fired_at: datetime, outcome: FireOutcome
    ) -> ExecutionLogEntry | None:
        """Persist one entry for a firing; returns None if the write failed.

        Failures are logged, never raised: a lost history row must not abort
        the scheduling cycle that produced it.
        """
        runtime = max(outcome.runtime, timedelta(0))
        entry = ExecutionLogEntry(
            job_name=trigger.job_key.name,
            job_group=trigger.job_key.group,
            trigger_name=trigger.key.name,
            trigger_group=trigger.key.group,
            fire_time=fired_at,
            end_time=fired_at + runtime,
            duration_ms=int(runtime / timedelta(milliseconds=1)),
            status=outcome.status,
            message=truncate_message(outcome.message),
        )
        try:
            entry.id = self.repository.insert(entry)
        except PersistenceError as e:
            logger.error("history.write_failed", **e.to_dict())
            return None

        logger.debug(
            "history.recorded",
            job=f"{entry.job_group}.{entry.job_name}",
            status=entry.status.value,
            duration_ms=entry.duration_ms,
        )
        return entry

    def history(
        self, job_group: str, job_name: str, limit: int | None = None
    ) -> list[ExecutionLogEntry]:
        """Most recent entries for a job (default cap: ``history_limit``)."""
        return self.repository.list_for_job(
            job_group, job_name, self.history_limit if limit is None else limit
        )
