"""Execution-log retention.

``purge_execution_logs`` deletes every ``cs_execution_logs`` row whose fire
time is strictly before ``now - retention_days`` in one DELETE statement.
``RetentionCleaner`` runs it on a daily cron (midnight by default) from its
own daemon thread, independent of the Scheduler Loop.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta, tzinfo

from cronspine.core.connection import Connection
from cronspine.core.cron import parse_cron
from cronspine.core.errors import PersistenceError
from cronspine.core.logging import get_logger
from cronspine.core.timestamps import to_iso8601

from .history import ExecutionLogRepository
from .protocol import Clock, SystemClock

logger = get_logger(__name__)

DEFAULT_RETENTION_DAYS = 10
DEFAULT_SCHEDULE = "0 0 0 * * ?"


@dataclass
class PurgeResult:
    """Result of a purge operation."""

    table: str
    deleted: int
    cutoff: str | None
    skipped: bool = False


def compute_cutoff(retention_days: int, now: datetime) -> datetime:
    """Instant before which log entries are eligible for purging.

    Parameters
    ----------
    retention_days
        Number of days to retain.
    now
        Reference instant.
    """
    return now - timedelta(days=retention_days)


def purge_execution_logs(
    conn: Connection,
    retention_days: int = DEFAULT_RETENTION_DAYS,
    now: datetime | None = None,
) -> PurgeResult:
    """Purge execution logs older than the retention period.

    Parameters
    ----------
    conn
        Database connection.
    retention_days
        Retention period in days. ``<= 0`` disables the purge.
    now
        Reference instant (default: current UTC time).

    Returns
    -------
    PurgeResult
        Deleted count and the cutoff used (``skipped`` when disabled).

    Raises
    ------
    PersistenceError
        If the DELETE fails.
    """
    if retention_days <= 0:
        logger.info("retention.disabled", retention_days=retention_days)
        return PurgeResult(table="cs_execution_logs", deleted=0, cutoff=None, skipped=True)

    cutoff = compute_cutoff(retention_days, now or datetime.now(UTC))
    deleted = ExecutionLogRepository(conn).delete_older_than(cutoff)

    logger.info("retention.purged", table="cs_execution_logs", deleted=deleted, cutoff=to_iso8601(cutoff))
    return PurgeResult(table="cs_execution_logs", deleted=deleted, cutoff=to_iso8601(cutoff))


class RetentionCleaner:
    """Daily purge on a background thread.

    Example:
        >>> cleaner = RetentionCleaner(conn, retention_days=10)
        >>> cleaner.start()
        >>> cleaner.run_once()      # also usable on demand
        PurgeResult(table='cs_execution_logs', deleted=0, ...)
        >>> cleaner.stop()
    """

    def __init__(
        self,
        conn: Connection,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        schedule: str = DEFAULT_SCHEDULE,
        *,
        clock: Clock | None = None,
        tz: tzinfo = UTC,
    ) -> None:
        self.conn = conn
        self.retention_days = retention_days
        self.schedule = parse_cron(schedule, tz)
        self.clock = clock or SystemClock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.last_result: PurgeResult | None = None

    def run_once(self, now: datetime | None = None) -> PurgeResult | None:
        """Run one purge cycle; failures are logged and yield None."""
        try:
            result = purge_execution_logs(
                self.conn, self.retention_days, now or self.clock.now()
            )
        except PersistenceError as e:
            logger.error("retention.failed", **e.to_dict())
            return None
        self.last_result = result
        return result

    def next_run_after(self, now: datetime) -> datetime | None:
        return self.schedule.next_fire_after(now)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            logger.warning("retention.already_started")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="cronspine-retention")
        self._thread.start()
        logger.info(
            "retention.started",
            retention_days=self.retention_days,
            schedule=str(self.schedule),
        )

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            now = self.clock.now()
            next_run = self.next_run_after(now)
            if next_run is None:
                logger.warning("retention.schedule_exhausted", schedule=str(self.schedule))
                return
            if self._stop_event.wait((next_run - now).total_seconds()):
                return
            try:
                self.run_once()
            except Exception as e:
                logger.exception("retention.cycle_failed", error=str(e))

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
