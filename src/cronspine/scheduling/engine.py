"""The scheduler engine: one explicit instance per process.

``create_scheduler()`` wires the connection, schema, executor registry,
Trigger Store, History Recorder, Scheduler Service and Retention Cleaner
together. The transport layers receive the engine by dependency injection;
nothing here is module-level state.
"""

from __future__ import annotations

from datetime import tzinfo

from cronspine.core.connection import SqliteConnection, create_connection
from cronspine.core.logging import get_logger
from cronspine.core.models import ExecutionLogEntry, JobSpec, Trigger, TriggerKey
from cronspine.core.settings import CronSpineSettings, get_settings
from cronspine.core.timestamps import resolve_timezone
from cronspine.execution.http_job import HttpJobExecutor
from cronspine.execution.protocol import JobExecutor
from cronspine.execution.registry import ExecutorRegistry

from .history import ExecutionLogRepository, HistoryRecorder
from .protocol import Clock, SchedulerBackend, SystemClock
from .retention import PurgeResult, RetentionCleaner
from .service import SchedulerHealth, SchedulerService
from .store import TriggerStore, TriggerViews

logger = get_logger(__name__)


class SchedulerEngine:
    """Facade over the wired components, with an explicit lifecycle.

    Example:
        >>> with create_scheduler(settings) as engine:
        ...     engine.upsert_job(JobSpec("ping", "grp1", "0 */5 * * * ?",
        ...                               job_data={"url": "https://example.org", "method": "GET"}))
        ...     engine.history("grp1", "ping")
    """

    def __init__(
        self,
        settings: CronSpineSettings,
        conn: SqliteConnection,
        registry: ExecutorRegistry,
        store: TriggerStore,
        history: HistoryRecorder,
        service: SchedulerService,
        cleaner: RetentionCleaner,
        *,
        owns_connection: bool = False,
    ) -> None:
        self.settings = settings
        self.conn = conn
        self.registry = registry
        self.store = store
        self.history_recorder = history
        self.service = service
        self.cleaner = cleaner
        self._owns_connection = owns_connection
        self._started = False

    @property
    def tz(self) -> tzinfo:
        return self.store.tz

    # === Lifecycle ===

    def start(self) -> None:
        if self._started:
            return
        self.service.start()
        self.cleaner.start()
        self._started = True
        logger.info("engine.started", database=self.conn.path, tz=str(self.tz))

    def stop(self, grace_seconds: float | None = None) -> None:
        """Stop the timing authority and the cleaner, draining in-flight firings."""
        if grace_seconds is None:
            grace_seconds = self.settings.shutdown_grace_seconds
        self.cleaner.stop()
        self.service.stop(grace_seconds=grace_seconds)
        self._started = False
        logger.info("engine.stopped")

    def close(self) -> None:
        """Stop, release the worker pool and executors and, if owned, the connection."""
        self.stop()
        for job_type in self.registry:
            executor = self.registry.get(job_type)
            close = getattr(executor, "close", None)
            if close is not None:
                close()
        if self._owns_connection:
            self.conn.close()

    @property
    def is_running(self) -> bool:
        return self._started

    def __enter__(self) -> SchedulerEngine:
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # === Operations ===

    def upsert_job(self, spec: JobSpec) -> Trigger:
        return self.store.upsert_job(spec)

    def delete_job(self, job_group: str, job_name: str) -> bool:
        return self.store.delete_job(job_group, job_name)

    def pause_job(self, job_group: str, job_name: str) -> bool:
        return self.store.pause_job(job_group, job_name)

    def resume_job(self, job_group: str, job_name: str) -> bool:
        return self.store.resume_job(job_group, job_name)

    def list_triggers(self) -> TriggerViews:
        return self.store.list_triggers()

    def list_job_groups(self) -> set[str]:
        return self.store.list_job_groups()

    def history(self, job_group: str, job_name: str, limit: int | None = None) -> list[ExecutionLogEntry]:
        return self.history_recorder.history(job_group, job_name, limit)

    def purge(self) -> PurgeResult | None:
        """Run one retention pass now."""
        return self.cleaner.run_once()

    def armed_trigger(self, job_group: str, job_name: str) -> Trigger | None:
        return self.service.get_armed(TriggerKey(f"{job_name}_trigger", job_group))

    def health(self) -> SchedulerHealth:
        return self.service.health()


def create_scheduler(
    settings: CronSpineSettings | None = None,
    conn: SqliteConnection | None = None,
    clock: Clock | None = None,
    *,
    executors: list[JobExecutor] | None = None,
    backend: SchedulerBackend | None = None,
) -> SchedulerEngine:
    """Factory function to create a fully wired engine.

    Args:
        settings: Settings (default: ``get_settings()``)
        conn: Existing connection; opened from settings (and owned) when omitted
        clock: Source of "now" (default: system clock)
        executors: Extra executors; one with job type ``http`` replaces the built-in HTTP job
        backend: Timing backend (default: ``ThreadSchedulerBackend``)

    Returns:
        A stopped ``SchedulerEngine``; call ``start()`` or use it as a context manager
    """
    settings = settings or get_settings()
    clock = clock or SystemClock()
    owns_connection = conn is None
    if conn is None:
        conn = create_connection(settings.resolved_database_path())
    else:
        from cronspine.core.schema import create_tables

        create_tables(conn)

    tz = resolve_timezone(settings.timezone)

    extra = list(executors or [])
    registry = ExecutorRegistry()
    if all(executor.job_type != HttpJobExecutor.job_type for executor in extra):
        registry.register(
            HttpJobExecutor(
                connect_timeout=settings.http_connect_timeout,
                call_timeout=settings.http_call_timeout,
                status_failure=settings.http_status_failure,
            )
        )
    for executor in extra:
        registry.register(executor)

    store = TriggerStore(conn, registry, clock=clock, tz=tz)
    history = HistoryRecorder(ExecutionLogRepository(conn), history_limit=settings.history_limit)
    service = SchedulerService(
        store,
        history,
        registry,
        backend,
        clock=clock,
        max_workers=settings.max_workers,
        misfire_threshold_seconds=settings.misfire_threshold_seconds,
        max_idle_seconds=settings.max_idle_seconds,
        allow_concurrent_execution=settings.allow_concurrent_execution,
    )
    store.add_listener(service)
    cleaner = RetentionCleaner(
        conn,
        retention_days=settings.retention_days,
        schedule=settings.retention_schedule,
        clock=clock,
        tz=tz,
    )

    return SchedulerEngine(
        settings,
        conn,
        registry,
        store,
        history,
        service,
        cleaner,
        owns_connection=owns_connection,
    )
