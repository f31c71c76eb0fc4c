"""Scheduling engine for cron-spine.

┌──────────────────────────────────────────────────────────────────────────────┐
│  CRON-SPINE SCHEDULER                                                        │
│                                                                              │
│   TriggerStore ──► SchedulerService ──► worker pool ──► JobExecutor          │
│   (cs_jobs,          (heap + RLock,                         │                │
│    cs_triggers)       ThreadSchedulerBackend)               ▼                │
│                                                      HistoryRecorder         │
│                                                      (cs_execution_logs)     │
│                                                             ▲                │
│                                           RetentionCleaner ─┘ (daily purge)  │
└──────────────────────────────────────────────────────────────────────────────┘

Quick start::

    from cronspine.scheduling import create_scheduler
    from cronspine.core.models import JobSpec

    with create_scheduler() as engine:
        engine.upsert_job(JobSpec(
            job_name="ping",
            job_group="grp1",
            cron_expression="0 */5 * * * ?",
            job_data={"url": "https://example.org/ping", "method": "GET"},
        ))
"""

from __future__ import annotations

from .engine import SchedulerEngine, create_scheduler
from .history import ExecutionLogRepository, HistoryRecorder, truncate_message
from .protocol import BackendHealth, Clock, SchedulerBackend, SystemClock
from .retention import PurgeResult, RetentionCleaner, purge_execution_logs
from .service import SchedulerHealth, SchedulerService, SchedulerStats
from .store import TriggerStore
from .thread_backend import ThreadSchedulerBackend

__all__ = [
    # Protocol
    "SchedulerBackend",
    "BackendHealth",
    "Clock",
    "SystemClock",
    # Backend
    "ThreadSchedulerBackend",
    # Store
    "TriggerStore",
    # History
    "ExecutionLogRepository",
    "HistoryRecorder",
    "truncate_message",
    # Retention
    "PurgeResult",
    "RetentionCleaner",
    "purge_execution_logs",
    # Service
    "SchedulerService",
    "SchedulerStats",
    "SchedulerHealth",
    # Engine
    "SchedulerEngine",
    "create_scheduler",
]
