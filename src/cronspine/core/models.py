"""Scheduler data model (``cs_jobs``, ``cs_triggers``, ``cs_execution_logs``).

Typed dataclass representations of the persisted rows plus the input and
listing shapes the store and transport layers exchange.

Tags:
    cron-spine, models, scheduling, dataclasses, schema-mapping
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from cronspine.core.timestamps import to_iso8601


class TriggerState(str, Enum):
    """Trigger lifecycle states.

    ``NORMAL`` is armed, ``PAUSED`` is retained but never dispatched,
    ``COMPLETE`` is terminal (no further fire instants).
    """

    NORMAL = "NORMAL"
    PAUSED = "PAUSED"
    COMPLETE = "COMPLETE"


class ExecutionStatus(str, Enum):
    """Outcome of one firing attempt."""

    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    VETOED = "VETOED"


@dataclass(frozen=True)
class JobKey:
    """Unique ``(name, group)`` identity of a job."""

    name: str
    group: str

    def __str__(self) -> str:
        return f"{self.group}.{self.name}"


@dataclass(frozen=True)
class TriggerKey:
    """Unique ``(name, group)`` identity of a trigger."""

    name: str
    group: str

    @classmethod
    def for_job(cls, job_key: JobKey) -> TriggerKey:
        """Conventional trigger key of a job: ``<job>_trigger`` in the job's group."""
        return cls(name=f"{job_key.name}_trigger", group=job_key.group)

    def __str__(self) -> str:
        return f"{self.group}.{self.name}"


# ---------------------------------------------------------------------------
# cs_jobs
# ---------------------------------------------------------------------------


@dataclass
class JobDefinition:
    """Job definition row (``cs_jobs``)."""

    key: JobKey
    description: str = ""
    job_type: str = "http"
    job_data: dict[str, str] = field(default_factory=dict)
    durable: bool = True


# ---------------------------------------------------------------------------
# cs_triggers
# ---------------------------------------------------------------------------


@dataclass
class Trigger:
    """Cron trigger row (``cs_triggers``)."""

    key: TriggerKey
    job_key: JobKey
    cron_expression: str
    start_time: datetime | None = None
    end_time: datetime | None = None
    state: TriggerState = TriggerState.NORMAL
    previous_fire_time: datetime | None = None
    next_fire_time: datetime | None = None
    version: int = 1


# ---------------------------------------------------------------------------
# cs_execution_logs
# ---------------------------------------------------------------------------


@dataclass
class ExecutionLogEntry:
    """Execution history row (``cs_execution_logs``)."""

    job_name: str
    job_group: str
    trigger_name: str
    trigger_group: str
    fire_time: datetime
    end_time: datetime
    duration_ms: int
    status: ExecutionStatus
    message: str | None = None
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """History item as exposed by the transport layer."""
        return {
            "id": self.id,
            "fireTime": to_iso8601(self.fire_time),
            "endTime": to_iso8601(self.end_time),
            "durationMs": self.duration_ms,
            "status": self.status.value,
            "message": self.message,
        }


# ---------------------------------------------------------------------------
# Inputs / views
# ---------------------------------------------------------------------------


@dataclass
class JobSpec:
    """Create-or-replace request for a job and its cron trigger."""

    job_name: str
    job_group: str
    cron_expression: str
    description: str = ""
    job_data: dict[str, str] | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    job_type: str = "http"

    @property
    def job_key(self) -> JobKey:
        return JobKey(self.job_name, self.job_group)


@dataclass
class TriggerView:
    """A trigger joined with its job, with human-readable schedule fields."""

    job_name: str
    job_group: str
    trigger_name: str
    trigger_group: str
    description: str
    cron_expression: str
    last_execution_time: str
    next_execution_time: str
    job_data: dict[str, str]
    state: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "jobName": self.job_name,
            "jobGroup": self.job_group,
            "triggerName": self.trigger_name,
            "triggerGroup": self.trigger_group,
            "description": self.description,
            "cronExpression": self.cron_expression,
            "lastExecutionTime": self.last_execution_time,
            "nextExecutionTime": self.next_execution_time,
            "jobDataMap": dict(self.job_data),
            "state": self.state,
        }


@dataclass
class FireOutcome:
    """What the History Recorder needs to know about one firing."""

    status: ExecutionStatus
    message: str | None
    runtime: timedelta = timedelta(0)
