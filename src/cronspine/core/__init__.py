"""Core primitives: errors, logging, settings, cron evaluation, data model, storage.

Everything here is synchronous and free of scheduling state, so the
scheduling, API and CLI layers can all build on it.
"""

from cronspine.core.cron import CronExpression, next_fire_after, previous_fire_before, validate_cron
from cronspine.core.errors import (
    ConfigurationError,
    CronSpineError,
    ErrorCategory,
    ErrorContext,
    ExecutionError,
    PersistenceError,
    SchedulingError,
)
from cronspine.core.models import (
    ExecutionLogEntry,
    ExecutionStatus,
    FireOutcome,
    JobDefinition,
    JobKey,
    JobSpec,
    Trigger,
    TriggerKey,
    TriggerState,
    TriggerView,
)

__all__ = [
    # Cron
    "CronExpression",
    "next_fire_after",
    "previous_fire_before",
    "validate_cron",
    # Errors
    "CronSpineError",
    "ErrorCategory",
    "ErrorContext",
    "SchedulingError",
    "ExecutionError",
    "ConfigurationError",
    "PersistenceError",
    # Models
    "ExecutionLogEntry",
    "ExecutionStatus",
    "FireOutcome",
    "JobDefinition",
    "JobKey",
    "JobSpec",
    "Trigger",
    "TriggerKey",
    "TriggerState",
    "TriggerView",
]
