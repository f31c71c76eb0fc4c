"""
Structured error types for cron-spine.

Every failure the engine can hit falls into one of four families, and each
family has a fixed propagation rule:

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                      CronSpineError                              │
        │  (category, retryable, context, cause)                           │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  SchedulingError     ExecutionError     ConfigurationError      │
        │  (SCHEDULING)        (EXECUTION)        (CONFIG)                │
        │  raised to caller    -> FAILURE entry   logged, no entry        │
        │                                                                  │
        │  PersistenceError                                               │
        │  (DATABASE)                                                     │
        │  logged + swallowed in history/retention, raised from store     │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = SchedulingError("Invalid cron expression: '* * *'")
    >>> error.category
    <ErrorCategory.SCHEDULING: 'SCHEDULING'>
    >>> error.retryable
    False

    >>> error = ExecutionError("Connection refused").with_context(
    ...     job_group="grp1", job_name="ping", url="http://localhost:9"
    ... )
    >>> error.context.url
    'http://localhost:9'

Guardrails:
    ❌ DON'T: Raise bare Exception from store or executor code
    ✅ DO: Use the family that matches the propagation rule

    ❌ DON'T: Swallow the original exception
    ✅ DO: Pass it as cause= for error chaining

Tags:
    error-handling, exception-hierarchy, error-context, cron-spine
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories used for classification in logs and API responses."""

    SCHEDULING = "SCHEDULING"     # Invalid cron, bad trigger window, unknown job type
    EXECUTION = "EXECUTION"       # Transport failure or timeout while running a job
    CONFIG = "CONFIG"             # Missing job data, invalid settings
    DATABASE = "DATABASE"         # History writes, purges, store transactions
    INTERNAL = "INTERNAL"         # Bugs, unexpected state


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Typed fields cover the identifiers every scheduling error is about (the
    job and trigger keys, the URL being called); anything else lands in
    ``metadata``.

    Examples:
        >>> ctx = ErrorContext(job_group="grp1", job_name="ping")
        >>> ctx.to_dict()
        {'job_group': 'grp1', 'job_name': 'ping'}
    """

    job_group: str | None = None
    job_name: str | None = None
    trigger_group: str | None = None
    trigger_name: str | None = None
    url: str | None = None
    http_status: int | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["job_group", "job_name", "trigger_group", "trigger_name",
                    "url", "http_status"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class CronSpineError(Exception):
    """
    Base exception for all cron-spine errors.

    Subclasses set ``default_category`` and ``default_retryable``; callers
    can override both per instance.

    Examples:
        >>> error = CronSpineError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.to_dict()["error_type"]
        'CronSpineError'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> CronSpineError:
        """
        Add context to this error (fluent API).

        Usage:
            raise SchedulingError("bad cron").with_context(
                job_group="grp1", job_name="ping"
            )
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# SCHEDULING ERRORS (raised synchronously to the caller)
# =============================================================================


class SchedulingError(CronSpineError):
    """
    A job/trigger definition was rejected.

    Raised for invalid cron expressions, unknown job types, and inconsistent
    upserts. The Trigger Store guarantees nothing was written when this is
    raised.
    """

    default_category = ErrorCategory.SCHEDULING
    default_retryable = False


# =============================================================================
# EXECUTION ERRORS (captured into history, never raised into the loop)
# =============================================================================


class ExecutionError(CronSpineError):
    """Transport failure or timeout while running a job."""

    default_category = ErrorCategory.EXECUTION
    default_retryable = True


class ConfigurationError(CronSpineError):
    """
    Job data is missing fields the executor needs (e.g. no ``url``).

    The executor logs it and aborts the firing; no history entry is written.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False


# =============================================================================
# PERSISTENCE ERRORS
# =============================================================================


class PersistenceError(CronSpineError):
    """A database write, delete, or transaction failed."""

    default_category = ErrorCategory.DATABASE
    default_retryable = False


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "CronSpineError",
    "SchedulingError",
    "ExecutionError",
    "ConfigurationError",
    "PersistenceError",
]
