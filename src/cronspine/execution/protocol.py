"""Job executor protocol.

An executor is the capability "given a job data map, produce a result".
The Scheduler Loop only ever sees this interface, so new job types plug in
by registering another executor under a new ``job_type`` tag.

Example implementation:
    >>> class EchoExecutor:
    ...     job_type = "echo"
    ...
    ...     def execute(self, job_data):
    ...         return JobResult.success(job_data.get("text", ""))
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class JobResult:
    """Structured outcome of one execution.

    ``aborted`` marks a configuration abort: the job never ran and no
    history entry is written for it.
    """

    succeeded: bool
    message: str | None = None
    aborted: bool = False

    @classmethod
    def success(cls, message: str | None = None) -> JobResult:
        return cls(succeeded=True, message=message)

    @classmethod
    def failure(cls, message: str | None) -> JobResult:
        return cls(succeeded=False, message=message)

    @classmethod
    def abort(cls, message: str | None) -> JobResult:
        return cls(succeeded=False, message=message, aborted=True)


@runtime_checkable
class JobExecutor(Protocol):
    """Runs one job type.

    Implementations must not raise for expected failures; they report them
    through ``JobResult``. Anything that does escape is caught by the
    Scheduler Loop and recorded as a FAILURE.
    """

    job_type: str

    def execute(self, job_data: Mapping[str, str]) -> JobResult:
        """Run the job with its data map and return the outcome."""
        ...
