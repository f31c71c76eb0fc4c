"""Job executors.

A job type is an object with a ``job_type`` tag and ``execute(job_data)``
returning a ``JobResult``. The HTTP job is the one shipped implementation.
"""

from cronspine.execution.http_job import HttpJobExecutor
from cronspine.execution.protocol import JobExecutor, JobResult
from cronspine.execution.registry import ExecutorRegistry

__all__ = [
    "ExecutorRegistry",
    "HttpJobExecutor",
    "JobExecutor",
    "JobResult",
]
