"""Executor registry: maps ``job_type`` tags to executors."""

from __future__ import annotations

from collections.abc import Iterator

from cronspine.core.errors import SchedulingError
from cronspine.core.logging import get_logger
from cronspine.execution.protocol import JobExecutor

logger = get_logger(__name__)


class ExecutorRegistry:
    """Holds one executor per job type.

    Example:
        >>> registry = ExecutorRegistry()
        >>> registry.register(HttpJobExecutor())
        >>> registry.get("http")
        HttpJobExecutor(...)
    """

    def __init__(self, executors: list[JobExecutor] | None = None) -> None:
        self._executors: dict[str, JobExecutor] = {}
        for executor in executors or []:
            self.register(executor)

    def register(self, executor: JobExecutor) -> None:
        """Register (or replace) the executor for ``executor.job_type``."""
        if executor.job_type in self._executors:
            logger.warning("executor.replaced", job_type=executor.job_type)
        self._executors[executor.job_type] = executor

    def get(self, job_type: str) -> JobExecutor:
        """Return the executor for ``job_type``.

        Raises:
            SchedulingError: If no executor handles that type
        """
        executor = self._executors.get(job_type)
        if executor is None:
            raise SchedulingError(
                f"Unknown job type '{job_type}'; registered: {sorted(self._executors)}"
            )
        return executor

    def __contains__(self, job_type: object) -> bool:
        return job_type in self._executors

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._executors))
