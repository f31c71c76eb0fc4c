"""
API schemas: request and response bodies.

Wire names are camelCase (``jobName``, ``cronExpression``, ``jobDataMap``);
Python attributes stay snake_case through pydantic's alias generator.
Instants arrive as epoch milliseconds and leave as ISO 8601 strings, or as
``yyyy-MM-dd HH:mm:ss`` display strings in the trigger listing.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from cronspine.core.models import JobSpec
from cronspine.core.timestamps import from_epoch_millis


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class JobRequest(CamelModel):
    """Create-or-replace payload for a job and its cron trigger."""

    job_name: str = Field(description="Job name, unique within its group")
    job_group: str = Field(description="Job group")
    description: str = ""
    cron_expression: str = Field(description="Quartz-style cron, e.g. '0 */5 * * * ?'")
    start_time: int | None = Field(default=None, description="Epoch millis; first fire at/after")
    end_time: int | None = Field(default=None, description="Epoch millis; no fires after")
    job_data_map: dict[str, str] | None = Field(
        default=None,
        description="Executor parameters: url, method, body, header.<Name>",
    )

    def to_spec(self) -> JobSpec:
        return JobSpec(
            job_name=self.job_name,
            job_group=self.job_group,
            description=self.description,
            cron_expression=self.cron_expression,
            job_data=self.job_data_map,
            start_time=from_epoch_millis(self.start_time),
            end_time=from_epoch_millis(self.end_time),
        )


class TriggerInfo(CamelModel):
    """One row of the job listing."""

    job_name: str
    job_group: str
    trigger_name: str
    trigger_group: str
    description: str
    cron_expression: str
    last_execution_time: str = Field(description="Display time or 'Never'")
    next_execution_time: str = Field(description="Display time or 'Completed'")
    job_data_map: dict[str, str]
    state: str


class ExecutionLogItem(CamelModel):
    """One history entry, newest first in listings."""

    id: int | None = None
    fire_time: str
    end_time: str
    duration_ms: int
    status: str
    message: str | None = None
