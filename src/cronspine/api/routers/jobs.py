"""
Jobs router: create/replace, list, list groups, delete.

POST   /jobs
GET    /jobs
GET    /jobs/groups
DELETE /jobs/{group}/{name}
"""

from __future__ import annotations

from fastapi import APIRouter, Path
from fastapi.responses import PlainTextResponse

from cronspine.api.deps import EngineDep
from cronspine.api.schemas import JobRequest, TriggerInfo
from cronspine.core.errors import PersistenceError, SchedulingError
from cronspine.core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/jobs")


@router.post("", response_class=PlainTextResponse)
def schedule_job(engine: EngineDep, body: JobRequest):
    """Create a job, or fully replace the existing job with the same name and group.

    Returns ``"Job scheduled successfully"``; a rejected definition (invalid
    cron expression, end before start, unknown job type) is a 400 with
    ``"Error scheduling job: <reason>"``.

    Example:
        POST /api/jobs
        {
            "jobName": "ping",
            "jobGroup": "grp1",
            "cronExpression": "0 */5 * * * ?",
            "jobDataMap": {"url": "https://example.org/ping", "method": "GET"}
        }
    """
    logger.info("api.schedule_job", job_group=body.job_group, job_name=body.job_name)
    try:
        engine.upsert_job(body.to_spec())
    except SchedulingError as e:
        logger.warning("api.schedule_job_rejected", **e.to_dict())
        return PlainTextResponse(f"Error scheduling job: {e.message}", status_code=400)
    except PersistenceError as e:
        logger.error("api.schedule_job_failed", **e.to_dict())
        return PlainTextResponse(f"Error scheduling job: {e.message}", status_code=500)
    return PlainTextResponse("Job scheduled successfully")


@router.get("", response_model=list[TriggerInfo])
def list_jobs(engine: EngineDep):
    """List every trigger with its job, ordered by group then job name."""
    return [TriggerInfo(**view.to_dict()) for view in engine.list_triggers()]


@router.get("/groups", response_model=list[str])
def list_job_groups(engine: EngineDep):
    """Distinct job group names, sorted."""
    return sorted(engine.list_job_groups())


@router.delete("/{group}/{name}", response_class=PlainTextResponse)
def delete_job(
    engine: EngineDep,
    group: str = Path(..., description="Job group"),
    name: str = Path(..., description="Job name"),
):
    """Delete a job and its trigger. Deleting a missing job also succeeds."""
    logger.info("api.delete_job", job_group=group, job_name=name)
    try:
        engine.delete_job(group, name)
    except PersistenceError as e:
        logger.error("api.delete_job_failed", **e.to_dict())
        return PlainTextResponse(f"Error deleting job: {e.message}", status_code=500)
    return PlainTextResponse("Job deleted successfully")


@router.post("/{group}/{name}/pause", response_class=PlainTextResponse)
def pause_job(engine: EngineDep, group: str, name: str):
    """Pause an armed job; it keeps its definition but does not fire."""
    if not engine.pause_job(group, name):
        return PlainTextResponse("Job not found or not active", status_code=404)
    return PlainTextResponse("Job paused successfully")


@router.post("/{group}/{name}/resume", response_class=PlainTextResponse)
def resume_job(engine: EngineDep, group: str, name: str):
    """Resume a paused job; the next fire is computed from now."""
    if not engine.resume_job(group, name):
        return PlainTextResponse("Job not found or not paused", status_code=404)
    return PlainTextResponse("Job resumed successfully")
