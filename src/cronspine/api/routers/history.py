"""
History router.

GET /history/{group}/{name}
"""

from __future__ import annotations

from fastapi import APIRouter, Path

from cronspine.api.deps import EngineDep
from cronspine.api.schemas import ExecutionLogItem

router = APIRouter(prefix="/history")


@router.get("/{group}/{name}", response_model=list[ExecutionLogItem])
def get_job_history(
    engine: EngineDep,
    group: str = Path(..., description="Job group"),
    name: str = Path(..., description="Job name"),
):
    """Most recent executions of a job (at most 20), newest first.

    Example:
        GET /api/history/grp1/ping

        Response:
        [
            {
                "id": 7,
                "fireTime": "2026-01-05T10:05:00.000+00:00",
                "endTime": "2026-01-05T10:05:00.180+00:00",
                "durationMs": 180,
                "status": "SUCCESS",
                "message": "pong"
            }
        ]
    """
    return [ExecutionLogItem(**entry.to_dict()) for entry in engine.history(group, name)]
