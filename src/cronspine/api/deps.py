"""
FastAPI dependency injection.

The engine is constructed once (by ``create_app`` or its lifespan) and
stored on ``app.state``; routers receive it through ``EngineDep``.

Usage in routers::

    from cronspine.api.deps import EngineDep

    @router.get("/things")
    def list_things(engine: EngineDep):
        ...
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from cronspine.core.settings import CronSpineSettings, get_settings
from cronspine.scheduling.engine import SchedulerEngine


def get_engine(request: Request) -> SchedulerEngine:
    """Return the application's engine (503 before start-up wired it)."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Scheduler engine not initialized")
    return engine


EngineDep = Annotated[SchedulerEngine, Depends(get_engine)]
SettingsDep = Annotated[CronSpineSettings, Depends(get_settings)]
