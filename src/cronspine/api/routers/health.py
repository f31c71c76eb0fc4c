"""
Health router (mounted at root level for container healthchecks).

GET /health        scheduler health; 503 when the engine is not ticking
GET /health/live   liveness, always 200
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from cronspine.api.deps import EngineDep

router = APIRouter(prefix="/health")


@router.get("")
def health(engine: EngineDep):
    report = engine.health()
    body = {"status": "healthy" if report.healthy else "unhealthy", **report.to_dict()}
    return JSONResponse(body, status_code=200 if report.healthy else 503)


@router.get("/live")
def live():
    return {"status": "alive"}
