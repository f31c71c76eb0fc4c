"""
FastAPI application factory.

``create_app()`` wires CORS, error handlers, routers and the lifespan that
owns the scheduler engine into a single ``FastAPI`` instance.

Tags:
    cron-spine, api, app-factory, composition-root, FastAPI
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cronspine import __version__
from cronspine.core.errors import CronSpineError
from cronspine.core.logging import get_logger
from cronspine.core.settings import CronSpineSettings, get_settings
from cronspine.scheduling.engine import SchedulerEngine, create_scheduler

logger = get_logger("cronspine.api")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Start the engine on startup; stop and drain it on shutdown."""
    settings: CronSpineSettings = app.state.settings
    created = app.state.engine is None
    if created:
        app.state.engine = create_scheduler(settings)
    engine: SchedulerEngine = app.state.engine

    engine.start()
    logger.info("api.started", version=app.version, prefix=settings.api_prefix)
    try:
        yield
    finally:
        logger.info("api.stopping")
        if created:
            engine.close()
        else:
            engine.stop()


async def cronspine_error_handler(request: Request, exc: CronSpineError) -> JSONResponse:
    """Map an escaped engine error to a JSON 500 body."""
    logger.error("api.unhandled_error", path=str(request.url.path), **exc.to_dict())
    return JSONResponse(status_code=500, content=exc.to_dict())


def create_app(
    settings: CronSpineSettings | None = None,
    engine: SchedulerEngine | None = None,
) -> FastAPI:
    """Build and return a fully-configured FastAPI application.

    Parameters
    ----------
    settings : CronSpineSettings | None
        Override settings (useful for testing). When ``None`` the cached
        singleton from :func:`get_settings` is used.
    engine : SchedulerEngine | None
        Pre-built engine. When ``None`` the lifespan creates one from
        ``settings`` and closes it on shutdown.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.api_title,
        version=__version__,
        lifespan=lifespan,
        docs_url=f"{settings.api_prefix}/docs",
        openapi_url=f"{settings.api_prefix}/openapi.json",
    )
    app.state.settings = settings
    app.state.engine = engine
    app.dependency_overrides[get_settings] = lambda: settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(CronSpineError, cronspine_error_handler)

    from cronspine.api.routers import health, history, jobs

    prefix = settings.api_prefix
    app.include_router(health.router, tags=["health"])
    app.include_router(jobs.router, prefix=prefix, tags=["jobs"])
    app.include_router(history.router, prefix=prefix, tags=["history"])

    return app
