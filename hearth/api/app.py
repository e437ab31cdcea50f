"""
Hearth Kiosk — HTTP API.

FastAPI application factory: mounts every router under /api, maps the
HearthError taxonomy onto HTTP statuses and stops background picker polls
on shutdown.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from hearth.api.routes_auth import router as auth_router
from hearth.api.routes_calendar import router as calendar_router
from hearth.api.routes_data import router as data_router
from hearth.api.routes_frames import router as frames_router
from hearth.api.routes_local_tasks import router as local_tasks_router
from hearth.api.routes_photos import router as photos_router
from hearth.api.routes_rewards import router as rewards_router
from hearth.api.routes_stats import router as stats_router
from hearth.api.routes_tasks import router as tasks_router
from hearth.api.routes_weather import router as weather_router
from hearth.api.services import Services, build_services
from hearth.ports.provider_port import HearthError

logger = logging.getLogger(__name__)


async def _hearth_error_handler(request: Request, exc: HearthError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected (%d): %s", request.method, request.url.path, exc.status_code, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": "fail" if exc.status_code < 500 else "error", "message": str(exc)},
    )


def create_app(services: Services | None = None, cors_origins: list[str] | None = None) -> FastAPI:
    """Build the application. Tests pass their own Services."""
    if services is None:
        services = build_services()
    if cors_origins is None:
        from hearth.config import settings

        cors_origins = settings.CORS_ORIGINS

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.services.dashboard.close()

    app = FastAPI(title="Hearth Kiosk", lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(HearthError, _hearth_error_handler)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    for router in (
        auth_router,
        data_router,
        local_tasks_router,
        stats_router,
        rewards_router,
        calendar_router,
        tasks_router,
        photos_router,
        frames_router,
        weather_router,
    ):
        app.include_router(router)

    return app
