"""FastAPI application factory."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from jobline import __version__
from jobline.api.errors import register_error_handlers
from jobline.api.routes import router
from jobline.config import Settings
from jobline.orchestrator.runtime import close_runtime, open_runtime
from jobline.orchestrator.services import JobService

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, service: JobService | None = None) -> FastAPI:
    """Build the application.

    Passing ``service`` skips opening the store and queue from settings, which
    is how tests attach their own temporary databases.
    """

    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
        if service is not None:
            app.state.service = service
            yield
            return
        runtime = open_runtime(settings)
        app.state.service = runtime.service
        logger.info("Jobs API using store %s", settings.db_path)
        try:
            yield
        finally:
            close_runtime(runtime)
            logger.info("Jobs API shut down")

    app = FastAPI(title="jobline", version=__version__, lifespan=_lifespan)
    if service is not None:
        app.state.service = service

    origins = list(settings.api.cors_origins)
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials="*" not in origins,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    register_error_handlers(app)
    app.include_router(router)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    return app
