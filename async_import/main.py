"""FastAPI application wiring for the async import service.

- Configures logging and (optionally) Prometheus metrics.
- Builds the :class:`~async_import.imports.service.ImportService` on startup
  and shuts its worker pool down on exit, waiting for running jobs.
- Exposes health/version endpoints next to the async import router.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .config import ImportSettings, get_settings
from .imports.service import ImportService, build_import_service
from .routers import async_import_api

load_dotenv()

logger = logging.getLogger(__name__)


def create_app(
    service: ImportService | None = None,
    *,
    settings: ImportSettings | None = None,
    metrics: bool | None = None,
) -> FastAPI:
    """Build the application.

    ``service`` lets callers (tests, embedding applications) provide a
    pre-built import service; it is then left running when the app stops.
    Otherwise one is built from ``settings`` on startup and shut down on exit.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = app.state.import_service is None
        if owned:
            app.state.import_service = build_import_service(app.state.settings)
        logger.info("Async import service started")
        try:
            yield
        finally:
            if owned:
                app.state.import_service.shutdown(wait=True)
                app.state.import_service = None
            logger.info("Async import service stopped")

    app = FastAPI(title="Async Import", version=__version__, lifespan=lifespan)
    app.state.settings = settings or get_settings()
    app.state.import_service = service
    init_logging(app)
    app.include_router(async_import_api.router)

    @app.get("/api/health")
    async def health():
        """Liveness/readiness probe with a minimal JSON body."""
        return {"status": "ok"}

    @app.get("/api/version")
    async def version():
        """Return version information for the application."""
        return {
            "version": __version__,
            "build_date": __build_date__,
            "commit_sha": __commit_sha__,
        }

    if metrics is None:
        metrics = app.state.settings.metrics_enabled
    if metrics:
        Instrumentator().instrument(app).expose(
            app, include_in_schema=False, endpoint="/api/metrics"
        )
    return app


app = create_app()
