"""FastAPI application entrypoint for the archive search index."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from archive_search.api.dependencies import ArchiveServices, build_services
from archive_search.api.routes import admin, search
from archive_search.core.config import settings
from archive_search.core.exceptions import ApplicationError

logger = logging.getLogger(__name__)


def create_app(services: Optional[ArchiveServices] = None, start_triggers: bool = True) -> FastAPI:
    """Build the application; injected services are not closed on shutdown."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = services is None
        app.state.services = services or build_services()
        triggers = app.state.services.triggers
        if start_triggers:
            if settings.INDEX_SCHEDULE:
                triggers.schedule(settings.INDEX_SCHEDULE)
            if settings.WATCH_FILES:
                triggers.watch(
                    [settings.RESEARCH_ARCHIVE_PATH, settings.URL_CONTENT_ARCHIVE_PATH],
                    settings.WATCH_DEBOUNCE_SECONDS,
                )

        try:
            yield
        finally:
            await triggers.stop()
            await app.state.services.orchestrator.wait_idle()
            if owned:
                app.state.services.close()

    app = FastAPI(
        title=settings.API_TITLE,
        version=settings.API_VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
    )

    app.include_router(search.router, prefix="/api")
    app.include_router(admin.router, prefix="/api")

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.exception_handler(ApplicationError)
    async def handle_application_error(_: Request, exc: ApplicationError):
        """Return standardized responses for application layer exceptions."""

        if exc.status_code >= 500:
            logger.error("Request failed: %s", exc)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})

    return app


app = create_app()
