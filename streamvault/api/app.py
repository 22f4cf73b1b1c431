"""
FastAPI application factory.

``create_app()`` assembles the application with CORS, error handlers,
routers, and the health endpoint. The module-level ``app`` instance
allows ``uvicorn streamvault.api.app:app``; ``main()`` is the
``streamvault`` console script.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from streamvault.api.middleware.error_handler import register_error_handlers
from streamvault.api.routes import media, recording
from streamvault.core.config import get_settings
from streamvault.core.models import HealthResponse
from streamvault.services.media import BaseMediaRouter, create_media_router
from streamvault.services.recording import RecordingSessionManager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown lifecycle.

    Startup: start the media router and create the recording manager
    (which creates the recordings directory), unless tests injected them.
    Shutdown: stop all recordings and wait for them to be finalized, then
    close the router.
    """
    settings = get_settings()
    if app.state.media_router is None:
        media_router = create_media_router(
            settings.media_router,
            listen_ip=settings.rtp_listen_ip,
            port=settings.rtp_port,
            announced_ip=settings.announced_ip,
            idle_timeout=settings.transport_idle_timeout,
        )
        await media_router.start()
        app.state.media_router = media_router
    if app.state.recording_manager is None:
        app.state.recording_manager = RecordingSessionManager(app.state.media_router, settings)

    logger.info(
        "Records at %s, postMP3=%s, keepOGG=%s",
        settings.record_dir,
        settings.post_conversion_enabled,
        settings.keep_ogg,
    )
    yield
    # Graceful shutdown: let recorders finalize their files before the router goes away
    await app.state.recording_manager.shutdown()
    await app.state.media_router.close()


def create_app(
    media_router: BaseMediaRouter | None = None,
    recording_manager: RecordingSessionManager | None = None,
) -> FastAPI:
    """Build and return a fully configured FastAPI application.

    Args:
        media_router: Pre-started router to use instead of creating one.
        recording_manager: Manager to use instead of creating one.

    Returns:
        FastAPI: The configured application, ready for ``uvicorn``.
    """

    app = FastAPI(
        title="StreamVault",
        description="Records every inbound real-time audio stream to disk.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.media_router = media_router
    app.state.recording_manager = recording_manager

    # -- CORS --
    settings = get_settings()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -- Error handlers --
    register_error_handlers(app)

    # -- Health check (root-level, not under /api/v1) --
    @app.get("/health", response_model=HealthResponse, tags=["system"])
    async def health() -> HealthResponse:
        return HealthResponse(timestamp=datetime.now(UTC))

    # -- REST routes --
    app.include_router(media.router, prefix="/api/v1")
    app.include_router(recording.router, prefix="/api/v1")

    return app


app = create_app()


def main() -> None:
    """Run the HTTP control plane with uvicorn."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info(
        "HTTP http://%s:%s (RTP UDP on %s)", settings.app_host, settings.port, settings.rtp_port
    )
    uvicorn.run(app, host=settings.app_host, port=settings.port, log_level=settings.log_level.lower())
